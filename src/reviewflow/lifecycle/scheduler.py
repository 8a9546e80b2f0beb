"""Time-driven lifecycle automation for challenges.

Each run evaluates four rules against the current clock:

1. Expired active challenges: an active challenge past its submission
   deadline moves to ``review`` if it received submissions, otherwise to
   ``cancelled``.
2. Ready for judging: a challenge in ``review`` whose eligible submissions
   are all decided (or have reached quorum at their current review stage)
   moves to ``judging``.
3. Stale detection: a challenge in ``review`` or ``judging`` not updated
   for ``stale_after_days`` gets a ``stale_detected`` audit event. Its
   stage is left alone.
4. Draft cleanup: a draft challenge older than ``draft_retention_days``
   moves to ``cancelled``.

Rules re-query before they run, so an entity moved by rule 1 is seen by
rule 2 in the same run. A second run over unchanged data matches nothing.
Every transition goes through ``WorkflowEngine.advance`` with the stage and
version that were read, so a run racing a user action loses cleanly with a
conflict instead of overwriting.

Dry runs evaluate every rule and report what would happen, but never call
``advance`` or any side-effect port.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from reviewflow.config import LifecycleConfig
from reviewflow.database.models.base import ensure_utc, utcnow
from reviewflow.database.models.entity import (
    ChallengeStatus,
    Stage,
    SubmissionStage,
)
from reviewflow.logging import entity_context
from reviewflow.workflow.aggregator import ReviewAggregator
from reviewflow.workflow.engine import WorkflowEngine
from reviewflow.workflow.errors import ConcurrentTransitionError
from reviewflow.workflow.ports import (
    AuditPort,
    EntityRef,
    EntitySnapshot,
    LifecycleQueries,
)
from reviewflow.workflow.registry import is_review_stage
from reviewflow.workflow.triggers import ClockReason, SystemClock

logger = structlog.get_logger(__name__)

STALE_DETECTED_EVENT = "stale_detected"
RUN_COMPLETED_EVENT = "lifecycle_run_completed"

# Submissions that never entered (or left) the competition
EXCLUDED_SUBMISSION_STAGES = frozenset(
    {SubmissionStage.draft, SubmissionStage.withdrawn, SubmissionStage.archived}
)
DECIDED_SUBMISSION_STAGES = frozenset(
    {SubmissionStage.approved, SubmissionStage.rejected, SubmissionStage.winner}
)


class LifecycleRule(str, enum.Enum):
    """The four lifecycle rules, in evaluation order."""

    expired_challenge = "expired_challenge"
    ready_for_judging = "ready_for_judging"
    stale_detection = "stale_detection"
    draft_cleanup = "draft_cleanup"


class RuleAction(str, enum.Enum):
    """What the scheduler did about one rule match."""

    planned = "planned"
    applied = "applied"
    observed = "observed"
    conflict = "conflict"
    failed = "failed"


class RuleOutcome(BaseModel):
    """One rule match for one entity."""

    rule: LifecycleRule
    ref: EntityRef
    action: RuleAction
    from_stage: Stage
    to_stage: Stage | None = None
    reason: str | None = None
    error: str | None = None

    def describe(self) -> str:
        """Single human-readable line for CLI output."""
        target = f" -> {self.to_stage.value}" if self.to_stage is not None else ""
        line = f"[{self.action.value}] {self.rule.value} {self.ref} {self.from_stage.value}{target}"
        if self.error:
            line += f" ({self.error})"
        return line


class LifecycleReport(BaseModel):
    """Result of one scheduler run."""

    now: datetime
    dry_run: bool = False
    outcomes: list[RuleOutcome] = Field(default_factory=list)

    def count(self, action: RuleAction) -> int:
        return sum(1 for outcome in self.outcomes if outcome.action == action)

    def for_rule(self, rule: LifecycleRule) -> list[RuleOutcome]:
        return [outcome for outcome in self.outcomes if outcome.rule == rule]

    @property
    def failures(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if o.action == RuleAction.failed]

    @property
    def has_failures(self) -> bool:
        return any(o.action == RuleAction.failed for o in self.outcomes)

    def summary(self) -> dict[str, int]:
        return {action.value: self.count(action) for action in RuleAction}


class LifecycleScheduler:
    """Applies the lifecycle rules through the workflow engine.

    The scheduler holds no lock of its own. Two overlapping runs are safe
    because every transition is a compare-and-swap; the loser of a race is
    reported as a conflict.

    Attributes:
        engine: Workflow engine used for every stage change.
        aggregator: Used to check submission quorum for rule 2.
        queries: Lifecycle scans.
        audit: Audit port for stale detection and run summaries.
        config: Rule thresholds and the periodic interval.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        aggregator: ReviewAggregator,
        queries: LifecycleQueries,
        audit: AuditPort,
        config: LifecycleConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.aggregator = aggregator
        self.queries = queries
        self.audit = audit
        self.config = config or LifecycleConfig()
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._logger = logger.bind(component="LifecycleScheduler")

    async def run(self, now: datetime | None = None, dry_run: bool = False) -> LifecycleReport:
        """Evaluate all four rules once.

        Args:
            now: Reference time; defaults to the scheduler clock.
            dry_run: Report matches without changing anything.

        Returns:
            LifecycleReport with one outcome per rule match.
        """
        now = ensure_utc(now) if now is not None else self._clock()
        report = LifecycleReport(now=now, dry_run=dry_run)

        self._logger.info("lifecycle_run_started", now=now.isoformat(), dry_run=dry_run)

        await self._expire_active_challenges(report, now, dry_run)
        await self._promote_reviewed_challenges(report, dry_run)
        await self._detect_stale_challenges(report, now, dry_run)
        await self._cancel_abandoned_drafts(report, now, dry_run)

        summary = report.summary()
        self._logger.info("lifecycle_run_finished", dry_run=dry_run, **summary)

        if not dry_run:
            await self._record_run(report, summary)
        return report

    # --- rules ---

    async def _expire_active_challenges(
        self, report: LifecycleReport, now: datetime, dry_run: bool
    ) -> None:
        for challenge in await self.queries.find_expired_active_challenges(now):
            try:
                submissions = await self.queries.list_submissions(challenge.id)
                received = [s for s in submissions if s.current_stage not in EXCLUDED_SUBMISSION_STAGES]
                if received:
                    reason = ClockReason.deadline_passed_with_submissions
                    target = ChallengeStatus.review
                else:
                    reason = ClockReason.deadline_passed_without_submissions
                    target = ChallengeStatus.cancelled
            except Exception as e:
                self._record_failure(report, LifecycleRule.expired_challenge, challenge, e)
                continue
            await self._transition(
                report, LifecycleRule.expired_challenge, challenge, reason, target, dry_run
            )

    async def _promote_reviewed_challenges(self, report: LifecycleReport, dry_run: bool) -> None:
        for challenge in await self.queries.find_challenges_in_review():
            try:
                ready = await self._submissions_complete(challenge)
            except Exception as e:
                self._record_failure(report, LifecycleRule.ready_for_judging, challenge, e)
                continue
            if not ready:
                continue
            await self._transition(
                report,
                LifecycleRule.ready_for_judging,
                challenge,
                ClockReason.reviews_complete,
                ChallengeStatus.judging,
                dry_run,
            )

    async def _detect_stale_challenges(
        self, report: LifecycleReport, now: datetime, dry_run: bool
    ) -> None:
        cutoff = now - timedelta(days=self.config.stale_after_days)
        for challenge in await self.queries.find_stale_challenges(cutoff):
            outcome = RuleOutcome(
                rule=LifecycleRule.stale_detection,
                ref=challenge.ref,
                action=RuleAction.planned if dry_run else RuleAction.observed,
                from_stage=challenge.current_stage,
                reason=STALE_DETECTED_EVENT,
            )
            if not dry_run:
                try:
                    await asyncio.wait_for(
                        self.audit.record(
                            STALE_DETECTED_EVENT,
                            challenge.entity_type.value,
                            challenge.id,
                            None,
                            {
                                "status": challenge.current_stage.value,
                                "updated_at": challenge.updated_at.isoformat()
                                if challenge.updated_at
                                else None,
                                "stale_after_days": self.config.stale_after_days,
                            },
                        ),
                        timeout=self.engine.side_effect_timeout,
                    )
                except Exception as e:
                    self._record_failure(report, LifecycleRule.stale_detection, challenge, e)
                    continue
            report.outcomes.append(outcome)
            self._log_outcome(outcome)

    async def _cancel_abandoned_drafts(
        self, report: LifecycleReport, now: datetime, dry_run: bool
    ) -> None:
        cutoff = now - timedelta(days=self.config.draft_retention_days)
        for challenge in await self.queries.find_abandoned_drafts(cutoff):
            await self._transition(
                report,
                LifecycleRule.draft_cleanup,
                challenge,
                ClockReason.draft_expired,
                ChallengeStatus.cancelled,
                dry_run,
            )

    # --- helpers ---

    async def _submissions_complete(self, challenge: EntitySnapshot) -> bool:
        """True when every eligible submission is decided or at quorum."""
        submissions = await self.queries.list_submissions(challenge.id)
        eligible = [s for s in submissions if s.current_stage not in EXCLUDED_SUBMISSION_STAGES]
        if not eligible:
            return False

        for submission in eligible:
            if submission.current_stage in DECIDED_SUBMISSION_STAGES:
                continue
            if not is_review_stage(submission.entity_type, submission.current_stage):
                return False
            aggregation = await self.aggregator.summarize(submission)
            if aggregation is None or not aggregation.quorum_met:
                return False
        return True

    async def _transition(
        self,
        report: LifecycleReport,
        rule: LifecycleRule,
        challenge: EntitySnapshot,
        reason: ClockReason,
        target: Stage,
        dry_run: bool,
    ) -> None:
        outcome = RuleOutcome(
            rule=rule,
            ref=challenge.ref,
            action=RuleAction.planned,
            from_stage=challenge.current_stage,
            to_stage=target,
            reason=reason.value,
        )
        if dry_run:
            report.outcomes.append(outcome)
            self._log_outcome(outcome)
            return

        try:
            with entity_context(challenge.entity_type.value, str(challenge.id)):
                await self.engine.advance(
                    challenge.ref,
                    SystemClock(reason=reason),
                    expected_stage=challenge.current_stage,
                    expected_version=challenge.stage_version,
                    metadata={"rule": rule.value},
                )
        except ConcurrentTransitionError as e:
            outcome = outcome.model_copy(update={"action": RuleAction.conflict, "error": str(e)})
        except Exception as e:
            self._record_failure(report, rule, challenge, e, target)
            return
        else:
            outcome = outcome.model_copy(update={"action": RuleAction.applied})

        report.outcomes.append(outcome)
        self._log_outcome(outcome)

    def _record_failure(
        self,
        report: LifecycleReport,
        rule: LifecycleRule,
        entity: EntitySnapshot,
        error: Exception,
        target: Stage | None = None,
    ) -> None:
        self._logger.error(
            "lifecycle_rule_failed",
            rule=rule.value,
            entity_type=entity.entity_type.value,
            entity_id=str(entity.id),
            from_stage=entity.current_stage.value,
            error=str(error) or type(error).__name__,
            exc_info=True,
        )
        report.outcomes.append(
            RuleOutcome(
                rule=rule,
                ref=entity.ref,
                action=RuleAction.failed,
                from_stage=entity.current_stage,
                to_stage=target,
                error=str(error) or type(error).__name__,
            )
        )

    def _log_outcome(self, outcome: RuleOutcome) -> None:
        self._logger.info(
            "lifecycle_rule_matched",
            rule=outcome.rule.value,
            action=outcome.action.value,
            entity_id=str(outcome.ref.entity_id),
            from_stage=outcome.from_stage.value,
            to_stage=outcome.to_stage.value if outcome.to_stage is not None else None,
        )

    async def _record_run(self, report: LifecycleReport, summary: dict[str, int]) -> None:
        try:
            await asyncio.wait_for(
                self.audit.record(
                    RUN_COMPLETED_EVENT,
                    None,
                    None,
                    None,
                    {"now": report.now.isoformat(), **summary},
                ),
                timeout=self.engine.side_effect_timeout,
            )
        except Exception as e:
            self._logger.warning(
                "audit_record_failed",
                event_type=RUN_COMPLETED_EVENT,
                error=str(e) or type(e).__name__,
            )

    # --- periodic loop ---

    async def start(self) -> None:
        """Start running the rules every ``config.interval_seconds``."""
        if self._running:
            self._logger.warning("lifecycle_scheduler_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self.run_periodically())
        self._logger.info(
            "lifecycle_scheduler_started",
            interval_seconds=self.config.interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        if not self._running:
            self._logger.warning("lifecycle_scheduler_not_running")
            return

        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._logger.info("lifecycle_scheduler_stopped")

    async def run_periodically(
        self,
        interval: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run the rules in a loop until cancelled or ``stop_event`` is set.

        Errors from a single run are logged and the loop continues.
        """
        interval = interval if interval is not None else self.config.interval_seconds
        stop_event = stop_event or asyncio.Event()

        while not stop_event.is_set():
            try:
                await self.run()
            except asyncio.CancelledError:
                self._logger.info("lifecycle_loop_cancelled")
                raise
            except Exception as e:
                self._logger.error(
                    "lifecycle_loop_error",
                    error=str(e),
                    exc_info=True,
                )

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
