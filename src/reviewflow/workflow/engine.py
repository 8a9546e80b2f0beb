"""Workflow engine: the stage machine core.

``WorkflowEngine.advance`` is the only way an entity changes stage:

1. Read the entity snapshot.
2. Resolve the target stage for the trigger from the stage registry.
3. Commit with one compare-and-swap keyed on the stage and stage version
   that were read. If the entity moved in the meantime the call fails with
   ``ConcurrentTransitionError`` and nothing is retried.
4. After the commit, emit one phase-transition notification and one
   ``stage_transition`` audit event. Both are best-effort: failures are
   logged and the committed stage stands.

The engine holds no ORM objects and reads no ambient request state; the
acting user and request metadata are explicit arguments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, NoReturn
from uuid import UUID

import structlog
from pydantic import BaseModel

from reviewflow.database.models.base import utcnow
from reviewflow.database.models.entity import Stage, coerce_stage
from reviewflow.workflow.errors import ConcurrentTransitionError
from reviewflow.workflow.ports import (
    AuditPort,
    EntityRef,
    EntitySnapshot,
    NotificationPort,
    WorkflowStore,
)
from reviewflow.workflow.registry import (
    available_triggers,
    milestone_updates,
    resolve_transition,
)
from reviewflow.workflow.triggers import AnyTrigger

logger = structlog.get_logger(__name__)

STAGE_TRANSITION_EVENT = "stage_transition"


class TransitionResult(BaseModel):
    """A committed stage transition.

    Attributes:
        ref: Entity moved.
        from_stage: Stage before the transition.
        to_stage: Stage after the transition.
        stage_version: Version after the transition.
        trigger: Description of the trigger, e.g. ``system_clock:draft_expired``.
        actor_id: Acting user, None for automation.
        occurred_at: Commit timestamp written to ``last_stage_change_at``.
        entity: Snapshot reflecting the new stage.
        notified: Whether the notification call succeeded.
        audited: Whether the audit call succeeded.
    """

    ref: EntityRef
    from_stage: Stage
    to_stage: Stage
    stage_version: int
    trigger: str
    actor_id: UUID | None = None
    occurred_at: datetime
    entity: EntitySnapshot
    notified: bool = False
    audited: bool = False


class WorkflowEngine:
    """Validates and commits stage transitions.

    Attributes:
        store: Storage port for snapshots and the compare-and-swap write.
        notifications: Receives phase-transition requests.
        audit: Receives audit events.
        side_effect_timeout: Seconds allowed for each notification/audit call.
    """

    def __init__(
        self,
        store: WorkflowStore,
        notifications: NotificationPort,
        audit: AuditPort,
        *,
        side_effect_timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.audit = audit
        self.side_effect_timeout = side_effect_timeout
        self._clock = clock
        self._logger = logger.bind(component="WorkflowEngine")

    async def get_snapshot(self, ref: EntityRef) -> EntitySnapshot:
        return await self.store.get_snapshot(ref)

    async def available_triggers(self, ref: EntityRef) -> list[AnyTrigger]:
        """List the triggers that are legal from the entity's current stage."""
        snapshot = await self.store.get_snapshot(ref)
        return available_triggers(ref.entity_type, snapshot.current_stage)

    async def advance(
        self,
        ref: EntityRef,
        trigger: AnyTrigger,
        *,
        actor_id: UUID | None = None,
        expected_stage: Stage | str | None = None,
        expected_version: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Move an entity to the stage ``trigger`` leads to.

        Args:
            ref: Entity to move.
            trigger: ReviewerDecision, SystemClock or UserAction.
            actor_id: Acting user; None for automation.
            expected_stage: Stage the caller's decision was based on. When
                given and the entity is elsewhere, the call fails as a
                concurrent transition rather than re-resolving the trigger.
            expected_version: Stage version the decision was based on.
            metadata: Extra request details copied into the audit event.

        Returns:
            TransitionResult describing the committed change.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            InvalidTransitionError: If the trigger is illegal for the current stage.
            ConcurrentTransitionError: If the entity moved before the swap.
        """
        snapshot = await self.store.get_snapshot(ref)
        current = snapshot.current_stage

        if expected_stage is not None:
            expected = coerce_stage(ref.entity_type, expected_stage)
            if expected != current or (
                expected_version is not None and expected_version != snapshot.stage_version
            ):
                self._reject_concurrent(ref, expected, expected_version, current)
        elif expected_version is not None and expected_version != snapshot.stage_version:
            self._reject_concurrent(ref, current, expected_version, current)

        target = resolve_transition(ref.entity_type, current, trigger, ref.entity_id)
        now = self._clock()

        swapped = await self.store.compare_and_swap_stage(
            ref,
            expected_stage=current,
            expected_version=snapshot.stage_version,
            new_stage=target,
            changed_at=now,
            actor_id=actor_id,
            milestones=milestone_updates(ref.entity_type, current, target, now),
        )
        if not swapped:
            self._reject_concurrent(ref, current, snapshot.stage_version, None)

        entity = snapshot.model_copy(
            update={
                "current_stage": target,
                "stage_version": snapshot.stage_version + 1,
                "last_stage_change_at": now,
                "updated_at": now,
            }
        )
        self._logger.info(
            "stage_transition_committed",
            entity_type=ref.entity_type.value,
            entity_id=str(ref.entity_id),
            from_stage=current.value,
            to_stage=target.value,
            stage_version=entity.stage_version,
            trigger=trigger.describe(),
            actor_id=str(actor_id) if actor_id else None,
        )

        result = TransitionResult(
            ref=ref,
            from_stage=current,
            to_stage=target,
            stage_version=entity.stage_version,
            trigger=trigger.describe(),
            actor_id=actor_id,
            occurred_at=now,
            entity=entity,
        )
        notified, audited = await self._emit_side_effects(result, metadata or {})
        return result.model_copy(update={"notified": notified, "audited": audited})

    def _reject_concurrent(
        self,
        ref: EntityRef,
        expected: Stage,
        expected_version: int | None,
        actual: Stage | None,
    ) -> NoReturn:
        self._logger.info(
            "stage_transition_conflict",
            entity_type=ref.entity_type.value,
            entity_id=str(ref.entity_id),
            expected_stage=expected.value,
            expected_version=expected_version,
            actual_stage=actual.value if actual is not None else None,
        )
        raise ConcurrentTransitionError(
            ref.entity_id,
            expected.value,
            expected_version,
            actual.value if actual is not None else None,
        )

    async def _emit_side_effects(
        self, result: TransitionResult, metadata: dict[str, Any]
    ) -> tuple[bool, bool]:
        """Fire notification and audit calls; never raises for port failures."""
        notified = True
        try:
            await asyncio.wait_for(
                self.notifications.phase_transition(
                    result.entity, result.from_stage, result.to_stage
                ),
                timeout=self.side_effect_timeout,
            )
        except Exception as e:
            notified = False
            self._logger.warning(
                "notification_failed",
                entity_id=str(result.ref.entity_id),
                from_stage=result.from_stage.value,
                to_stage=result.to_stage.value,
                error=str(e) or type(e).__name__,
            )

        audited = True
        event_metadata = {
            "from_stage": result.from_stage.value,
            "to_stage": result.to_stage.value,
            "stage_version": result.stage_version,
            "trigger": result.trigger,
            **metadata,
        }
        try:
            await asyncio.wait_for(
                self.audit.record(
                    STAGE_TRANSITION_EVENT,
                    result.ref.entity_type.value,
                    result.ref.entity_id,
                    result.actor_id,
                    event_metadata,
                ),
                timeout=self.side_effect_timeout,
            )
        except Exception as e:
            audited = False
            self._logger.warning(
                "audit_record_failed",
                event_type=STAGE_TRANSITION_EVENT,
                entity_id=str(result.ref.entity_id),
                error=str(e) or type(e).__name__,
            )

        return notified, audited
