"""Service wiring shared by the CLI and the web application."""

from __future__ import annotations

from dataclasses import dataclass

from reviewflow.config import ReviewflowConfig
from reviewflow.database.store import SessionFactory, SqlAlchemyStore
from reviewflow.integrations.logging_ports import StructlogAuditPort, build_notification_port
from reviewflow.lifecycle.scheduler import LifecycleScheduler
from reviewflow.workflow.aggregator import ReviewAggregator
from reviewflow.workflow.engine import WorkflowEngine
from reviewflow.workflow.ports import AuditPort, NotificationPort
from reviewflow.workflow.service import ReviewWorkflow


@dataclass
class WorkflowServices:
    """The workflow components built over one session factory."""

    store: SqlAlchemyStore
    notifications: NotificationPort
    audit: AuditPort
    engine: WorkflowEngine
    aggregator: ReviewAggregator
    workflow: ReviewWorkflow
    scheduler: LifecycleScheduler

    async def close(self) -> None:
        """Release adapter resources such as HTTP clients."""
        close = getattr(self.notifications, "close", None)
        if close is not None:
            await close()


def build_services(
    config: ReviewflowConfig,
    session_factory: SessionFactory,
    *,
    notifications: NotificationPort | None = None,
    audit: AuditPort | None = None,
) -> WorkflowServices:
    """Build the workflow components.

    Args:
        config: Loaded configuration.
        session_factory: Factory for database sessions.
        notifications: Override for the configured notification port.
        audit: Override for the structured-log audit port.
    """
    store = SqlAlchemyStore(session_factory)
    notifications = notifications or build_notification_port(config.notifications)
    audit = audit or StructlogAuditPort()

    engine = WorkflowEngine(
        store,
        notifications,
        audit,
        side_effect_timeout=config.workflow.side_effect_timeout_seconds,
    )
    aggregator = ReviewAggregator(store, store)
    workflow = ReviewWorkflow(
        engine,
        aggregator,
        operation_timeout=config.workflow.operation_timeout_seconds,
    )
    scheduler = LifecycleScheduler(engine, aggregator, store, audit, config.lifecycle)

    return WorkflowServices(
        store=store,
        notifications=notifications,
        audit=audit,
        engine=engine,
        aggregator=aggregator,
        workflow=workflow,
        scheduler=scheduler,
    )
