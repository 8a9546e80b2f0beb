"""Lifecycle automation for Reviewflow."""

from reviewflow.lifecycle.scheduler import (
    LifecycleReport,
    LifecycleRule,
    LifecycleScheduler,
    RuleAction,
    RuleOutcome,
)

__all__ = [
    "LifecycleReport",
    "LifecycleRule",
    "LifecycleScheduler",
    "RuleAction",
    "RuleOutcome",
]
