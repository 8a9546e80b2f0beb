"""Reviewflow - Review and lifecycle workflow engine.

This package implements the stage machine that moves ideas, challenges and
challenge submissions through human review, the quorum and conflict-of-interest
rules that decide when a review stage is complete, and the time-driven
lifecycle automation that handles expired, stale and abandoned entities.
"""

__version__ = "0.1.0"
