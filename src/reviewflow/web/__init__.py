"""Web interface for Reviewflow.

This module provides the FastAPI application exposing review submission,
entity workflow state, user actions and health checks.
"""

from __future__ import annotations

from reviewflow.web.app import create_app
from reviewflow.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
