"""Request dependencies shared by the API routers."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from uuid import UUID

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.container import WorkflowServices
from reviewflow.logging import get_correlation_id
from reviewflow.workflow.guard import ReviewerProfile
from reviewflow.workflow.registry import Role


def get_session_factory(request: Request) -> Callable[[], AsyncSession]:
    """Extract session factory from FastAPI app state."""
    return request.app.state.session_factory


def get_services(request: Request) -> WorkflowServices:
    """Extract the workflow services from FastAPI app state."""
    return request.app.state.services


def _parse_user_id(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid X-User-ID: {value}") from None


def get_reviewer(
    x_user_id: str = Header(...),
    x_user_roles: str = Header(default=""),
) -> ReviewerProfile:
    """Build the acting reviewer from identity headers set by the gateway.

    ``X-User-Roles`` is a comma-separated list of role names.
    """
    roles: set[Role] = set()
    for name in x_user_roles.split(","):
        name = name.strip()
        if not name:
            continue
        try:
            roles.add(Role(name))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown role: {name}") from None
    return ReviewerProfile(id=_parse_user_id(x_user_id), roles=frozenset(roles))


def get_actor_id(x_user_id: str | None = Header(default=None)) -> UUID | None:
    """Acting user for transitions; absent for service calls."""
    if x_user_id is None:
        return None
    return _parse_user_id(x_user_id)


def request_metadata(request: Request) -> dict[str, Any]:
    """Request details copied into audit events."""
    metadata: dict[str, Any] = {"source": "api", "path": request.url.path}
    correlation_id = get_correlation_id()
    if correlation_id:
        metadata["correlation_id"] = correlation_id
    return metadata
