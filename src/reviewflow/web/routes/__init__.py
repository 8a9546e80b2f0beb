"""FastAPI route definitions for the Reviewflow API."""

from __future__ import annotations

from reviewflow.web.routes.entities import (
    EntityResponse,
    TransitionRequest,
    TransitionResponse,
    create_entities_router,
)
from reviewflow.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from reviewflow.web.routes.reviews import (
    ReviewCreate,
    ReviewOutcomeResponse,
    create_reviews_router,
)

__all__ = [
    # Entities
    "EntityResponse",
    "TransitionRequest",
    "TransitionResponse",
    "create_entities_router",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Reviews
    "ReviewCreate",
    "ReviewOutcomeResponse",
    "create_reviews_router",
]
