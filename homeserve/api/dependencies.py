"""
API dependencies for FastAPI dependency injection.

Provides database sessions, the authenticated actor, and the collaborators
(notifier, clock, metrics) handed to the scheduling services. Tests
override these through ``app.dependency_overrides``.
"""
from typing import Callable, Optional
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from homeserve.lib.db import get_db as get_db_session
from homeserve.lib.errors import ForbiddenException, UnauthorizedException
from homeserve.lib.jwt import get_actor_from_token
from homeserve.lib.metrics import MetricsCollector, get_metrics_collector
from homeserve.services.actors import Actor, ActorRole
from homeserve.services.lifecycle_service import LifecycleService
from homeserve.services.notification_service import Notifier, get_notification_service
from homeserve.services.scheduling_engine import SchedulingEngine
from homeserve.services.timeslots import business_now


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

_notifier: Optional[Notifier] = None


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """
    Dependency to get the authenticated actor from the bearer token.

    Raises:
        UnauthorizedException: Missing, invalid or expired token
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")
    try:
        actor_id, actor_type = get_actor_from_token(credentials.credentials)
        return Actor(id=UUID(actor_id), role=ActorRole(actor_type))
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise UnauthorizedException("Could not validate credentials")


def require_provider(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_provider:
        raise ForbiddenException("Provider access required")
    return actor


def require_customer(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_customer:
        raise ForbiddenException("Customer access required")
    return actor


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = get_notification_service()
    return _notifier


def get_clock() -> Callable:
    return business_now


def get_metrics() -> MetricsCollector:
    return get_metrics_collector()


def get_scheduling_engine(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    clock: Callable = Depends(get_clock),
    metrics: MetricsCollector = Depends(get_metrics),
) -> SchedulingEngine:
    return SchedulingEngine(db, notifier=notifier, clock=clock, metrics=metrics)


def get_lifecycle_service(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    clock: Callable = Depends(get_clock),
    metrics: MetricsCollector = Depends(get_metrics),
) -> LifecycleService:
    return LifecycleService(db, notifier=notifier, clock=clock, metrics=metrics)
