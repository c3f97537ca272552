"""
dependencies.py — Shared FastAPI Dependencies

Authentication and organization scoping used by every router.

Business Rules:
- get_user returns None if not logged in (non-throwing)
- require_user raises 401 if not logged in, 403 if deactivated
- require_same_org raises AuthorizationDenied when an entity belongs to
  another organization
- require_webhook_token checks the Bearer token the workflow service sends

Called by: all routers
Depends on: models, database, config
"""

from fastapi import Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .errors import AuthorizationDenied
from .models import User

# ── Authentication ────────────────────────────────────────────────────


def get_user(request: Request, db: Session) -> User | None:
    """Return current user from session, or None if not logged in."""
    uid = request.session.get("user_id")
    if not uid:
        return None
    return db.get(User, uid)


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 401 if no authenticated user, 403 if deactivated."""
    user = get_user(request, db)
    if not user:
        raise HTTPException(401, "Not authenticated")
    if not getattr(user, "is_active", True):
        request.session.clear()
        raise HTTPException(403, "Account deactivated — contact admin")
    return user


def require_same_org(user: User, entity, what: str = "entity") -> None:
    if getattr(entity, "organization_id", None) != user.organization_id:
        raise AuthorizationDenied(f"user {user.id} cannot access {what} {getattr(entity, 'id', '?')}")


# ── Service-to-service ────────────────────────────────────────────────


def require_webhook_token(request: Request) -> None:
    """Dependency: the workflow service authenticates with the shared token."""
    expected = settings.webhook_auth_token
    if not expected:
        return
    header = request.headers.get("authorization", "")
    if header != f"Bearer {expected}":
        logger.warning("Rejected webhook call from {}", request.client.host if request.client else "?")
        raise HTTPException(401, "Invalid webhook token")
