import asyncio
import logging
from typing import Any, Callable
from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from niramay.core.config import settings
from niramay.core.database import get_db
from niramay.models import Profile
from niramay.schemas.schemas import Role
from niramay.services.auth import ensure_profile, get_auth_user
from niramay.services.maps import MapsService
from niramay.services.realtime import RosterBroadcaster

logger = logging.getLogger(__name__)

# This tells FastAPI to look for the "Authorization: Bearer <token>" header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/sign-in/")

_UNAUTHORIZED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials. Please log in again.",
    headers={"WWW-Authenticate": "Bearer"},
)


async def resolve_auth_user(token: str) -> Any:
    """Validates the token with Supabase, racing it against AUTH_TIMEOUT_SECONDS.
    A timeout counts as no session."""
    try:
        return await asyncio.wait_for(run_in_threadpool(get_auth_user, token), timeout=settings.AUTH_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Session lookup timed out after %ss", settings.AUTH_TIMEOUT_SECONDS)
        raise _UNAUTHORIZED
    except Exception as e:
        logger.error(f"Token validation failed: {str(e)}")
        raise _UNAUTHORIZED


async def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Profile:
    """Returns the profile of the bearer of the Supabase JWT, creating it on first login."""
    auth_user = await resolve_auth_user(token)
    return ensure_profile(db, auth_user)


def require_role(*roles: Role) -> Callable[..., Profile]:
    allowed = {r.value for r in roles}

    def checker(current_user: Profile = Depends(get_current_user)) -> Profile:
        if current_user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have access to this resource.")
        return current_user

    return checker


def get_maps(request: Request) -> MapsService:
    return request.app.state.maps


def get_broadcaster(request: Request) -> RosterBroadcaster:
    return request.app.state.roster
