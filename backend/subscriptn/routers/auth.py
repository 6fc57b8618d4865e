"""
Authentication API endpoints.

Handles registration, login and logout, and the session cookie dependencies
the other routers use.
"""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
from typing import Optional

from subscriptn.config import get_settings
from subscriptn.database import get_db
from subscriptn.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from subscriptn.models import User, ROLE_PROVIDER
from subscriptn.schemas import AuthResponse, User as UserResponse, UserLogin, UserRegister
from subscriptn.services.auth import (
    authenticate_user,
    create_session_token,
    create_user,
    decode_session_token,
    get_user_by_id,
)
from subscriptn.services.rate_limiter import auth_rate_limiter, rate_limit

settings = get_settings()
router = APIRouter(prefix="/auth", tags=["auth"])

auth_limit = rate_limit(auth_rate_limiter, "Too many authentication attempts. Please try again later.")


# ============== Dependencies ==============

def _session_user_id(request: Request) -> Optional[int]:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    return decode_session_token(token)


async def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Get the current authenticated user (optional)."""
    user_id = _session_user_id(request)
    if user_id is None:
        return None
    return get_user_by_id(db, user_id)


async def require_auth(request: Request, db: Session = Depends(get_db)) -> User:
    """Require a valid session - raises 401 otherwise."""
    user_id = _session_user_id(request)
    if user_id is None:
        raise AuthenticationError()

    user = get_user_by_id(db, user_id)
    if user is None:
        raise AuthenticationError("Invalid session")
    return user


async def require_known_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Like require_auth, but a session for a user that no longer exists is a 404."""
    user_id = _session_user_id(request)
    if user_id is None:
        raise AuthenticationError()

    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def require_provider(user: User = Depends(require_auth)) -> User:
    """Require the provider role - raises 403 for shop owners."""
    if user.role != ROLE_PROVIDER:
        raise AuthorizationError("Provider role required")
    return user


# ============== Endpoints ==============

@router.post("/register", response_model=AuthResponse, dependencies=[Depends(auth_limit)])
def register(data: UserRegister, db: Session = Depends(get_db)):
    """
    Register a new user account.

    - **username**: 3-50 letters, digits, `_` or `-`
    - **password**: at least 6 characters
    - **role**: `provider` or `shop_owner`
    """
    user = create_user(db, data.username, data.password, data.role)
    return {"success": True, "user": user}


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(auth_limit)])
def login(data: UserLogin, response: Response, db: Session = Depends(get_db)):
    """
    Login with username and password.

    Sets an httpOnly session cookie valid for 7 days.
    """
    user = authenticate_user(db, data.username, data.password)
    if not user:
        raise AuthenticationError("Invalid username or password")

    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_token(user.id),
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return {"success": True, "user": user}


@router.post("/logout")
def logout(response: Response):
    """Clear the session cookie."""
    response.delete_cookie(key=settings.session_cookie_name, path="/")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
def get_me(user: User = Depends(require_auth)):
    """Get the current authenticated user's profile."""
    return user
