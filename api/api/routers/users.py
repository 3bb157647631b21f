"""Account registration, credential checks and the caller's own profile."""

from __future__ import annotations

import logging

from consent_engine.models.user import UserCreate
from fastapi import APIRouter, HTTPException

from api.dependencies import ClockDep, CurrentUserDep, StoreDep
from api.schemas import LoginRequest, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201)
async def register_user(body: UserCreate, store: StoreDep, clock: ClockDep) -> UserResponse:
    """Create an account.  The password is stored as a bcrypt hash.

    New accounts have no subscription and cannot open sessions until a
    Stripe checkout completes.
    """
    user = await store.create_user(body, created_at=clock())
    logger.info("Registered user %s", user.id)
    return UserResponse.from_user(user)


@router.post("/login")
async def login(body: LoginRequest, store: StoreDep) -> UserResponse:
    """Check a username and password and return the matching profile.

    No token or cookie is issued; the upstream gateway owns the browser
    session and forwards the returned ``id`` as the identity header.
    Unknown usernames and wrong passwords get the same 401.
    """
    user = await store.authenticate(body.username, body.password)
    if user is None:
        logger.info("Failed login for username %r", body.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    logger.info("User %s logged in", user.id)
    return UserResponse.from_user(user)


@router.get("/me")
async def get_me(user: CurrentUserDep) -> UserResponse:
    """Return the authenticated user's profile and subscription state."""
    return UserResponse.from_user(user)
