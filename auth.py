"""Password hashing, session users and anonymous guest identity."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from bson import ObjectId
from fastapi import Request, Response
from passlib.context import CryptContext

from database import JsonStore
from errors import Unauthenticated
from schemas import PublicUser, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE = "xtube_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 14
GUEST_COOKIE = "xtube_guest"
GUEST_MAX_AGE = 60 * 60 * 24 * 365


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        logger.warning("Stored password hash is unreadable")
        return False


def new_id() -> str:
    return str(ObjectId())


def public_user(user: User, prefix: str = "/profile-pics") -> PublicUser:
    pic = f"{prefix}/{quote(user.profile_pic)}" if user.profile_pic else None
    return PublicUser(id=user.id, username=user.username, profile_pic_url=pic)


def login_session(request: Request, user: User) -> None:
    request.session["user_id"] = user.id


def logout_session(request: Request) -> None:
    request.session.clear()


def current_user(request: Request, store: JsonStore) -> Optional[User]:
    """Resolve the logged-in user, or None.

    A session pointing at a user that no longer exists degrades to no identity.
    """
    user_id = request.session.get("user_id")
    if not isinstance(user_id, str):
        return None
    with store.read() as data:
        user = data.find_user(user_id)
    if user is None:
        logger.info("Session refers to unknown user %s, ignoring", user_id)
    return user


def require_user(request: Request, store: JsonStore) -> User:
    user = current_user(request, store)
    if user is None:
        raise Unauthenticated("Authentication required")
    return user


def identity_key(request: Request, response: Response, user: Optional[User], secure: bool = False) -> str:
    """Return the key a reaction is recorded under.

    A guest cookie is issued on first interaction. Logged-in users are keyed
    by their user id.
    """
    guest_id = request.cookies.get(GUEST_COOKIE)
    if not guest_id:
        guest_id = new_id()
        response.set_cookie(
            GUEST_COOKIE,
            guest_id,
            max_age=GUEST_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=secure,
        )
    if user is not None:
        return user.id
    return guest_id
