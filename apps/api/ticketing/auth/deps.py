from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketing.auth.jwt import verify_access_token
from ticketing.core.config import settings
from ticketing.db import get_db
from ticketing.models import User

DBSession = Annotated[Session, Depends(get_db)]


def _unauthorized(detail: str = "unauthorized") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _dev_user(db: Session, token: str) -> User:
    prefix = settings.dev_auth_prefix
    if not token.startswith(prefix):
        raise _unauthorized(f"invalid dev token (expected prefix {prefix})")

    email = token.removeprefix(prefix).strip()
    if "@" not in email:
        raise _unauthorized("invalid email in token")

    user = db.scalar(select(User).where(User.email == email))
    if not user:
        user = User(email=email, name=None)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_current_user(request: Request, db: DBSession) -> User:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise _unauthorized("missing bearer token")

    token = auth.removeprefix("Bearer ").strip()

    # Local dev auth only
    if settings.auth_mode == "dev" and settings.env == "local":
        return _dev_user(db, token)

    if settings.auth_mode != "jwt":
        raise _unauthorized("auth not configured")

    try:
        claims = verify_access_token(token)
        user_id = uuid.UUID(str(claims["sub"]))
    except (ValueError, KeyError):
        raise _unauthorized("invalid access token") from None

    user = db.get(User, user_id)
    if not user:
        raise _unauthorized("user not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
