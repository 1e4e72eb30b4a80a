from datetime import datetime, timedelta, timezone

import jwt

from consultation_scheduler.core import config

InvalidTokenError = jwt.PyJWTError


def create_access_token(subject: str, role: str | None = None, expires_minutes: int | None = None) -> str:
    lifetime = timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    issued_at = datetime.now(timezone.utc)
    claims = {"sub": subject, "iat": issued_at, "exp": issued_at + lifetime}
    if role:
        claims["role"] = role
    return jwt.encode(claims, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def token_for_user(user, expires_minutes: int | None = None) -> str:
    return create_access_token(user.email, role=user.role, expires_minutes=expires_minutes)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": ["exp", "sub"]},
    )
