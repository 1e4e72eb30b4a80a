from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from consultation_scheduler.auth import jwt_handler
from consultation_scheduler.database import get_db
from consultation_scheduler.models.user import ROLE_ADMIN, ROLE_CONSULTANT, User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    try:
        claims = jwt_handler.decode_access_token(credentials.credentials)
    except jwt_handler.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = (claims.get("sub") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    # a role baked into an older token must still match the directory
    if claims.get("role") and claims["role"] != user.role:
        raise HTTPException(status_code=401, detail="Token role is out of date")
    return user


def ensure_can_plan(user: User, consultant_id: int) -> None:
    if user.role == ROLE_ADMIN:
        return
    if user.role != ROLE_CONSULTANT or user.id != consultant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the consultant can edit their own availability.",
        )


def ensure_session_party(user: User, session) -> None:
    if user.role == ROLE_ADMIN:
        return
    if user.id not in (session.client_id, session.consultant_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the client or consultant of this session can change it.",
        )
