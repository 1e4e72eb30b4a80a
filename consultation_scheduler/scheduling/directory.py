from sqlalchemy.orm import Session

from consultation_scheduler.models.user import ROLE_CLIENT, ROLE_CONSULTANT, User
from consultation_scheduler.scheduling.errors import NotFound


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound(f'User {user_id} not found.')
    return user


def require_consultant(db: Session, consultant_id: int) -> User:
    user = db.query(User).filter(User.id == consultant_id, User.role == ROLE_CONSULTANT).first()
    if user is None:
        raise NotFound(f'Consultant {consultant_id} not found.')
    return user


def require_client(db: Session, client_id: int) -> User:
    user = db.query(User).filter(User.id == client_id, User.role == ROLE_CLIENT).first()
    if user is None:
        raise NotFound(f'Client {client_id} not found.')
    return user
