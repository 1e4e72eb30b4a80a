"""User model definitions."""

from sqlalchemy import Column, Integer, String
from consultation_scheduler.database import Base

ROLE_CONSULTANT = "consultant"
ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"


class User(Base):
    """Represents an entry in the consultant/client directory."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # consultant/client/admin
