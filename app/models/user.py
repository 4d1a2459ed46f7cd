import enum
from sqlalchemy import Column, Integer, String, Boolean, Enum, Index
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import TimestampMixin, enum_values


class UserRole(str, enum.Enum):
    USER = "user"
    SUBSCRIBER = "subscriber"
    DJ = "dj"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(UserRole, name="userrole", values_callable=enum_values), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, default=True, nullable=False)

    wallet = relationship("Wallet", back_populates="user", uselist=False)
    transactions = relationship("Transaction", back_populates="user")


Index("ix_users_role_active", User.role, User.is_active)
