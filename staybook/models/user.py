"""User model.

The identity service owns users; this table mirrors the fields the booking
core needs (contact details for notifications, role for authorization).
"""

import enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, TimestampMixin, str_enum


class UserRole(enum.StrEnum):
    """Platform roles."""

    GUEST = "guest"
    HOTEL = "hotel"
    ADMIN = "admin"
    SYSTEM = "system"  # scheduled jobs, never issued in a token


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50))
    role: Mapped[UserRole] = mapped_column(str_enum(UserRole, "user_role"), default=UserRole.GUEST, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.email}>"
