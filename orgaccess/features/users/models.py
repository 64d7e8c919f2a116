"""
User model with ULID primary keys.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from orgaccess.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    User model.

    Organization and team memberships live in the membership tables of the
    access_control feature and are always read fresh from the database.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
