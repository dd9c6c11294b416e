"""Project data models.

Provides the SQLAlchemy model for projects created by authenticated accounts.
"""

from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from net.tessera.accounts.model.base import Base, str255

TITLE_MAX_LENGTH = 255


class Project(Base):
    """Titled record attributed to the account that created it."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id"), nullable=False
    )
    title: Mapped[str255]
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (Index("idx_projects_account_id", "account_id"),)
