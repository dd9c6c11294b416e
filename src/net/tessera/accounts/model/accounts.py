"""Account data models for password based authentication.

Provides the SQLAlchemy model mapping a unique handle to a one-way hashed secret,
along with the optional third-party handle attached through account linking.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from net.tessera.accounts.model.base import Base, str30, str128

HANDLE_MAX_LENGTH = 30


class Account(Base):
    """Registered account identified by a unique handle.

    The identifier is assigned by the store in insertion order. The secret is only
    ever stored as a salted bcrypt hash. Accounts are never deleted by this service;
    the only mutation is attaching a linked third-party handle.
    """

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    handle: Mapped[str30]
    secret_hash: Mapped[str128]
    linked_handle: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    linked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (Index("idx_accounts_handle", "handle", unique=True),)
