# models.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, TypeVar

try:
    from typing_extensions import dataclass_transform
except ImportError:
    from typing import dataclass_transform

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    inspect,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from enums import CopyStatus, EarningStatus
from helpers import new_id, utc_now


# Naming conventions help Alembic autogenerate stable, portable constraint names
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


T = TypeVar("T", bound="Base")


@dataclass_transform(kw_only_default=True)
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models with extra utilities."""

    __abstract__ = True  # Do not create a table for Base
    metadata = metadata

    def to_dict(self) -> Dict[str, Any]:
        """Convert the column attributes into a dict. Relationships are skipped
        so no lazy load is triggered outside of the session."""
        mapper = inspect(self.__class__)
        return {attr.key: getattr(self, attr.key) for attr in mapper.column_attrs}

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"<{self.__class__.__name__}({values})>"


# --------------------
# Helper column factories
# --------------------

def STRING_PK() -> Mapped[str]:
    """Create a random hex string primary key column."""
    return mapped_column(String(64), primary_key=True, default=new_id)


def STRING_FK(
    target: str,
    *,
    nullable: bool = False,
    ondelete: Optional[str] = None,
) -> Mapped[Optional[str]] | Mapped[str]:
    """Create a string foreign key column."""
    return mapped_column(
        String(255),
        ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
        index=True,
    )


def DATETIME_NOW() -> Mapped[datetime]:
    """Create a datetime column with default UTC now."""
    return mapped_column(
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP")
    )


def DATETIME_AUTO_UPDATE() -> Mapped[datetime]:
    """Create a datetime column that auto-updates on modification."""
    return mapped_column(
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        server_default=text("CURRENT_TIMESTAMP")
    )


def MONEY(default: str = "0.00") -> Mapped[Optional[Decimal]]:
    """Create a 2-decimal money column (15,2 precision)."""
    return mapped_column(Numeric(15, 2), nullable=True, default=Decimal(default))


def PERCENTAGE(default: str) -> Mapped[Optional[Decimal]]:
    """Create a percentage/ratio column (5,2 precision)."""
    return mapped_column(Numeric(5, 2), nullable=True, default=Decimal(default))


# --------------------
# Models
# --------------------

class User(Base):
    __tablename__ = "users"

    # Primary key is the identity provider's subject id
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Core fields
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    referred_by: Mapped[Optional[str]] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = DATETIME_NOW()
    updated_at: Mapped[datetime] = DATETIME_AUTO_UPDATE()

    # Relationships
    trading_accounts: Mapped[List[TradingAccount]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    referral_links: Mapped[List[ReferralLink]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r})"


class TradingAccount(Base):
    __tablename__ = "trading_accounts"

    # Primary key
    id: Mapped[str] = STRING_PK()

    # Core fields
    broker: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    balance: Mapped[Optional[Decimal]] = MONEY()
    daily_pnl: Mapped[Optional[Decimal]] = MONEY()
    copy_status: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, default=CopyStatus.INACTIVE.value
    )
    is_connected: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=True)
    api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = DATETIME_NOW()
    updated_at: Mapped[datetime] = DATETIME_AUTO_UPDATE()

    # Foreign keys
    user_id: Mapped[str] = STRING_FK("users.id", ondelete="CASCADE")

    # Relationships
    user: Mapped[User] = relationship(
        back_populates="trading_accounts",
        uselist=False,
        lazy="select",
    )

    master_copier_connections: Mapped[List[MasterCopierConnection]] = relationship(
        back_populates="trading_account",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    __table_args__ = (
        Index("idx_trading_accounts_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"TradingAccount(id={self.id!r}, user_id={self.user_id!r}, broker={self.broker!r})"


class ReferralEarning(Base):
    __tablename__ = "referral_earnings"

    # Primary key
    id: Mapped[str] = STRING_PK()

    # Core fields
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    fee_percentage: Mapped[Optional[Decimal]] = PERCENTAGE("10.00")
    broker: Mapped[str] = mapped_column(String(32), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(
        String(16), nullable=True, default=EarningStatus.PENDING.value, index=True
    )
    created_at: Mapped[datetime] = DATETIME_NOW()
    paid_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Foreign keys
    referrer_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    referred_user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        Index("idx_referral_earnings_referrer_created", "referrer_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"ReferralEarning(id={self.id!r}, referrer_id={self.referrer_id!r}, status={self.status!r})"


class MasterCopierConnection(Base):
    __tablename__ = "master_copier_connections"

    # Primary key
    id: Mapped[str] = STRING_PK()

    # Core fields
    master_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    copy_ratio: Mapped[Optional[Decimal]] = PERCENTAGE("1.00")
    is_active: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=True)
    created_at: Mapped[datetime] = DATETIME_NOW()
    updated_at: Mapped[datetime] = DATETIME_AUTO_UPDATE()

    # Foreign keys
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trading_account_id: Mapped[str] = STRING_FK("trading_accounts.id", ondelete="CASCADE")

    # Relationships
    trading_account: Mapped[TradingAccount] = relationship(
        back_populates="master_copier_connections",
        uselist=False,
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"MasterCopierConnection(id={self.id!r}, user_id={self.user_id!r}, "
            f"master_account_id={self.master_account_id!r})"
        )


class ReferralLink(Base):
    __tablename__ = "referral_links"

    # Primary key
    id: Mapped[str] = STRING_PK()

    # Core fields
    broker: Mapped[str] = mapped_column(String(32), nullable=False)
    referral_url: Mapped[str] = mapped_column(Text, nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=True)
    created_at: Mapped[datetime] = DATETIME_NOW()
    updated_at: Mapped[datetime] = DATETIME_AUTO_UPDATE()

    # Foreign keys
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Relationships
    user: Mapped[User] = relationship(
        back_populates="referral_links",
        uselist=False,
        lazy="select",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "broker", name="uq_referral_links_user_broker"),
    )

    def __repr__(self) -> str:
        return f"ReferralLink(id={self.id!r}, user_id={self.user_id!r}, broker={self.broker!r})"
