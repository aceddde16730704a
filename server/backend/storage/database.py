# /backend/storage/database.py
"""
Relational storage on SQLAlchemy 2.0 async ORM.

Notes:
- One AsyncSession per call; committed on success, rolled back on error.
- ORM rows never leave this module: they are converted into the pydantic
  records from `api.schemes` while the session is still open.
- Reads log and degrade on SQLAlchemyError, writes log and raise StorageError.
"""

from __future__ import annotations

import functools
import logging
from decimal import Decimal
from typing import Any, Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from api.schemes import (
    MasterCopierConnection,
    NewMasterCopierConnection,
    NewReferralEarning,
    NewReferralLink,
    NewTradingAccount,
    ReferralEarning,
    ReferralLink,
    TradingAccount,
    User,
    UserUpsert,
)
from backend.db.functions import (
    build_engine,
    build_session_factory,
    dispose_engine,
    session_scope,
    setup_db,
)
from enums import EarningStatus
from helpers import format_money, generate_referral_code, new_id, utc_now
import models
from .base import Storage
from .exceptions import InvalidStatusTransition, StorageError

logger = logging.getLogger(__name__)

__all__ = ["DatabaseStorage"]

R = TypeVar("R", bound=BaseModel)


def _to_record(record_type: Type[R], row: models.Base) -> R:
    return record_type.model_validate(row.to_dict())


def _money(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _stamped(values: dict, *, updated: bool = True) -> dict:
    """Assign id and timestamps up front so the row is complete right after flush."""
    now = utc_now()
    values = {**values, "id": new_id(), "created_at": now}
    if updated:
        values["updated_at"] = now
    return values


def _read(what: str, default: Callable[[], Any]):
    """Log persistence failures on reads and return `default()` instead."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except SQLAlchemyError:
                logger.exception(
                    "Database error while fetching %s.", what,
                    extra={"operation": func.__name__},
                )
                return default()
        return wrapper
    return decorator


def _write(message: str):
    """Log persistence failures on writes and raise StorageError(message)."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.exception(message, extra={"operation": func.__name__, "error_type": type(e).__name__})
                raise StorageError(message) from e
        return wrapper
    return decorator


class DatabaseStorage(Storage):
    def __init__(
        self,
        database_url: str,
        *,
        create_tables: bool = True,
        engine: Optional[AsyncEngine] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.engine = engine or build_engine(database_url)
        self.create_tables = create_tables
        self._session_factory = build_session_factory(self.engine)

    def _session(self):
        return session_scope(self._session_factory)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def setup(self) -> None:
        await setup_db(self.engine, create_tables=self.create_tables)

    async def close(self) -> None:
        await dispose_engine(self.engine)

    # ---------------------------
    # Users
    # ---------------------------
    @_read("user", lambda: None)
    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as session:
            row = await session.get(models.User, user_id)
            return _to_record(User, row) if row else None

    @_read("user by referral code", lambda: None)
    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        async with self._session() as session:
            result = await session.execute(
                select(models.User).where(models.User.referral_code == referral_code)
            )
            row = result.scalar_one_or_none()
            return _to_record(User, row) if row else None

    async def _unique_referral_code(self, session: AsyncSession) -> str:
        while True:
            code = generate_referral_code()
            taken = await session.scalar(
                select(func.count()).select_from(models.User).where(models.User.referral_code == code)
            )
            if not taken:
                return code

    async def _upsert_user(self, data: UserUpsert) -> User:
        async with self._session() as session:
            row = await session.get(models.User, data.id)

            if row is not None:
                row.email = data.email
                row.first_name = data.first_name
                row.last_name = data.last_name
                row.profile_image_url = data.profile_image_url
                if row.referred_by is None and data.referred_by:
                    row.referred_by = data.referred_by
                row.updated_at = utc_now()
                await session.flush()
                logger.debug("User updated.", extra={"user_id": row.id})
                return _to_record(User, row)

            now = utc_now()
            row = models.User(
                **data.model_dump(exclude={"referral_code"}),
                referral_code=data.referral_code or await self._unique_referral_code(session),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            # the user and its default links commit together
            for link in self.default_referral_links(row.id):
                session.add(models.ReferralLink(**_stamped(link.model_dump(mode="json"))))
            await session.flush()
            logger.info("User created.", extra={"user_id": row.id})
            return _to_record(User, row)

    @_write("Failed to upsert user")
    async def upsert_user(self, data: UserUpsert) -> User:
        try:
            return await self._upsert_user(data)
        except IntegrityError:
            # Race: someone else inserted this user between lookup & commit
            if await self.get_user(data.id) is None:
                raise
            return await self._upsert_user(data)

    # ---------------------------
    # Trading accounts
    # ---------------------------
    @_read("trading accounts", list)
    async def get_trading_accounts(self, user_id: str) -> List[TradingAccount]:
        async with self._session() as session:
            result = await session.execute(
                select(models.TradingAccount)
                .where(models.TradingAccount.user_id == user_id)
                .order_by(models.TradingAccount.created_at.desc())
            )
            return [_to_record(TradingAccount, row) for row in result.scalars().all()]

    @_write("Failed to create trading account")
    async def create_trading_account(self, data: NewTradingAccount) -> TradingAccount:
        values = data.model_dump(mode="json")
        values["balance"] = _money(values["balance"])
        values["daily_pnl"] = _money(values["daily_pnl"])
        async with self._session() as session:
            row = models.TradingAccount(**_stamped(values))
            session.add(row)
            await session.flush()
            logger.debug("Trading account created.", extra={"user_id": row.user_id, "account_id": row.id})
            return _to_record(TradingAccount, row)

    @_write("Failed to update trading account balance")
    async def update_trading_account_balance(
        self,
        account_id: str,
        balance: str,
        daily_pnl: str,
        user_id: Optional[str] = None,
    ) -> bool:
        now = utc_now()
        stmt = (
            update(models.TradingAccount)
            .where(models.TradingAccount.id == account_id)
            .values(
                balance=Decimal(format_money(balance)),
                daily_pnl=Decimal(format_money(daily_pnl)),
                last_sync_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(models.TradingAccount.user_id == user_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    @_write("Failed to delete trading account")
    async def delete_trading_account(self, account_id: str, user_id: str) -> None:
        async with self._session() as session:
            result = await session.execute(
                delete(models.TradingAccount).where(
                    models.TradingAccount.id == account_id,
                    models.TradingAccount.user_id == user_id,
                ).execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                logger.debug("No owned trading account to delete.", extra={"user_id": user_id, "account_id": account_id})

    # ---------------------------
    # Referral earnings
    # ---------------------------
    @_read("referral earnings", list)
    async def get_referral_earnings(self, user_id: str) -> List[ReferralEarning]:
        async with self._session() as session:
            result = await session.execute(
                select(models.ReferralEarning)
                .where(models.ReferralEarning.referrer_id == user_id)
                .order_by(models.ReferralEarning.created_at.desc())
            )
            return [_to_record(ReferralEarning, row) for row in result.scalars().all()]

    @_write("Failed to create referral earning")
    async def create_referral_earning(self, data: NewReferralEarning) -> ReferralEarning:
        values = data.model_dump(mode="json")
        values["amount"] = _money(values["amount"])
        values["fee_percentage"] = _money(values["fee_percentage"])
        values = _stamped(values, updated=False)
        async with self._session() as session:
            row = models.ReferralEarning(
                **values,
                paid_at=values["created_at"] if values["status"] == EarningStatus.PAID.value else None,
            )
            session.add(row)
            await session.flush()
            return _to_record(ReferralEarning, row)

    @_write("Failed to update referral earning status")
    async def update_referral_earning_status(
        self,
        earning_id: str,
        status: EarningStatus,
        user_id: Optional[str] = None,
    ) -> Optional[ReferralEarning]:
        status = EarningStatus(status)
        async with self._session() as session:
            row = await session.get(models.ReferralEarning, earning_id)
            if row is None or (user_id is not None and row.referrer_id != user_id):
                return None
            current = EarningStatus(row.status or EarningStatus.PENDING)
            if not current.can_move_to(status):
                raise InvalidStatusTransition(current=current.value, requested=status.value)
            if current != status:
                row.status = status.value
                if status == EarningStatus.PAID:
                    row.paid_at = utc_now()
                await session.flush()
            return _to_record(ReferralEarning, row)

    @_read("total referral earnings", lambda: "0.00")
    async def get_total_referral_earnings(self, user_id: str) -> str:
        async with self._session() as session:
            total = await session.scalar(
                select(func.coalesce(func.sum(models.ReferralEarning.amount), 0)).where(
                    models.ReferralEarning.referrer_id == user_id,
                    models.ReferralEarning.status == EarningStatus.PAID.value,
                )
            )
            return format_money(total)

    @_read("referral count", lambda: 0)
    async def get_referral_count(self, user_id: str) -> int:
        async with self._session() as session:
            count = await session.scalar(
                select(func.count(distinct(models.ReferralEarning.referred_user_id))).where(
                    models.ReferralEarning.referrer_id == user_id
                )
            )
            return int(count or 0)

    # ---------------------------
    # Master copier connections
    # ---------------------------
    @_read("master copier connections", list)
    async def get_master_copier_connections(self, user_id: str) -> List[MasterCopierConnection]:
        async with self._session() as session:
            result = await session.execute(
                select(models.MasterCopierConnection)
                .where(models.MasterCopierConnection.user_id == user_id)
                .order_by(models.MasterCopierConnection.created_at.desc())
            )
            return [_to_record(MasterCopierConnection, row) for row in result.scalars().all()]

    @_write("Failed to create master copier connection")
    async def create_master_copier_connection(
        self, data: NewMasterCopierConnection
    ) -> MasterCopierConnection:
        values = data.model_dump(mode="json")
        values["copy_ratio"] = _money(values["copy_ratio"])
        async with self._session() as session:
            owned = await session.scalar(
                select(func.count()).select_from(models.TradingAccount).where(
                    models.TradingAccount.id == data.trading_account_id,
                    models.TradingAccount.user_id == data.user_id,
                )
            )
            if not owned:
                logger.error(
                    "Trading account does not belong to user.",
                    extra={"user_id": data.user_id, "account_id": data.trading_account_id},
                )
                raise StorageError("Failed to create master copier connection")
            row = models.MasterCopierConnection(**_stamped(values))
            session.add(row)
            await session.flush()
            return _to_record(MasterCopierConnection, row)

    @_write("Failed to update master copier status")
    async def update_master_copier_status(
        self,
        connection_id: str,
        is_active: bool,
        user_id: Optional[str] = None,
    ) -> bool:
        stmt = (
            update(models.MasterCopierConnection)
            .where(models.MasterCopierConnection.id == connection_id)
            .values(is_active=is_active, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(models.MasterCopierConnection.user_id == user_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    # ---------------------------
    # Referral links
    # ---------------------------
    @_read("referral links", list)
    async def get_referral_links(self, user_id: str) -> List[ReferralLink]:
        async with self._session() as session:
            result = await session.execute(
                select(models.ReferralLink)
                .where(models.ReferralLink.user_id == user_id)
                .order_by(models.ReferralLink.broker)
            )
            return [_to_record(ReferralLink, row) for row in result.scalars().all()]

    @_write("Failed to create referral link")
    async def create_referral_link(self, data: NewReferralLink) -> ReferralLink:
        async with self._session() as session:
            row = models.ReferralLink(**_stamped(data.model_dump(mode="json")))
            session.add(row)
            await session.flush()
            return _to_record(ReferralLink, row)

    @_write("Failed to update referral link stats")
    async def update_referral_link_stats(
        self,
        link_id: str,
        clicks: Optional[int] = None,
        conversions: Optional[int] = None,
    ) -> bool:
        values: dict = {"updated_at": utc_now()}
        if clicks is not None:
            values["click_count"] = models.ReferralLink.click_count + clicks
        if conversions is not None:
            values["conversion_count"] = models.ReferralLink.conversion_count + conversions
        async with self._session() as session:
            result = await session.execute(
                update(models.ReferralLink)
                .where(models.ReferralLink.id == link_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
