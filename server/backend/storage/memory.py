# /backend/storage/memory.py
"""
Process-local storage used when no database is configured.

All state lives on the instance (construct one at startup, drop it at
shutdown); nothing survives a restart. Single-step operations run without an
``await`` between read and write, so the event loop already serialises them.
User creation spans several steps and takes `_lock`.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, TypeVar

from pydantic import BaseModel

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
from enums import EarningStatus
from helpers import format_money, generate_referral_code, new_id, to_decimal, utc_now
from .base import Storage
from .exceptions import InvalidStatusTransition, StorageError

logger = logging.getLogger(__name__)

__all__ = ["MemoryStorage"]

R = TypeVar("R", bound=BaseModel)


def _newest_first(records: Iterable[R]) -> List[R]:
    # reversed() keeps the later insert first when timestamps tie
    return sorted(reversed(list(records)), key=lambda r: r.created_at, reverse=True)


class MemoryStorage(Storage):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._users: Dict[str, User] = {}
        self._trading_accounts: Dict[str, TradingAccount] = {}
        self._referral_earnings: Dict[str, ReferralEarning] = {}
        self._master_copier_connections: Dict[str, MasterCopierConnection] = {}
        self._referral_links: Dict[str, ReferralLink] = {}
        self._lock = asyncio.Lock()

    async def setup(self) -> None:
        logger.warning("No DATABASE_URL configured; using in-memory storage (data is lost on restart).")

    # ---------------------------
    # Users
    # ---------------------------
    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        for user in self._users.values():
            if user.referral_code == referral_code:
                return user.model_copy()
        return None

    def _user_exists(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self._users

    def _referral_code_taken(self, code: str, owner_id: str) -> bool:
        return any(u.referral_code == code and u.id != owner_id for u in self._users.values())

    def _unique_referral_code(self) -> str:
        code = generate_referral_code()
        while self._referral_code_taken(code, owner_id=""):
            code = generate_referral_code()
        return code

    async def upsert_user(self, data: UserUpsert) -> User:
        async with self._lock:
            existing = self._users.get(data.id)
            now = utc_now()

            if data.referred_by and data.referred_by != data.id and not self._user_exists(data.referred_by):
                if existing is None or existing.referred_by is None:
                    logger.error("Referring user does not exist.", extra={"user_id": data.id, "referred_by": data.referred_by})
                    raise StorageError("Failed to upsert user")

            if existing is not None:
                user = existing.model_copy(update={
                    "email": data.email,
                    "first_name": data.first_name,
                    "last_name": data.last_name,
                    "profile_image_url": data.profile_image_url,
                    "referred_by": existing.referred_by or data.referred_by,
                    "updated_at": now,
                })
                self._users[user.id] = user
                logger.debug("User updated.", extra={"user_id": user.id})
                return user.model_copy()

            if data.referral_code and self._referral_code_taken(data.referral_code, data.id):
                logger.error("Referral code already in use.", extra={"user_id": data.id})
                raise StorageError("Failed to upsert user")

            user = User(
                **data.model_dump(exclude={"referral_code"}),
                referral_code=data.referral_code or self._unique_referral_code(),
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user

            # the user and its default links are created together
            try:
                for link in self.default_referral_links(user.id):
                    await self.create_referral_link(link)
            except StorageError as e:
                del self._users[user.id]
                for link_id in [l.id for l in self._referral_links.values() if l.user_id == user.id]:
                    del self._referral_links[link_id]
                raise StorageError("Failed to upsert user") from e

            logger.info("User created.", extra={"user_id": user.id})
            return user.model_copy()

    # ---------------------------
    # Trading accounts
    # ---------------------------
    async def get_trading_accounts(self, user_id: str) -> List[TradingAccount]:
        return [
            a.model_copy()
            for a in _newest_first(self._trading_accounts.values())
            if a.user_id == user_id
        ]

    async def create_trading_account(self, data: NewTradingAccount) -> TradingAccount:
        if not self._user_exists(data.user_id):
            logger.error("Trading account owner does not exist.", extra={"user_id": data.user_id})
            raise StorageError("Failed to create trading account")
        now = utc_now()
        account = TradingAccount(
            **data.model_dump(mode="json"),
            id=new_id(),
            last_sync_at=None,
            created_at=now,
            updated_at=now,
        )
        self._trading_accounts[account.id] = account
        logger.debug("Trading account created.", extra={"user_id": account.user_id, "account_id": account.id})
        return account.model_copy()

    async def update_trading_account_balance(
        self,
        account_id: str,
        balance: str,
        daily_pnl: str,
        user_id: Optional[str] = None,
    ) -> bool:
        account = self._trading_accounts.get(account_id)
        if account is None or (user_id is not None and account.user_id != user_id):
            return False
        now = utc_now()
        self._trading_accounts[account_id] = account.model_copy(update={
            "balance": format_money(balance),
            "daily_pnl": format_money(daily_pnl),
            "last_sync_at": now,
            "updated_at": now,
        })
        return True

    async def delete_trading_account(self, account_id: str, user_id: str) -> None:
        account = self._trading_accounts.get(account_id)
        if account is None or account.user_id != user_id:
            logger.debug("No owned trading account to delete.", extra={"user_id": user_id, "account_id": account_id})
            return
        del self._trading_accounts[account_id]
        # mirror ON DELETE CASCADE
        for connection_id in [
            c.id for c in self._master_copier_connections.values() if c.trading_account_id == account_id
        ]:
            del self._master_copier_connections[connection_id]

    # ---------------------------
    # Referral earnings
    # ---------------------------
    async def get_referral_earnings(self, user_id: str) -> List[ReferralEarning]:
        return [
            e.model_copy()
            for e in _newest_first(self._referral_earnings.values())
            if e.referrer_id == user_id
        ]

    async def create_referral_earning(self, data: NewReferralEarning) -> ReferralEarning:
        if not (self._user_exists(data.referrer_id) and self._user_exists(data.referred_user_id)):
            logger.error(
                "Referrer or referred user does not exist.",
                extra={"user_id": data.referrer_id, "referred_user_id": data.referred_user_id},
            )
            raise StorageError("Failed to create referral earning")
        now = utc_now()
        earning = ReferralEarning(
            **data.model_dump(mode="json"),
            id=new_id(),
            created_at=now,
            paid_at=now if data.status == EarningStatus.PAID else None,
        )
        self._referral_earnings[earning.id] = earning
        return earning.model_copy()

    async def update_referral_earning_status(
        self,
        earning_id: str,
        status: EarningStatus,
        user_id: Optional[str] = None,
    ) -> Optional[ReferralEarning]:
        earning = self._referral_earnings.get(earning_id)
        if earning is None or (user_id is not None and earning.referrer_id != user_id):
            return None
        current = EarningStatus(earning.status or EarningStatus.PENDING)
        status = EarningStatus(status)
        if not current.can_move_to(status):
            raise InvalidStatusTransition(current=current.value, requested=status.value)
        if current == status:
            return earning.model_copy()
        updated = earning.model_copy(update={
            "status": status.value,
            "paid_at": utc_now() if status == EarningStatus.PAID else earning.paid_at,
        })
        self._referral_earnings[earning_id] = updated
        return updated.model_copy()

    async def get_total_referral_earnings(self, user_id: str) -> str:
        total = sum(
            (to_decimal(e.amount) for e in self._referral_earnings.values()
             if e.referrer_id == user_id and e.status == EarningStatus.PAID.value),
            Decimal("0"),
        )
        return format_money(total)

    async def get_referral_count(self, user_id: str) -> int:
        return len({
            e.referred_user_id for e in self._referral_earnings.values() if e.referrer_id == user_id
        })

    # ---------------------------
    # Master copier connections
    # ---------------------------
    async def get_master_copier_connections(self, user_id: str) -> List[MasterCopierConnection]:
        return [
            c.model_copy()
            for c in _newest_first(self._master_copier_connections.values())
            if c.user_id == user_id
        ]

    async def create_master_copier_connection(
        self, data: NewMasterCopierConnection
    ) -> MasterCopierConnection:
        account = self._trading_accounts.get(data.trading_account_id)
        if account is None or account.user_id != data.user_id:
            logger.error(
                "Trading account does not belong to user.",
                extra={"user_id": data.user_id, "account_id": data.trading_account_id},
            )
            raise StorageError("Failed to create master copier connection")
        now = utc_now()
        connection = MasterCopierConnection(
            **data.model_dump(mode="json"),
            id=new_id(),
            created_at=now,
            updated_at=now,
        )
        self._master_copier_connections[connection.id] = connection
        return connection.model_copy()

    async def update_master_copier_status(
        self,
        connection_id: str,
        is_active: bool,
        user_id: Optional[str] = None,
    ) -> bool:
        connection = self._master_copier_connections.get(connection_id)
        if connection is None or (user_id is not None and connection.user_id != user_id):
            return False
        self._master_copier_connections[connection_id] = connection.model_copy(update={
            "is_active": is_active,
            "updated_at": utc_now(),
        })
        return True

    # ---------------------------
    # Referral links
    # ---------------------------
    async def get_referral_links(self, user_id: str) -> List[ReferralLink]:
        links = [l for l in self._referral_links.values() if l.user_id == user_id]
        return [l.model_copy() for l in sorted(links, key=lambda l: l.broker)]

    async def create_referral_link(self, data: NewReferralLink) -> ReferralLink:
        if not self._user_exists(data.user_id):
            logger.error("Referral link owner does not exist.", extra={"user_id": data.user_id})
            raise StorageError("Failed to create referral link")
        if any(l.user_id == data.user_id and l.broker == data.broker for l in self._referral_links.values()):
            logger.error(
                "Referral link already exists for broker.",
                extra={"user_id": data.user_id, "broker": data.broker},
            )
            raise StorageError("Failed to create referral link")
        now = utc_now()
        link = ReferralLink(
            **data.model_dump(mode="json"),
            id=new_id(),
            created_at=now,
            updated_at=now,
        )
        self._referral_links[link.id] = link
        return link.model_copy()

    async def update_referral_link_stats(
        self,
        link_id: str,
        clicks: Optional[int] = None,
        conversions: Optional[int] = None,
    ) -> bool:
        link = self._referral_links.get(link_id)
        if link is None:
            return False
        update = {"updated_at": utc_now()}
        if clicks is not None:
            update["click_count"] = (link.click_count or 0) + clicks
        if conversions is not None:
            update["conversion_count"] = (link.conversion_count or 0) + conversions
        self._referral_links[link_id] = link.model_copy(update=update)
        return True
