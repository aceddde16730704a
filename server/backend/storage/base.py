# /backend/storage/base.py
"""
The storage contract shared by every backend.

Two implementations live next to this module:

- `DatabaseStorage` (SQLAlchemy 2.0 async ORM) for configured databases.
- `MemoryStorage` (process-local dicts) when no DATABASE_URL is set.

Both must behave identically. Every child record is owned by exactly one
user and every user-facing read/write is scoped by that user's id.

Failure policy
--------------
- Reads swallow persistence errors: they are logged and an empty list,
  ``None``, ``"0.00"`` or ``0`` is returned.
- Writes log and raise `StorageError`.
"""

from __future__ import annotations

import abc
from typing import List, Optional

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
from cfg import BYBIT_PARTNER_CODE
from enums import Broker, EarningStatus
from helpers import generate_referral_code

__all__ = ["Storage", "default_referral_links"]


def default_referral_links(user_id: str, bybit_partner_code: str = BYBIT_PARTNER_CODE) -> List[NewReferralLink]:
    """
    Links provisioned for every new user, one per supported broker.

    exness and binance embed a freshly generated code; bybit points at the
    fixed partner page.
    """
    return [
        NewReferralLink(
            user_id=user_id,
            broker=Broker.EXNESS,
            referral_url=f"https://one.exness.link/a/{generate_referral_code().lower()}",
        ),
        NewReferralLink(
            user_id=user_id,
            broker=Broker.BYBIT,
            referral_url=f"https://partner.bybit.com/b/{bybit_partner_code}",
        ),
        NewReferralLink(
            user_id=user_id,
            broker=Broker.BINANCE,
            referral_url=f"https://accounts.binance.com/register?ref={generate_referral_code()}",
        ),
    ]


class Storage(abc.ABC):
    """Async repository over users, trading accounts, referrals and copier links."""

    def __init__(self, bybit_partner_code: str = BYBIT_PARTNER_CODE) -> None:
        self.bybit_partner_code = bybit_partner_code

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def setup(self) -> None:
        """Prepare the backend. Called once at application startup."""

    async def close(self) -> None:
        """Release backend resources. Called once at shutdown."""

    # ---------------------------
    # Users
    # ---------------------------
    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abc.abstractmethod
    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]: ...

    @abc.abstractmethod
    async def upsert_user(self, data: UserUpsert) -> User:
        """
        Insert or update a user by id.

        A referral code is generated when neither the stored row nor `data`
        carries one. The stored referral code, `referred_by` and `created_at`
        of an existing user are never overwritten. The first insert also
        provisions the default referral links, all or nothing. A `referred_by`
        naming an unknown user raises StorageError.
        """

    # ---------------------------
    # Trading accounts
    # ---------------------------
    @abc.abstractmethod
    async def get_trading_accounts(self, user_id: str) -> List[TradingAccount]: ...

    @abc.abstractmethod
    async def create_trading_account(self, data: NewTradingAccount) -> TradingAccount: ...

    @abc.abstractmethod
    async def update_trading_account_balance(
        self,
        account_id: str,
        balance: str,
        daily_pnl: str,
        user_id: Optional[str] = None,
    ) -> bool:
        """Overwrite balance and daily P&L, stamp last_sync_at. Returns False if nothing matched."""

    @abc.abstractmethod
    async def delete_trading_account(self, account_id: str, user_id: str) -> None:
        """Delete an account owned by `user_id`; a no-op for anybody else's account."""

    # ---------------------------
    # Referral earnings
    # ---------------------------
    @abc.abstractmethod
    async def get_referral_earnings(self, user_id: str) -> List[ReferralEarning]:
        """Earnings where `user_id` is the referrer, newest first."""

    @abc.abstractmethod
    async def create_referral_earning(self, data: NewReferralEarning) -> ReferralEarning: ...

    @abc.abstractmethod
    async def update_referral_earning_status(
        self,
        earning_id: str,
        status: EarningStatus,
        user_id: Optional[str] = None,
    ) -> Optional[ReferralEarning]:
        """Move an earning forward (pending -> paid | cancelled). Raises InvalidStatusTransition."""

    @abc.abstractmethod
    async def get_total_referral_earnings(self, user_id: str) -> str:
        """Sum of paid earnings formatted to two decimals."""

    @abc.abstractmethod
    async def get_referral_count(self, user_id: str) -> int:
        """Number of distinct referred users."""

    # ---------------------------
    # Master copier connections
    # ---------------------------
    @abc.abstractmethod
    async def get_master_copier_connections(self, user_id: str) -> List[MasterCopierConnection]: ...

    @abc.abstractmethod
    async def create_master_copier_connection(
        self, data: NewMasterCopierConnection
    ) -> MasterCopierConnection: ...

    @abc.abstractmethod
    async def update_master_copier_status(
        self,
        connection_id: str,
        is_active: bool,
        user_id: Optional[str] = None,
    ) -> bool: ...

    # ---------------------------
    # Referral links
    # ---------------------------
    @abc.abstractmethod
    async def get_referral_links(self, user_id: str) -> List[ReferralLink]:
        """Links ordered by broker."""

    @abc.abstractmethod
    async def create_referral_link(self, data: NewReferralLink) -> ReferralLink: ...

    @abc.abstractmethod
    async def update_referral_link_stats(
        self,
        link_id: str,
        clicks: Optional[int] = None,
        conversions: Optional[int] = None,
    ) -> bool:
        """Add `clicks` / `conversions` to the stored counters."""

    # ---------------------------
    # Helpers
    # ---------------------------
    def default_referral_links(self, user_id: str) -> List[NewReferralLink]:
        return default_referral_links(user_id, self.bybit_partner_code)
