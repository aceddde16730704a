# /backend/dashboard.py
"""
Dashboard aggregation: everything the dashboard shows, computed on read.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Iterable, Optional

from api.schemes import DashboardResponse, TradingAccount
from backend.storage.base import Storage
from helpers import format_money, to_decimal

logger = logging.getLogger(__name__)

RECENT_EARNINGS_LIMIT = 5


def sum_money(values: Iterable[Optional[str]]) -> str:
    """Decimal sum of stored decimal-as-text values; missing values count as zero."""
    return format_money(sum((to_decimal(v) for v in values), Decimal("0")))


def total_balance(accounts: Iterable[TradingAccount]) -> str:
    return sum_money(a.balance for a in accounts)


def total_daily_pnl(accounts: Iterable[TradingAccount]) -> str:
    return sum_money(a.daily_pnl for a in accounts)


async def build_dashboard(storage: Storage, user_id: str) -> DashboardResponse:
    (
        trading_accounts,
        referral_earnings,
        total_earnings,
        referral_count,
        master_copier_connections,
        referral_links,
    ) = await asyncio.gather(
        storage.get_trading_accounts(user_id),
        storage.get_referral_earnings(user_id),
        storage.get_total_referral_earnings(user_id),
        storage.get_referral_count(user_id),
        storage.get_master_copier_connections(user_id),
        storage.get_referral_links(user_id),
    )

    logger.debug(
        "Dashboard assembled.",
        extra={"user_id": user_id, "accounts": len(trading_accounts), "earnings": len(referral_earnings)},
    )

    return DashboardResponse(
        total_balance=total_balance(trading_accounts),
        daily_pnl=total_daily_pnl(trading_accounts),
        referral_count=referral_count,
        referral_earnings=total_earnings,
        trading_accounts=trading_accounts,
        recent_referral_earnings=referral_earnings[:RECENT_EARNINGS_LIMIT],
        master_copier_connections=master_copier_connections,
        referral_links=referral_links,
    )
