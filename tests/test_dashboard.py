# tests/test_dashboard.py
from api.schemes import DashboardResponse, NewReferralEarning, NewTradingAccount, UserUpsert
from backend.dashboard import RECENT_EARNINGS_LIMIT, build_dashboard, sum_money
from enums import Broker, EarningStatus


def test_sum_money_is_exact():
    assert sum_money(["100.00", "50.50"]) == "150.50"
    assert sum_money(["0.10", "0.20"]) == "0.30"
    assert sum_money(["-5.25", None, ""]) == "-5.25"
    assert sum_money([]) == "0.00"


async def test_dashboard_aggregates(storage):
    await storage.upsert_user(UserUpsert(id="u1"))
    for user_id in ("r1", "r2"):
        await storage.upsert_user(UserUpsert(id=user_id))

    for account_id, balance, pnl in (("A-1", "100.00", "1.50"), ("A-2", "50.50", "-0.25")):
        await storage.create_trading_account(NewTradingAccount(
            user_id="u1", broker=Broker.BINANCE, account_id=account_id, balance=balance, daily_pnl=pnl,
        ))

    for i in range(RECENT_EARNINGS_LIMIT + 2):
        await storage.create_referral_earning(NewReferralEarning(
            referrer_id="u1",
            referred_user_id="r1" if i % 2 else "r2",
            amount="10.00",
            broker=Broker.EXNESS,
            transaction_type="deposit_bonus",
            status=EarningStatus.PAID if i < 3 else EarningStatus.PENDING,
        ))

    dashboard = await build_dashboard(storage, "u1")

    assert dashboard.total_balance == "150.50"
    assert dashboard.daily_pnl == "1.25"
    assert dashboard.referral_earnings == "30.00"
    assert dashboard.referral_count == 2
    assert len(dashboard.trading_accounts) == 2
    assert len(dashboard.recent_referral_earnings) == RECENT_EARNINGS_LIMIT
    assert len(dashboard.referral_links) == 3
    assert dashboard.master_copier_connections == []


async def test_dashboard_for_new_user(storage):
    dashboard = await build_dashboard(storage, "nobody")

    assert dashboard.total_balance == "0.00"
    assert dashboard.daily_pnl == "0.00"
    assert dashboard.referral_earnings == "0.00"
    assert dashboard.referral_count == 0
    assert dashboard.trading_accounts == []


def test_dashboard_wire_names():
    body = DashboardResponse(
        total_balance="0.00", daily_pnl="0.00", referral_count=0, referral_earnings="0.00",
    ).model_dump(by_alias=True)

    assert set(body) == {
        "totalBalance", "dailyPnL", "referralCount", "referralEarnings",
        "tradingAccounts", "recentReferralEarnings", "masterCopierConnections", "referralLinks",
    }
