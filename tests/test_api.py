# tests/test_api.py
"""
HTTP-level tests: the FastAPI app driven in-process over httpx.
"""
import pytest

from api.schemes import NewReferralEarning, NewTradingAccount
from enums import Broker, EarningStatus


@pytest.mark.parametrize("path", [
    "/api/auth/user",
    "/api/dashboard",
    "/api/trading-accounts",
    "/api/referral-earnings",
    "/api/referral-stats",
    "/api/master-copier",
    "/api/referral-links",
])
async def test_protected_routes_require_session(anon_client, path):
    response = await anon_client.get(path)

    assert response.status_code == 401
    assert response.json() == {"message": "Unauthorized"}


async def test_current_user(client, user):
    response = await client.get("/api/auth/user")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == user.id
    assert body["referralCode"] == user.referral_code
    assert body["firstName"] == "Ann"


async def test_dashboard_shape(client):
    response = await client.get("/api/dashboard")

    assert response.status_code == 200
    body = response.json()
    assert body["totalBalance"] == "0.00"
    assert body["dailyPnL"] == "0.00"
    assert body["referralEarnings"] == "0.00"
    assert body["referralCount"] == 0
    assert len(body["referralLinks"]) == 3


# ---------------------------
# Trading accounts
# ---------------------------

async def test_connect_and_list_trading_account(client, user):
    response = await client.post("/api/trading-accounts", json={
        "broker": "exness",
        "accountId": "EX-42",
        "accountName": "Main",
        "balance": "100",
        "apiKeyEncrypted": "secret",
    })

    assert response.status_code == 200
    created = response.json()
    assert created["userId"] == user.id
    assert created["balance"] == "100.00"
    assert created["dailyPnL"] == "0.00"
    assert created["copyStatus"] == "inactive"
    assert "apiKeyEncrypted" not in created

    listed = (await client.get("/api/trading-accounts")).json()
    assert [a["id"] for a in listed] == [created["id"]]


async def test_connect_trading_account_validation(client):
    response = await client.post("/api/trading-accounts", json={"broker": "kraken", "accountId": "X"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid request data"
    assert "broker" in body["error"]


async def test_update_balance(client, user, memory_storage):
    account = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=user.id, broker=Broker.BYBIT, account_id="BY-1")
    )

    response = await client.patch(
        f"/api/trading-accounts/{account.id}/balance",
        json={"balance": "2500.75", "dailyPnL": "-3.5"},
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Account balance updated successfully"}
    [stored] = await memory_storage.get_trading_accounts(user.id)
    assert stored.balance == "2500.75"
    assert stored.daily_pnl == "-3.50"


async def test_update_balance_requires_both_fields(client, user, memory_storage):
    account = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=user.id, broker=Broker.BYBIT, account_id="BY-1")
    )

    response = await client.patch(f"/api/trading-accounts/{account.id}/balance", json={"balance": "1.00"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid request data"


async def test_update_balance_of_foreign_account(client, other_user, memory_storage):
    account = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=other_user.id, broker=Broker.BYBIT, account_id="BY-2", balance="5.00")
    )

    response = await client.patch(
        f"/api/trading-accounts/{account.id}/balance",
        json={"balance": "0.00", "dailyPnL": "0.00"},
    )

    assert response.status_code == 404
    [stored] = await memory_storage.get_trading_accounts(other_user.id)
    assert stored.balance == "5.00"


async def test_disconnect_trading_account(client, user, other_user, memory_storage):
    mine = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=user.id, broker=Broker.EXNESS, account_id="EX-1")
    )
    theirs = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=other_user.id, broker=Broker.EXNESS, account_id="EX-2")
    )

    for account in (mine, theirs):
        response = await client.delete(f"/api/trading-accounts/{account.id}")
        assert response.status_code == 200
        assert response.json() == {"message": "Trading account disconnected successfully"}

    assert await memory_storage.get_trading_accounts(user.id) == []
    assert len(await memory_storage.get_trading_accounts(other_user.id)) == 1


# ---------------------------
# Master copier
# ---------------------------

async def test_master_copier_flow(client, user, memory_storage):
    account = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=user.id, broker=Broker.BINANCE, account_id="BN-1")
    )

    response = await client.post("/api/master-copier/connect", json={
        "tradingAccountId": account.id,
        "masterAccountId": "MASTER-7",
        "copyRatio": "0.5",
    })
    assert response.status_code == 200
    connection = response.json()
    assert connection["copyRatio"] == "0.50"
    assert connection["isActive"] is True

    response = await client.patch(f"/api/master-copier/{connection['id']}/status", json={"isActive": False})
    assert response.status_code == 200
    assert response.json() == {"message": "Master copier status updated successfully"}

    [stored] = (await client.get("/api/master-copier")).json()
    assert stored["isActive"] is False


async def test_master_copier_status_must_be_boolean(client):
    response = await client.patch("/api/master-copier/whatever/status", json={"isActive": "yes"})

    assert response.status_code == 400


async def test_master_copier_unknown_connection(client):
    response = await client.patch("/api/master-copier/missing/status", json={"isActive": True})

    assert response.status_code == 404


async def test_master_copier_foreign_account(client, other_user, memory_storage):
    account = await memory_storage.create_trading_account(
        NewTradingAccount(user_id=other_user.id, broker=Broker.BINANCE, account_id="BN-2")
    )

    response = await client.post("/api/master-copier/connect", json={
        "tradingAccountId": account.id,
        "masterAccountId": "MASTER-7",
    })

    assert response.status_code == 404
    assert await memory_storage.get_master_copier_connections(other_user.id) == []


# ---------------------------
# Referrals
# ---------------------------

async def test_referral_stats(client, user, other_user, memory_storage):
    for amount, status in (("100.00", EarningStatus.PAID), ("50.50", EarningStatus.PAID), ("50.00", EarningStatus.PENDING)):
        await memory_storage.create_referral_earning(NewReferralEarning(
            referrer_id=user.id, referred_user_id=other_user.id, amount=amount,
            broker=Broker.EXNESS, transaction_type="trade_commission", status=status,
        ))

    response = await client.get("/api/referral-stats")

    assert response.status_code == 200
    assert response.json() == {"totalEarnings": "150.50", "referralCount": 1}


async def test_record_earning_and_mark_paid(client, user, other_user):
    response = await client.post("/api/referral-earnings", json={
        "referrerId": user.id,
        "referredUserId": other_user.id,
        "amount": "12.5",
        "broker": "bybit",
        "transactionType": "deposit_bonus",
    })
    assert response.status_code == 200
    earning = response.json()
    assert earning["amount"] == "12.50"
    assert earning["status"] == "pending"

    response = await client.patch(f"/api/referral-earnings/{earning['id']}/status", json={"status": "paid"})
    assert response.status_code == 200
    assert response.json()["status"] == "paid"
    assert response.json()["paidAt"] is not None

    response = await client.patch(f"/api/referral-earnings/{earning['id']}/status", json={"status": "pending"})
    assert response.status_code == 409


async def test_record_earning_for_unknown_user(client, user):
    response = await client.post("/api/referral-earnings", json={
        "referrerId": user.id,
        "referredUserId": "ghost",
        "amount": "1.00",
        "broker": "bybit",
        "transactionType": "deposit_bonus",
    })

    assert response.status_code == 400
    assert response.json() == {"message": "Referrer and referred user must both exist"}


async def test_record_earning_rejects_bad_amount(client, user, other_user):
    response = await client.post("/api/referral-earnings", json={
        "referrerId": user.id,
        "referredUserId": other_user.id,
        "amount": "lots",
        "broker": "bybit",
        "transactionType": "deposit_bonus",
    })

    assert response.status_code == 400


async def test_referral_link_by_broker(client):
    response = await client.get("/api/referral-links/bybit")

    assert response.status_code == 200
    assert response.json()["referralUrl"] == "https://partner.bybit.com/b/119776"

    response = await client.get("/api/referral-links/kraken")
    assert response.status_code == 404
    assert response.json() == {"message": "Referral link not found for this broker"}


async def test_create_duplicate_referral_link(client):
    response = await client.post("/api/referral-links", json={
        "broker": "exness",
        "referralUrl": "https://example.com/mine",
    })

    assert response.status_code == 409


async def test_public_click_and_conversion_tracking(anon_client, user, memory_storage):
    [link, *_] = await memory_storage.get_referral_links(user.id)

    response = await anon_client.post(f"/api/referral-links/{link.id}/click")
    assert response.status_code == 200
    assert response.json() == {"message": "Click tracked successfully"}

    response = await anon_client.post(f"/api/referral-links/{link.id}/conversion")
    assert response.status_code == 200
    assert response.json() == {"message": "Conversion tracked successfully"}

    stored = next(l for l in await memory_storage.get_referral_links(user.id) if l.id == link.id)
    assert stored.click_count == 1
    assert stored.conversion_count == 1


async def test_click_on_unknown_link(anon_client):
    response = await anon_client.post("/api/referral-links/missing/click")

    assert response.status_code == 404
    assert response.json() == {"message": "Referral link not found"}
