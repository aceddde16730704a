# api/schemes.py
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

from enums import Broker, CopyStatus, EarningStatus
from helpers import TWO_PLACES


def parse_money(value: Any) -> Optional[str]:
    """Normalise a decimal-like value to a 2-decimal string ("150.5" -> "150.50")."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("must be a decimal number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError("must be a decimal number")
    if not number.is_finite():
        raise ValueError("must be a finite decimal number")
    return str(number.quantize(TWO_PLACES))


class ApiModel(BaseModel):
    """Base for everything crossing the HTTP boundary: camelCase on the wire,
    snake_case in Python."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
        use_enum_values = True


# -------------------------------------------------------------------
# Core Domain Records (returned by every storage backend)
# -------------------------------------------------------------------

class User(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    referral_code: str
    referred_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TradingAccount(ApiModel):
    id: str
    user_id: str
    broker: str
    account_id: str
    account_name: Optional[str] = None
    balance: Optional[str] = None
    daily_pnl: Optional[str] = Field(None, alias="dailyPnL")
    copy_status: Optional[str] = None
    is_connected: Optional[bool] = None
    api_key_encrypted: Optional[str] = Field(None, exclude=True)
    last_sync_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("balance", "daily_pnl", mode="before")
    @classmethod
    def normalise_money(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class ReferralEarning(ApiModel):
    id: str
    referrer_id: str
    referred_user_id: str
    amount: str
    fee_percentage: Optional[str] = None
    broker: str
    transaction_type: str
    status: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    @field_validator("amount", "fee_percentage", mode="before")
    @classmethod
    def normalise_money(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class MasterCopierConnection(ApiModel):
    id: str
    user_id: str
    trading_account_id: str
    master_account_id: str
    copy_ratio: Optional[str] = None
    is_active: Optional[bool] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("copy_ratio", mode="before")
    @classmethod
    def normalise_ratio(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class ReferralLink(ApiModel):
    id: str
    user_id: str
    broker: str
    referral_url: str
    click_count: int = 0
    conversion_count: int = 0
    is_active: Optional[bool] = None
    created_at: datetime
    updated_at: datetime


# -------------------------------------------------------------------
# Storage inputs
# -------------------------------------------------------------------

class UserUpsert(ApiModel):
    """Identity claims mapped onto a user row. Missing referral code => generated."""
    id: str = Field(min_length=1)
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None


class TradingAccountBody(ApiModel):
    """Request payload for POST /trading-accounts."""
    broker: Broker
    account_id: str = Field(min_length=1)
    account_name: Optional[str] = None
    balance: Optional[str] = "0.00"
    daily_pnl: Optional[str] = Field("0.00", alias="dailyPnL")
    copy_status: CopyStatus = CopyStatus.INACTIVE
    is_connected: bool = True
    api_key_encrypted: Optional[str] = None

    @field_validator("balance", "daily_pnl", mode="before")
    @classmethod
    def normalise_money(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class NewTradingAccount(TradingAccountBody):
    user_id: str


class BalanceUpdateBody(ApiModel):
    """Request payload for PATCH /trading-accounts/{id}/balance. Both values required."""
    balance: str = Field(min_length=1)
    daily_pnl: str = Field(min_length=1, alias="dailyPnL")

    @field_validator("balance", "daily_pnl", mode="before")
    @classmethod
    def normalise_money(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class MasterCopierBody(ApiModel):
    """Request payload for POST /master-copier/connect."""
    trading_account_id: str = Field(min_length=1)
    master_account_id: str = Field(min_length=1)
    copy_ratio: Optional[str] = "1.00"
    is_active: bool = True

    @field_validator("copy_ratio", mode="before")
    @classmethod
    def normalise_ratio(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class NewMasterCopierConnection(MasterCopierBody):
    user_id: str


class MasterCopierStatusBody(ApiModel):
    is_active: StrictBool


class NewReferralEarning(ApiModel):
    """Request payload for POST /referral-earnings."""
    referrer_id: str = Field(min_length=1)
    referred_user_id: str = Field(min_length=1)
    amount: str
    fee_percentage: Optional[str] = "10.00"
    broker: Broker
    transaction_type: str = Field(min_length=1)
    status: EarningStatus = EarningStatus.PENDING

    @field_validator("amount", "fee_percentage", mode="before")
    @classmethod
    def normalise_money(cls, value: Any) -> Optional[str]:
        return parse_money(value)


class EarningStatusBody(ApiModel):
    status: EarningStatus


class ReferralLinkBody(ApiModel):
    """Request payload for POST /referral-links."""
    broker: Broker
    referral_url: str = Field(min_length=1)


class NewReferralLink(ReferralLinkBody):
    user_id: str
    click_count: int = 0
    conversion_count: int = 0
    is_active: bool = True


# -------------------------------------------------------------------
# API Responses
# -------------------------------------------------------------------

class MessageResponse(BaseModel):
    message: str


class ReferralStats(ApiModel):
    total_earnings: str
    referral_count: int


class DashboardResponse(ApiModel):
    """Response returned by /dashboard."""
    total_balance: str
    daily_pnl: str = Field(alias="dailyPnL")
    referral_count: int
    referral_earnings: str
    trading_accounts: List[TradingAccount] = Field(default_factory=list)
    recent_referral_earnings: List[ReferralEarning] = Field(default_factory=list)
    master_copier_connections: List[MasterCopierConnection] = Field(default_factory=list)
    referral_links: List[ReferralLink] = Field(default_factory=list)
