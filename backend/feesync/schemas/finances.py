"""
Finances schemas — typed view of the SP-API financialEvents payload.

Raw JSON is validated into these models at the transport boundary so the
aggregator never touches untyped dicts. Identifiers stay optional: events
without an order id or SKU are skipped downstream, not rejected here.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from feesync.utils.type_converters import to_decimal


class _ProviderModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        # Provider sends explicit nulls for empty lists; let field defaults apply
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Money(_ProviderModel):
    currency_code: Optional[str] = Field(default=None, alias="CurrencyCode")
    amount: Decimal = Field(default=Decimal("0"), alias="CurrencyAmount")

    @field_validator("amount", mode="before")
    @classmethod
    def normalize_amount(cls, value):
        return to_decimal(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """PostedDate without an offset is UTC; offsets are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FeeComponent(_ProviderModel):
    fee_type: str = Field(default="", alias="FeeType")
    fee_amount: Money = Field(default_factory=Money, alias="FeeAmount")


class ChargeComponent(_ProviderModel):
    charge_type: str = Field(default="", alias="ChargeType")
    charge_amount: Money = Field(default_factory=Money, alias="ChargeAmount")


class Promotion(_ProviderModel):
    promotion_type: Optional[str] = Field(default=None, alias="PromotionType")
    promotion_amount: Money = Field(default_factory=Money, alias="PromotionAmount")


class ShipmentItem(_ProviderModel):
    seller_sku: Optional[str] = Field(default=None, alias="SellerSKU")
    fees: List[FeeComponent] = Field(default_factory=list, alias="ItemFeeList")
    charges: List[ChargeComponent] = Field(default_factory=list, alias="ItemChargeList")
    promotions: List[Promotion] = Field(default_factory=list, alias="PromotionList")


class ShipmentEvent(_ProviderModel):
    amazon_order_id: Optional[str] = Field(default=None, alias="AmazonOrderId")
    posted_date: Optional[datetime] = Field(default=None, alias="PostedDate")
    items: List[ShipmentItem] = Field(default_factory=list, alias="ShipmentItemList")

    @field_validator("posted_date")
    @classmethod
    def posted_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class ShipmentItemAdjustment(_ProviderModel):
    seller_sku: Optional[str] = Field(default=None, alias="SellerSKU")
    charge_adjustments: List[ChargeComponent] = Field(default_factory=list, alias="ItemChargeAdjustmentList")


class RefundEvent(_ProviderModel):
    amazon_order_id: Optional[str] = Field(default=None, alias="AmazonOrderId")
    posted_date: Optional[datetime] = Field(default=None, alias="PostedDate")
    adjustments: List[ShipmentItemAdjustment] = Field(default_factory=list, alias="ShipmentItemAdjustmentList")

    @field_validator("posted_date")
    @classmethod
    def posted_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class FinancialEvents(_ProviderModel):
    shipment_events: List[ShipmentEvent] = Field(default_factory=list, alias="ShipmentEventList")
    refund_events: List[RefundEvent] = Field(default_factory=list, alias="RefundEventList")


class FinancialEventsPayload(_ProviderModel):
    next_token: Optional[str] = Field(default=None, alias="NextToken")
    events: FinancialEvents = Field(default_factory=FinancialEvents, alias="FinancialEvents")


class FinancialEventsPage(_ProviderModel):
    """Top-level GET /finances/v0/financialEvents response body."""
    payload: FinancialEventsPayload = Field(default_factory=FinancialEventsPayload)


# ============================================
# Page outcomes: the only input the fault classifier sees
# ============================================

@dataclass(frozen=True)
class PageOk:
    events: FinancialEvents
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class PageRateLimited:
    pass


@dataclass(frozen=True)
class PageTokenExpired:
    message: str = ""


@dataclass(frozen=True)
class PageHardError:
    message: str
    status_code: Optional[int] = None


PageOutcome = Union[PageOk, PageRateLimited, PageTokenExpired, PageHardError]
