import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import AccountKind, LaunchType, RatePeriod, TransactionType
from money import parse_amount
from periods import MonthKey
from scopes import AmountPolicy, EditScope


def _amount_to_cents(data: Any, *, allow_negative: bool) -> Any:
    """Accept ``amount`` as a decimal string ("33.34") in place of ``amount_cents``."""
    if isinstance(data, dict) and "amount" in data:
        data = dict(data)
        raw = data.pop("amount")
        if raw is not None and "amount_cents" not in data:
            data["amount_cents"] = parse_amount(raw, allow_negative=allow_negative)
    return data


def _check_month_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return str(MonthKey.parse(value))


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind = AccountKind.personal


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, max_length=7)


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    brand: Optional[str] = Field(default=None, max_length=40)
    limit_cents: int = Field(default=0, ge=0)
    closing_day: int
    due_day: int

    @model_validator(mode="before")
    @classmethod
    def _limit_from_amount(cls, data: Any) -> Any:
        if isinstance(data, dict) and "limit" in data:
            data = dict(data)
            raw = data.pop("limit")
            if raw is not None and "limit_cents" not in data:
                data["limit_cents"] = parse_amount(raw)
        return data


class CreditCardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    brand: Optional[str] = Field(default=None, max_length=40)
    limit_cents: Optional[int] = Field(default=None, ge=0)
    closing_day: Optional[int] = None
    due_day: Optional[int] = None


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: dt.date
    type: TransactionType
    amount_cents: int
    description: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None
    paid: bool = False
    credit_card_id: Optional[int] = None
    launch_type: LaunchType = LaunchType.normal
    installments: int = 1

    @model_validator(mode="before")
    @classmethod
    def _parse_amount(cls, data: Any) -> Any:
        return _amount_to_cents(data, allow_negative=True)


class TransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    edit_scope: EditScope = EditScope.single
    amount_policy: AmountPolicy = AmountPolicy.strict
    total_amount_cents: Optional[int] = Field(default=None, ge=0)

    date: Optional[dt.date] = None
    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category_id: Optional[int] = None
    paid: Optional[bool] = None
    launch_type: Optional[LaunchType] = None

    @model_validator(mode="before")
    @classmethod
    def _parse_amount(cls, data: Any) -> Any:
        data = _amount_to_cents(data, allow_negative=False)
        if isinstance(data, dict) and "total_amount" in data:
            data = dict(data)
            raw = data.pop("total_amount")
            if raw is not None:
                data["total_amount_cents"] = parse_amount(raw)
        return data

    def changes(self) -> dict[str, Any]:
        values = self.model_dump(
            exclude_unset=True,
            exclude={"edit_scope", "amount_policy", "total_amount_cents"},
        )
        return {
            name: value
            for name, value in values.items()
            if value is not None or name == "category_id"
        }


class IngestTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., ge=0)
    description: str = Field(..., min_length=1, max_length=200)
    type: TransactionType = TransactionType.expense
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    credit_card_id: Optional[int] = None
    installments: int = 1

    @model_validator(mode="before")
    @classmethod
    def _parse_amount(cls, data: Any) -> Any:
        return _amount_to_cents(data, allow_negative=False)


class FixedCashflowIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category_id: Optional[int] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_month: Optional[str] = None
    end_month: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _parse_amount(cls, data: Any) -> Any:
        return _amount_to_cents(data, allow_negative=False)

    @field_validator("start_month", "end_month")
    @classmethod
    def _month_key(cls, value: Optional[str]) -> Optional[str]:
        return _check_month_key(value)


class FixedCashflowUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_month: Optional[str] = None
    end_month: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _parse_amount(cls, data: Any) -> Any:
        return _amount_to_cents(data, allow_negative=False)

    @field_validator("start_month", "end_month")
    @classmethod
    def _month_key(cls, value: Optional[str]) -> Optional[str]:
        return _check_month_key(value)


class InvoicePaymentIn(BaseModel):
    amount_cents: Optional[int] = Field(default=None, ge=0)


class DebtIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    balance_cents: int = Field(..., ge=0)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0)
    rate_period: RatePeriod = RatePeriod.monthly
    target_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _parse_balance(cls, data: Any) -> Any:
        if isinstance(data, dict) and "balance" in data:
            data = dict(data)
            raw = data.pop("balance")
            if raw is not None and "balance_cents" not in data:
                data["balance_cents"] = parse_amount(raw)
        return data
