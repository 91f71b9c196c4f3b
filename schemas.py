from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import AccountType, BudgetPeriod, RecurringFrequency, TransactionType


HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
CURRENCY_PATTERN = r"^[A-Za-z]{3}$"


class SignUpIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=120)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        clean = value.strip().lower()
        if "@" not in clean or clean.startswith("@") or clean.endswith("@"):
            raise ValueError("Invalid email address")
        return clean


class SignInIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdateIn(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    currency_code: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.checking
    balance_cents: int = 0
    currency_code: str = Field(default="USD", pattern=CURRENCY_PATTERN)


class AccountRenameIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#6B7280", pattern=HEX_COLOR_PATTERN)
    icon: str = Field(default="folder", min_length=1, max_length=40)


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=40)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    description: str = Field(..., min_length=1, max_length=200)
    date: date
    notes: str = Field(default="", max_length=2000)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("Description cannot be empty")
        return clean


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class RecurringTransactionIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    description: str = Field(..., min_length=1, max_length=200)
    frequency: RecurringFrequency
    start_date: date
    end_date: Optional[date] = None