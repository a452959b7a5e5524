import datetime as dt
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from models import TransactionType


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class RegisterIn(APIModel):
    name: str
    email: EmailStr
    password: str

    @field_validator("name")
    @classmethod
    def _name_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value

    @field_validator("password")
    @classmethod
    def _password_length(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value


class LoginIn(APIModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshIn(APIModel):
    refresh_token: Optional[str] = None


class CategoryIn(APIModel):
    name: Optional[str] = Field(default=None, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)


# stored as integer cents; keep well inside a signed 64-bit column
MAX_AMOUNT = Decimal("1000000000000")


def _valid_amount(value: Decimal) -> Decimal:
    if value == 0:
        raise ValueError("Amount must be a non-zero number")
    if abs(value) >= MAX_AMOUNT:
        raise ValueError("Amount is too large")
    if value.normalize().as_tuple().exponent < -2:
        raise ValueError("Amount cannot have more than 2 decimal places")
    return value


def _non_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Description is required")
    return value


Amount = Annotated[Decimal, AfterValidator(_valid_amount)]
Description = Annotated[str, AfterValidator(_non_blank)]


class TransactionIn(APIModel):
    amount: Amount
    description: Description
    type: TransactionType
    category: int
    date: Optional[dt.datetime] = None


class TransactionUpdate(APIModel):
    amount: Optional[Amount] = None
    description: Optional[Description] = None
    type: Optional[TransactionType] = None
    category: Optional[int] = None
    date: Optional[dt.datetime] = None


class UserOut(APIModel):
    id: int
    name: str
    email: str
    created_at: Optional[dt.datetime] = None


class TokenPairOut(APIModel):
    access_token: str
    refresh_token: str


class AuthOut(TokenPairOut):
    message: str
    user: UserOut


class MessageOut(APIModel):
    message: str


class CategoryOut(APIModel):
    id: int
    name: str
    icon: str
    color: str
    is_custom: bool
    user_id: Optional[int] = None


class CategoryBrief(APIModel):
    id: int
    name: str
    icon: str
    color: str


class TransactionOut(APIModel):
    id: int
    amount: float
    description: str
    type: TransactionType
    category: Optional[CategoryBrief] = None
    date: dt.datetime
    created_at: dt.datetime
    updated_at: dt.datetime


class TransactionPage(APIModel):
    transactions: list[TransactionOut]
    total_pages: int
    current_page: int
    total: int


class TypeTotals(APIModel):
    total: float = 0
    count: int = 0


class SummaryStatsOut(APIModel):
    income: TypeTotals
    expense: TypeTotals
    balance: float


class PeriodStats(APIModel):
    income: float
    expense: float
    balance: float
    income_count: int
    expense_count: int
    period: Optional[str] = None


class DashboardStatsOut(APIModel):
    current: PeriodStats
    all_time: PeriodStats


class CategorySlice(APIModel):
    category_id: int
    name: str
    icon: str
    color: str
    total: float
    count: int


class TrendPoint(APIModel):
    date: str
    income: float
    expense: float
    balance: float
