import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .currencies import (
    CURRENCIES,
    DEFAULT_CURRENCY,
    INCOME_CATEGORIES,
    LEDGER_EXPENSE_CATEGORIES,
    RECURRING_CATEGORIES,
)

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class TransactionDirection(str, Enum):
    expense = "expense"
    income = "income"


class Frequency(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetStatus(str, Enum):
    unset = "unset"
    good = "good"
    warning = "warning"
    danger = "danger"


def categories_for(direction: TransactionDirection) -> list[str]:
    if direction == TransactionDirection.income:
        return INCOME_CATEGORIES
    return LEDGER_EXPENSE_CATEGORIES


def _validate_currency_code(value: str) -> str:
    up = value.strip().upper()
    if up not in CURRENCIES:
        raise ValueError(f"unsupported currency: {value}")
    return up


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str
    storage: str


class TransactionCreate(BaseModel):
    direction: TransactionDirection = TransactionDirection.expense
    amount: Decimal = Field(gt=Decimal("0"), max_digits=14, decimal_places=2)
    category: str = Field(min_length=1, max_length=50)
    description: str = Field(default="", max_length=500)
    occurredOn: date

    @model_validator(mode="after")
    def validate_category(self) -> "TransactionCreate":
        allowed = categories_for(self.direction)
        if self.category not in allowed:
            raise ValueError(f"category must be one of: {', '.join(allowed)}")
        return self


class TransactionUpdate(BaseModel):
    direction: Optional[TransactionDirection] = None
    amount: Optional[Decimal] = Field(default=None, gt=Decimal("0"), max_digits=14, decimal_places=2)
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    occurredOn: Optional[date] = None

    @model_validator(mode="after")
    def validate_category(self) -> "TransactionUpdate":
        if self.category is None:
            return self
        if self.direction is not None:
            allowed = categories_for(self.direction)
        else:
            allowed = LEDGER_EXPENSE_CATEGORIES + INCOME_CATEGORIES
        if self.category not in allowed:
            raise ValueError(f"unknown category: {self.category}")
        return self


class TransactionFilter(BaseModel):
    direction: Optional[TransactionDirection] = None
    category: Optional[str] = None
    month: Optional[str] = None
    search: Optional[str] = None
    dateFrom: Optional[date] = None
    dateTo: Optional[date] = None

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not _MONTH_RE.match(value):
            raise ValueError("month must be YYYY-MM")
        return value

    @model_validator(mode="after")
    def validate_range(self) -> "TransactionFilter":
        if self.dateFrom and self.dateTo and self.dateTo < self.dateFrom:
            raise ValueError("dateTo must be >= dateFrom")
        return self


class TransactionResponse(BaseModel):
    id: UUID
    direction: TransactionDirection
    amount: Decimal
    category: str
    description: str
    occurredOn: date
    recurringChargeId: Optional[UUID] = None
    createdAt: datetime


class TransactionListResponse(BaseModel):
    """``total`` is the plain sum when one direction is listed, otherwise income minus expenses."""

    items: list[TransactionResponse]
    count: int
    total: Decimal
    incomeTotal: Decimal
    expenseTotal: Decimal


class RecurringChargeCreate(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"), max_digits=14, decimal_places=2)
    category: str = "Bills"
    description: str = Field(default="", max_length=200)
    frequency: Frequency = Frequency.monthly
    startDate: date
    nextDueDate: Optional[date] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str) -> str:
        if value not in RECURRING_CATEGORIES:
            raise ValueError(f"category must be one of: {', '.join(RECURRING_CATEGORIES)}")
        return value

    @model_validator(mode="after")
    def validate_next_due(self) -> "RecurringChargeCreate":
        if self.nextDueDate and self.nextDueDate < self.startDate:
            raise ValueError("nextDueDate must be >= startDate")
        return self


class RecurringChargeUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=Decimal("0"), max_digits=14, decimal_places=2)
    category: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=200)
    frequency: Optional[Frequency] = None
    nextDueDate: Optional[date] = None
    isActive: Optional[bool] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if value not in RECURRING_CATEGORIES:
            raise ValueError(f"category must be one of: {', '.join(RECURRING_CATEGORIES)}")
        return value


class RecurringChargeResponse(BaseModel):
    id: UUID
    amount: Decimal
    category: str
    description: str
    frequency: str
    startDate: date
    nextDueDate: date
    isActive: bool
    createdAt: datetime


class UpcomingCharge(BaseModel):
    id: UUID
    description: str
    amount: Decimal
    nextDueDate: date
    daysUntil: int


class RecurringSummaryResponse(BaseModel):
    monthlyTotal: Decimal
    monthlyCount: int
    yearlyProjection: Decimal
    activeCount: int
    pausedCount: int
    dueThisMonthCount: int
    dueThisMonthTotal: Decimal
    dueThisMonth: list[UpcomingCharge]


class BatchFailureResponse(BaseModel):
    chargeId: UUID
    error: str


class BatchRunResponse(BaseModel):
    processed: int
    skipped: int = 0
    failures: list[BatchFailureResponse] = Field(default_factory=list)


class UserSettings(BaseModel):
    currency: str = DEFAULT_CURRENCY
    monthlyBudget: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    regularSavingsGoal: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    regularSavingsCurrent: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    emergencyGoal: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    emergencyCurrent: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    investmentGoal: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    investmentCurrent: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class UserSettingsUpdate(BaseModel):
    currency: Optional[str] = None
    monthlyBudget: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    regularSavingsGoal: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    emergencyGoal: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    investmentGoal: Optional[Decimal] = Field(default=None, ge=Decimal("0"))

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _validate_currency_code(value)


class SavingsUpdate(BaseModel):
    regularSavingsCurrent: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    emergencyCurrent: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    investmentCurrent: Optional[Decimal] = Field(default=None, ge=Decimal("0"))


class DashboardStatsResponse(BaseModel):
    thisMonth: Decimal
    last7Days: Decimal
    topCategory: Optional[str] = None
    currencySymbol: str


class BudgetStatusResponse(BaseModel):
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: float
    status: BudgetStatus


class CategoryShare(BaseModel):
    category: str
    amount: Decimal
    percentage: float


class WeekdayTotal(BaseModel):
    day: str
    amount: Decimal


class MonthTotal(BaseModel):
    month: str
    label: str
    amount: Decimal


class SpendingInsightsResponse(BaseModel):
    thisMonthTotal: Decimal
    lastMonthTotal: Decimal
    monthDifference: Decimal
    monthPercentChange: float
    topCategories: list[CategoryShare]
    totalIncome: Decimal
    totalExpenses: Decimal
    netBalance: Decimal
    savingsRate: float
    averageDailySpending: Decimal
    byDayOfWeek: list[WeekdayTotal]
    topSpendingDay: Optional[str] = None
    lastSixMonths: list[MonthTotal]


class SavingsGoalProgress(BaseModel):
    name: str
    goal: Decimal
    current: Decimal
    remaining: Decimal
    percentage: float


class SavingsProgressResponse(BaseModel):
    goals: list[SavingsGoalProgress]
    totalGoal: Decimal
    totalSaved: Decimal
    overallPercentage: float


class CurrencyResponse(BaseModel):
    code: str
    symbol: str
    name: str


class CategoriesResponse(BaseModel):
    expense: list[str]
    income: list[str]
    recurring: list[str]
