from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import BudgetPeriod, NotificationType, RecurringFrequency, TransactionType

HEX_THEME_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Optional[str] = None
    sort_order: Literal[1, -1] = -1


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    theme: str = "#000000"
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    theme: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0)
    theme: str = Field(default="#000000", pattern=HEX_THEME_PATTERN)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: Optional[datetime] = None
    is_active: bool = True


class BudgetUpdate(BaseModel):
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    theme: Optional[str] = Field(default=None, pattern=HEX_THEME_PATTERN)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[datetime] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _at_least_one_field(self) -> "BudgetUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class TransactionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    date: Optional[datetime] = None
    recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    budget_id: Optional[int] = None
    pot_id: Optional[int] = None

    @model_validator(mode="after")
    def _default_frequency(self) -> "TransactionIn":
        if self.recurring and self.recurring_frequency is None:
            self.recurring_frequency = RecurringFrequency.monthly
        return self


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    date: Optional[datetime] = None
    recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None
    budget_id: Optional[int] = None
    pot_id: Optional[int] = None


class PotIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    goal_amount_cents: int = Field(..., ge=0)
    target_date: datetime
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)


class PotUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    goal_amount_cents: Optional[int] = Field(default=None, ge=0)
    current_amount_cents: Optional[int] = Field(default=None, ge=0)
    target_date: Optional[datetime] = None
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)


class PotBalanceIn(BaseModel):
    amount_cents: int
    operation: Literal["add", "withdraw"]


class NotificationIn(BaseModel):
    message: str = Field(..., min_length=1)
    type: NotificationType = NotificationType.info
    related_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=50)
