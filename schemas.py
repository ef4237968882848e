import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import BudgetPeriod, ReportType, TransactionType


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=200)
    type: TransactionType
    date: dt.date
    category: Optional[str] = Field(default=None, max_length=100)


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_window(self) -> "BudgetIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BudgetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)


class GoalIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    target_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    current_amount: Decimal = Field(
        default=Decimal("0"), ge=0, max_digits=12, decimal_places=2
    )
    target_date: Optional[date] = None


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    target_amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    current_amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    target_date: Optional[date] = None
    is_completed: Optional[bool] = None


class GoalProgressIn(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    note: Optional[str] = Field(default=None, max_length=500)


class AlertMarkReadIn(BaseModel):
    alert_ids: list[str] = Field(..., min_length=1)


class ChatIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = Field(default=None, max_length=64)


class ReportRequest(BaseModel):
    type: ReportType
    start: date
    end: date
    format: Literal["json"] = "json"

    @model_validator(mode="after")
    def check_range(self) -> "ReportRequest":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


# Assistant tool arguments. Every model forbids unknown keys so a malformed
# function call is reported back to the model instead of being half-applied.


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AddTransactionArgs(ToolArgs):
    amount: Decimal = Field(..., gt=0, description="Positive amount in euros")
    description: str = Field(..., min_length=1, max_length=200)
    type: TransactionType
    category: Optional[str] = Field(default=None, description="Category name")
    date: Optional[dt.date] = Field(default=None, description="Defaults to today")


class GetTransactionsArgs(ToolArgs):
    limit: int = Field(default=10, ge=1, le=100)
    type: Optional[TransactionType] = None
    category: Optional[str] = None


class AddBudgetArgs(ToolArgs):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0)
    category: Optional[str] = None
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: Optional[date] = Field(default=None, description="Defaults to today")


class GetBudgetsArgs(ToolArgs):
    active_only: bool = False


class AddGoalArgs(ToolArgs):
    title: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    target_date: Optional[date] = None


class GetGoalsArgs(ToolArgs):
    include_completed: bool = True


class GetFinancialSummaryArgs(ToolArgs):
    pass


class GetSmartAlertsArgs(ToolArgs):
    unread_only: bool = False


class GenerateDashboardArgs(ToolArgs):
    period: Literal["weekly", "monthly", "quarterly", "yearly"] = "monthly"


class GenerateReportArgs(ToolArgs):
    type: ReportType = ReportType.monthly_summary
    start: Optional[date] = Field(default=None, description="Defaults to month start")
    end: Optional[date] = Field(default=None, description="Defaults to today")


class UpdateGoalProgressArgs(ToolArgs):
    goal_id: int
    amount: Decimal = Field(..., ge=0, description="Amount to add to the goal")
    note: Optional[str] = None


class GetSpendingInsightsArgs(ToolArgs):
    period: Literal["weekly", "monthly", "quarterly", "yearly"] = "monthly"


class CreateScheduledReminderArgs(ToolArgs):
    message: str = Field(..., min_length=1, max_length=300)
    remind_at: dt.datetime = Field(..., description="Local date and time")
