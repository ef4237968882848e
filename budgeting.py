"""Spend aggregation and status classification for budgets and goals.

Everything here is a pure function of the rows passed in. Callers fetch the
transactions, budgets and goals they need and reuse these helpers instead of
re-deriving spend totals with their own queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from models import Budget, BudgetStatus, Goal, GoalStatus, Transaction, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class StatusThresholds:
    """Percentages that drive the budget status shown next to each budget."""

    warning: int = 80
    over: int = 100


@dataclass(frozen=True)
class AlertThresholds:
    """Percentages that drive budget alert severity."""

    medium: int = 75
    high: int = 90
    urgent: int = 100


STATUS_THRESHOLDS = StatusThresholds()
ALERT_THRESHOLDS = AlertThresholds()


@dataclass(frozen=True)
class BudgetProgress:
    spent: Decimal
    percentage: int
    remaining: Decimal
    status: BudgetStatus


@dataclass(frozen=True)
class GoalEvaluation:
    progress: int
    remaining: Decimal
    status: GoalStatus


def to_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def ratio_percent(part: object, whole: object) -> Decimal:
    whole_dec = to_decimal(whole)
    if whole_dec <= 0:
        return ZERO
    return to_decimal(part) / whole_dec * HUNDRED


def in_window(day: date, start: date, end: date) -> bool:
    return start <= day <= end


def spent_for_budget(
    user_id: int,
    budget: Budget,
    transactions: Iterable[Transaction],
    *,
    uncategorized_matches_all: bool = True,
) -> Decimal:
    if budget.category_id is None and not uncategorized_matches_all:
        return ZERO
    total = ZERO
    for txn in transactions:
        if txn.user_id != user_id or txn.type != TransactionType.expense:
            continue
        if budget.category_id is not None and txn.category_id != budget.category_id:
            continue
        if not in_window(txn.date, budget.start_date, budget.end_date):
            continue
        total += to_decimal(txn.amount)
    return total


def classify(
    amount: object,
    spent: object,
    thresholds: StatusThresholds = STATUS_THRESHOLDS,
) -> BudgetProgress:
    amount_dec = to_decimal(amount)
    spent_dec = to_decimal(spent)
    if amount_dec > 0:
        percentage = round_half_up(spent_dec / amount_dec * HUNDRED)
    else:
        percentage = 0

    if percentage > thresholds.over:
        status = BudgetStatus.over_budget
    elif percentage > thresholds.warning:
        status = BudgetStatus.warning
    else:
        status = BudgetStatus.on_track
    return BudgetProgress(
        spent=spent_dec,
        percentage=percentage,
        remaining=amount_dec - spent_dec,
        status=status,
    )


def budget_progress(
    user_id: int,
    budget: Budget,
    transactions: Iterable[Transaction],
    thresholds: StatusThresholds = STATUS_THRESHOLDS,
) -> BudgetProgress:
    spent = spent_for_budget(user_id, budget, transactions)
    return classify(budget.amount, spent, thresholds)


def budget_is_active(budget: Budget, today: date) -> bool:
    return in_window(today, budget.start_date, budget.end_date)


def goal_progress_percent(goal: Goal) -> Decimal:
    return ratio_percent(goal.current_amount, goal.target_amount)


def evaluate_goal(goal: Goal, now: datetime) -> GoalEvaluation:
    target = to_decimal(goal.target_amount)
    current = to_decimal(goal.current_amount)
    progress = round_half_up(ratio_percent(current, target))

    # completion wins over an expired deadline
    if goal.is_completed or (target > 0 and current >= target):
        status = GoalStatus.completed
    elif goal.target_date is not None and now > datetime.combine(
        goal.target_date, time.min
    ):
        status = GoalStatus.overdue
    else:
        status = GoalStatus.in_progress
    return GoalEvaluation(progress=progress, remaining=target - current, status=status)


def completes_goal(current_amount: object, target_amount: object) -> bool:
    return to_decimal(current_amount) >= to_decimal(target_amount)


def money(value: object) -> float:
    return float(to_decimal(value))


def serialize_budget(
    budget: Budget, progress: BudgetProgress, category_name: Optional[str] = None
) -> dict[str, object]:
    if category_name is None and budget.category is not None:
        category_name = budget.category.name
    return {
        "id": budget.id,
        "name": budget.name,
        "category_id": budget.category_id,
        "category": category_name,
        "amount": money(budget.amount),
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat(),
        "spent": money(progress.spent),
        "remaining": money(progress.remaining),
        "percentage": progress.percentage,
        "status": progress.status.value,
    }


def serialize_goal(goal: Goal, evaluation: GoalEvaluation) -> dict[str, object]:
    return {
        "id": goal.id,
        "title": goal.title,
        "description": goal.description,
        "target_amount": money(goal.target_amount),
        "current_amount": money(goal.current_amount),
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "is_completed": bool(goal.is_completed),
        "progress": evaluation.progress,
        "remaining": money(evaluation.remaining),
        "status": evaluation.status.value,
    }


def serialize_transaction(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount": money(txn.amount),
        "description": txn.description,
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
    }
