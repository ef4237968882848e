from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from budgeting import (
    ALERT_THRESHOLDS,
    ZERO,
    AlertThresholds,
    budget_is_active,
    goal_progress_percent,
    ratio_percent,
    spent_for_budget,
    to_decimal,
)
from messages import format_money, t
from models import AlertPriority, AlertType, Budget, Goal, Transaction, TransactionType

RECENT_TRANSACTION_LIMIT = 100
SPIKE_FACTOR = Decimal("1.5")
SPIKE_FLOOR = Decimal("50")
SMALL_EXPENSE_MIN = Decimal("2")
SMALL_EXPENSE_MAX = Decimal("10")
SMALL_EXPENSE_COUNT = 10
SMALL_EXPENSE_TOTAL = Decimal("50")
TRANSACTION_MILESTONE = 100

FIRST_GOAL = "first_goal"
HUNDRED_TRANSACTIONS = "100_transactions"
BUDGET_MASTER = "budget_master"
ONE_SHOT_ACHIEVEMENTS = frozenset({FIRST_GOAL, HUNDRED_TRANSACTIONS})


@dataclass(frozen=True)
class BudgetCondition:
    budget_id: int
    percentage: float


@dataclass(frozen=True)
class GoalDeadlineCondition:
    goal_id: int
    days_left: int
    progress: float


@dataclass(frozen=True)
class SpendingSpikeCondition:
    category: str
    week_spending: float
    average: float


@dataclass(frozen=True)
class AchievementCondition:
    achievement: str
    period: Optional[str] = None


@dataclass(frozen=True)
class SmallExpensesCondition:
    category: str
    count: int
    total: float


@dataclass(frozen=True)
class MissingBudgetCondition:
    category: str


AlertCondition = Union[
    BudgetCondition,
    GoalDeadlineCondition,
    SpendingSpikeCondition,
    AchievementCondition,
    SmallExpensesCondition,
    MissingBudgetCondition,
]


@dataclass(frozen=True)
class GeneratedAlert:
    key: str
    type: AlertType
    condition: AlertCondition
    message: str
    priority: AlertPriority
    is_active: bool = True

    def condition_payload(self) -> dict[str, object]:
        payload = asdict(self.condition)
        return {k: v for k, v in payload.items() if v is not None}

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.key,
            "type": self.type.value,
            "condition": self.condition_payload(),
            "message": self.message,
            "priority": self.priority.value,
            "is_active": self.is_active,
        }


def days_until(target, now: datetime) -> int:
    delta = datetime.combine(target, time.min) - now
    return math.ceil(delta.total_seconds() / 86400)


def achievement_expired(condition: dict[str, object], now: datetime) -> bool:
    """Monthly achievements lapse once their month is over; one-shots never do."""
    if condition.get("achievement") != BUDGET_MASTER:
        return False
    return condition.get("period") != f"{now:%Y-%m}"


def _category_label(txn: Transaction, locale: Optional[str]) -> str:
    if txn.category is not None:
        return txn.category.name
    return t("uncategorized", locale)


class AlertGenerator:
    def __init__(
        self,
        thresholds: AlertThresholds = ALERT_THRESHOLDS,
        locale: Optional[str] = None,
    ) -> None:
        self.thresholds = thresholds
        self.locale = locale

    def generate(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
        *,
        unlocked: Iterable[str] = frozenset(),
        spend_rows: Optional[Sequence[Transaction]] = None,
    ) -> list[GeneratedAlert]:
        """Run every alert family.

        `transactions` is the recent activity, newest first, used for the
        pattern, milestone and recommendation families. Budget spend is summed
        over `spend_rows`, which must cover every budget window; it defaults
        to `transactions`.
        """
        recent = list(transactions)[:RECENT_TRANSACTION_LIMIT]
        if spend_rows is None:
            spend_rows = transactions
        alerts: list[GeneratedAlert] = []
        alerts.extend(self.budget_alerts(user_id, spend_rows, budgets))
        alerts.extend(self.goal_alerts(goals, now))
        alerts.extend(self.spending_pattern_alerts(recent, now))
        alerts.extend(
            self.achievement_alerts(
                user_id,
                recent,
                budgets,
                goals,
                now,
                unlocked=frozenset(unlocked),
                spend_rows=spend_rows,
            )
        )
        alerts.extend(self.recommendation_alerts(recent, budgets))
        return alerts

    def _budget_label(self, budget: Budget) -> str:
        if budget.category is not None:
            return budget.category.name
        return t("uncategorized", self.locale)

    def budget_alerts(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
    ) -> list[GeneratedAlert]:
        alerts: list[GeneratedAlert] = []
        for budget in budgets:
            spent = spent_for_budget(user_id, budget, transactions)
            percentage = ratio_percent(spent, budget.amount)
            condition = BudgetCondition(
                budget_id=budget.id, percentage=round(float(percentage), 2)
            )
            label = self._budget_label(budget)
            if percentage > self.thresholds.high:
                priority = (
                    AlertPriority.urgent
                    if percentage > self.thresholds.urgent
                    else AlertPriority.high
                )
                alerts.append(
                    GeneratedAlert(
                        key=f"budget-{budget.id}",
                        type=AlertType.budget_exceeded,
                        condition=condition,
                        message=t(
                            "alert.budget_over",
                            self.locale,
                            category=label,
                            percentage=f"{percentage:.0f}",
                            spent=format_money(spent, self.locale),
                            amount=format_money(budget.amount, self.locale),
                        ),
                        priority=priority,
                    )
                )
            elif percentage > self.thresholds.medium:
                alerts.append(
                    GeneratedAlert(
                        key=f"budget-warning-{budget.id}",
                        type=AlertType.budget_exceeded,
                        condition=condition,
                        message=t(
                            "alert.budget_near",
                            self.locale,
                            category=label,
                            percentage=f"{percentage:.0f}",
                        ),
                        priority=AlertPriority.medium,
                    )
                )
        return alerts

    def goal_alerts(self, goals: Sequence[Goal], now: datetime) -> list[GeneratedAlert]:
        alerts: list[GeneratedAlert] = []
        for goal in goals:
            if goal.is_completed or goal.target_date is None:
                continue
            days_left = days_until(goal.target_date, now)
            progress = goal_progress_percent(goal)
            condition = GoalDeadlineCondition(
                goal_id=goal.id,
                days_left=days_left,
                progress=round(float(progress), 2),
            )
            progress_text = f"{progress:.0f}"
            if days_left <= 0:
                alerts.append(
                    GeneratedAlert(
                        key=f"goal-overdue-{goal.id}",
                        type=AlertType.goal_deadline,
                        condition=condition,
                        message=t(
                            "alert.goal_overdue",
                            self.locale,
                            title=goal.title,
                            progress=progress_text,
                        ),
                        priority=AlertPriority.urgent,
                    )
                )
            elif days_left <= 7:
                alerts.append(
                    GeneratedAlert(
                        key=f"goal-deadline-{goal.id}",
                        type=AlertType.goal_deadline,
                        condition=condition,
                        message=t(
                            "alert.goal_deadline",
                            self.locale,
                            title=goal.title,
                            days=days_left,
                            progress=progress_text,
                        ),
                        priority=AlertPriority.high,
                    )
                )
            elif days_left <= 30 and progress < 50:
                alerts.append(
                    GeneratedAlert(
                        key=f"goal-progress-{goal.id}",
                        type=AlertType.goal_deadline,
                        condition=condition,
                        message=t(
                            "alert.goal_progress",
                            self.locale,
                            title=goal.title,
                            days=days_left,
                            progress=progress_text,
                        ),
                        priority=AlertPriority.medium,
                    )
                )
        return alerts

    def spending_pattern_alerts(
        self, transactions: Sequence[Transaction], now: datetime
    ) -> list[GeneratedAlert]:
        week_start = (now - timedelta(days=7)).date()
        month_start = (now - timedelta(days=30)).date()
        week: dict[str, Decimal] = defaultdict(lambda: ZERO)
        month: dict[str, Decimal] = defaultdict(lambda: ZERO)
        order: list[str] = []
        for txn in transactions:
            if txn.type != TransactionType.expense:
                continue
            label = _category_label(txn, self.locale)
            if txn.date > month_start:
                if label not in order:
                    order.append(label)
                month[label] += to_decimal(txn.amount)
                if txn.date > week_start:
                    week[label] += to_decimal(txn.amount)

        alerts: list[GeneratedAlert] = []
        for label in order:
            weekly_average = month[label] / 4
            week_total = week[label]
            if week_total > weekly_average * SPIKE_FACTOR and week_total > SPIKE_FLOOR:
                alerts.append(
                    GeneratedAlert(
                        key=f"spending-spike-{label}",
                        type=AlertType.spending_pattern,
                        condition=SpendingSpikeCondition(
                            category=label,
                            week_spending=float(week_total),
                            average=round(float(weekly_average), 2),
                        ),
                        message=t(
                            "alert.spending_spike",
                            self.locale,
                            category=label,
                            week=format_money(week_total, self.locale),
                            average=format_money(weekly_average, self.locale),
                        ),
                        priority=AlertPriority.medium,
                    )
                )
        return alerts

    def achievement_alerts(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
        *,
        unlocked: frozenset[str] = frozenset(),
        spend_rows: Optional[Sequence[Transaction]] = None,
    ) -> list[GeneratedAlert]:
        alerts: list[GeneratedAlert] = []

        completed = [g for g in goals if g.is_completed]
        if len(completed) == 1 and FIRST_GOAL not in unlocked:
            alerts.append(
                GeneratedAlert(
                    key="achievement-first-goal",
                    type=AlertType.achievement,
                    condition=AchievementCondition(achievement=FIRST_GOAL),
                    message=t("alert.first_goal", self.locale, title=completed[0].title),
                    priority=AlertPriority.medium,
                )
            )

        if (
            len(transactions) >= TRANSACTION_MILESTONE
            and HUNDRED_TRANSACTIONS not in unlocked
        ):
            alerts.append(
                GeneratedAlert(
                    key="achievement-100-transactions",
                    type=AlertType.achievement,
                    condition=AchievementCondition(achievement=HUNDRED_TRANSACTIONS),
                    message=t(
                        "alert.100_transactions", self.locale, count=len(transactions)
                    ),
                    priority=AlertPriority.low,
                )
            )

        budget_rows = transactions if spend_rows is None else spend_rows
        today = now.date()
        active = [b for b in budgets if budget_is_active(b, today)]
        within_limit = all(
            ratio_percent(spent_for_budget(user_id, b, budget_rows), b.amount) <= 100
            for b in active
        )
        if active and within_limit:
            alerts.append(
                GeneratedAlert(
                    key=f"achievement-budget-master-{today:%Y-%m}",
                    type=AlertType.achievement,
                    condition=AchievementCondition(
                        achievement=BUDGET_MASTER, period=f"{today:%Y-%m}"
                    ),
                    message=t("alert.budget_master", self.locale),
                    priority=AlertPriority.low,
                )
            )
        return alerts

    def recommendation_alerts(
        self, transactions: Sequence[Transaction], budgets: Sequence[Budget]
    ) -> list[GeneratedAlert]:
        alerts: list[GeneratedAlert] = []

        small: dict[str, list[Decimal]] = {}
        for txn in transactions:
            amount = to_decimal(txn.amount)
            if txn.type != TransactionType.expense:
                continue
            if not (SMALL_EXPENSE_MIN < amount < SMALL_EXPENSE_MAX):
                continue
            if txn.category is not None:
                label = txn.category.name
            else:
                label = txn.description or t("uncategorized", self.locale)
            small.setdefault(label, []).append(amount)

        for label, amounts in small.items():
            total = sum(amounts, ZERO)
            if len(amounts) >= SMALL_EXPENSE_COUNT and total > SMALL_EXPENSE_TOTAL:
                alerts.append(
                    GeneratedAlert(
                        key=f"recommendation-small-expenses-{label}",
                        type=AlertType.recommendation,
                        condition=SmallExpensesCondition(
                            category=label, count=len(amounts), total=float(total)
                        ),
                        message=t(
                            "alert.small_expenses",
                            self.locale,
                            count=len(amounts),
                            category=label,
                            total=format_money(total, self.locale),
                        ),
                        priority=AlertPriority.low,
                    )
                )

        budgeted = {b.category.name for b in budgets if b.category is not None}
        unbudgeted: dict[str, Decimal] = {}
        for txn in transactions:
            if txn.type != TransactionType.expense or txn.category is None:
                continue
            name = txn.category.name
            if name in budgeted:
                continue
            unbudgeted[name] = unbudgeted.get(name, ZERO) + to_decimal(txn.amount)
        if unbudgeted:
            top = sorted(unbudgeted.items(), key=lambda item: (-item[1], item[0]))[0][0]
            alerts.append(
                GeneratedAlert(
                    key=f"recommendation-create-budget-{top}",
                    type=AlertType.recommendation,
                    condition=MissingBudgetCondition(category=top),
                    message=t("alert.create_budget", self.locale, category=top),
                    priority=AlertPriority.low,
                )
            )
        return alerts
