from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from budgeting import (
    ZERO,
    budget_progress,
    goal_progress_percent,
    money,
    ratio_percent,
    to_decimal,
)
from messages import format_money, month_name, t, weekday_name
from models import Alert, Budget, BudgetStatus, Goal, Transaction, TransactionType
from periods import Window, dashboard_window

GREEN = "#10B981"
AMBER = "#F59E0B"
RED = "#EF4444"
GREY = "#6B7280"
BLUE = "#3B82F6"
PURPLE = "#8B5CF6"

CHART_STATUS = {
    BudgetStatus.on_track: "good",
    BudgetStatus.warning: "warning",
    BudgetStatus.over_budget: "over",
}


def _tier(value: Decimal, high: int, low: int) -> tuple[str, str]:
    if value > high:
        return "up", GREEN
    if value > low:
        return "neutral", AMBER
    return "down", RED


def income_and_expenses(transactions: Sequence[Transaction]) -> tuple[Decimal, Decimal]:
    income = ZERO
    expenses = ZERO
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += to_decimal(txn.amount)
        else:
            expenses += to_decimal(txn.amount)
    return income, expenses


def expenses_by_category(
    transactions: Sequence[Transaction], locale: Optional[str] = None
) -> list[tuple[str, Decimal]]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        label = txn.category.name if txn.category else t("uncategorized", locale)
        totals[label] += to_decimal(txn.amount)
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def financial_summary(
    user_id: int,
    transactions: Sequence[Transaction],
    budgets: Sequence[Budget],
    goals: Sequence[Goal],
    locale: Optional[str] = None,
    *,
    since: Optional[date] = None,
) -> dict[str, object]:
    """Compact totals for the assistant prompt and summary tool.

    Budget spend uses every transaction passed in; the transaction totals only
    count rows dated on or after `since` when it is given.
    """
    recent = [
        txn
        for txn in transactions
        if txn.user_id == user_id and (since is None or txn.date >= since)
    ]
    income, expenses = income_and_expenses(recent)
    savings_rate = ratio_percent(income - expenses, income)
    top = expenses_by_category(recent, locale)[:3]

    progress = [budget_progress(user_id, b, transactions) for b in budgets]
    total_budgeted = sum((to_decimal(b.amount) for b in budgets), ZERO)
    total_spent = sum((p.spent for p in progress), ZERO)

    total_target = sum((to_decimal(g.target_amount) for g in goals), ZERO)
    total_saved = sum((to_decimal(g.current_amount) for g in goals), ZERO)
    completed = [g for g in goals if g.is_completed]

    return {
        "transactions": {
            "count": len(recent),
            "total_income": money(income),
            "total_expenses": money(expenses),
            "net": money(income - expenses),
            "savings_rate": round(float(savings_rate), 1),
            "top_categories": [
                {"category": name, "amount": money(amount)} for name, amount in top
            ],
        },
        "budgets": {
            "count": len(budgets),
            "total_budgeted": money(total_budgeted),
            "total_spent": money(total_spent),
            "over_budget": sum(1 for p in progress if p.percentage > 100),
        },
        "goals": {
            "count": len(goals),
            "active": len(goals) - len(completed),
            "completed": len(completed),
            "overall_progress": round(float(ratio_percent(total_saved, total_target)), 1),
            "total_target": money(total_target),
            "total_saved": money(total_saved),
        },
    }


class DashboardBuilder:
    def __init__(self, locale: Optional[str] = None) -> None:
        self.locale = locale

    def build(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        period: Optional[str],
        now: datetime,
        *,
        alerts: Sequence[Alert] = (),
    ) -> dict[str, object]:
        window = dashboard_window(period, now)
        in_period = [
            txn
            for txn in transactions
            if txn.user_id == user_id and window.contains(txn.date)
        ]
        metrics = self.metrics(user_id, in_period, transactions, budgets, goals)
        insights = self.insights(in_period, goals)
        return {
            "period": {
                "type": window.slug,
                "start": window.start.isoformat(),
                "end": window.end.isoformat(),
                "label": self.period_label(window),
            },
            "metrics": metrics,
            "charts": self.charts(user_id, in_period, transactions, budgets, goals),
            "insights": insights,
            "alerts": [
                {
                    "id": alert.key,
                    "type": alert.type.value,
                    "message": alert.message,
                    "priority": alert.priority.value,
                    "is_read": alert.is_read,
                }
                for alert in list(alerts)[:5]
            ],
            "summary": self.executive_summary(metrics, insights),
        }

    def metrics(
        self,
        user_id: int,
        in_period: Sequence[Transaction],
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
    ) -> list[dict[str, object]]:
        income, expenses = income_and_expenses(in_period)
        net = income - expenses
        savings_rate = ratio_percent(net, income)

        if budgets:
            compliant = sum(
                1
                for b in budgets
                if ratio_percent(
                    budget_progress(user_id, b, transactions).spent, b.amount
                )
                <= 100
            )
            compliance = Decimal(compliant) / Decimal(len(budgets)) * 100
        else:
            compliance = ZERO

        if goals:
            goal_avg = sum((goal_progress_percent(g) for g in goals), ZERO) / len(goals)
        else:
            goal_avg = ZERO

        if net > 0:
            net_trend, net_color = "up", GREEN
        elif net < 0:
            net_trend, net_color = "down", RED
        else:
            net_trend, net_color = "neutral", GREY
        savings_trend, savings_color = _tier(savings_rate, 20, 10)
        compliance_trend, compliance_color = _tier(compliance, 80, 60)
        goal_trend, goal_color = _tier(goal_avg, 70, 40)

        return [
            {
                "id": "net-cash-flow",
                "title": t("metric.net_cash_flow", self.locale),
                "value": money(net),
                "format": "currency",
                "trend": net_trend,
                "color": net_color,
            },
            {
                "id": "savings-rate",
                "title": t("metric.savings_rate", self.locale),
                "value": round(float(savings_rate), 2),
                "format": "percentage",
                "trend": savings_trend,
                "color": savings_color,
            },
            {
                "id": "budget-compliance",
                "title": t("metric.budget_compliance", self.locale),
                "value": round(float(compliance), 2),
                "format": "percentage",
                "trend": compliance_trend,
                "color": compliance_color,
            },
            {
                "id": "goal-progress",
                "title": t("metric.goal_progress", self.locale),
                "value": round(float(goal_avg), 2),
                "format": "percentage",
                "trend": goal_trend,
                "color": goal_color,
            },
            {
                "id": "total-income",
                "title": t("metric.total_income", self.locale),
                "value": money(income),
                "format": "currency",
                "color": BLUE,
            },
            {
                "id": "total-expenses",
                "title": t("metric.total_expenses", self.locale),
                "value": money(expenses),
                "format": "currency",
                "color": RED,
            },
        ]

    def charts(
        self,
        user_id: int,
        in_period: Sequence[Transaction],
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
    ) -> list[dict[str, object]]:
        return [
            {
                "id": "cash-flow-trend",
                "title": t("chart.cash_flow", self.locale),
                "type": "line",
                "data": self.cash_flow_series(in_period),
                "config": {"x_key": "date", "y_key": "cumulative", "colors": [BLUE]},
            },
            {
                "id": "expense-distribution",
                "title": t("chart.expense_distribution", self.locale),
                "type": "pie",
                "data": self.category_distribution(in_period),
                "config": {
                    "category_key": "category",
                    "value_key": "amount",
                    "colors": [RED, AMBER, GREEN, BLUE, PURPLE, "#EC4899"],
                },
            },
            {
                "id": "budget-progress",
                "title": t("chart.budget_progress", self.locale),
                "type": "bar",
                "data": self.budget_series(user_id, transactions, budgets),
                "config": {
                    "x_key": "category",
                    "y_key": "percentage",
                    "colors": [GREEN, AMBER, RED],
                },
            },
            {
                "id": "goals-progress",
                "title": t("chart.goals_progress", self.locale),
                "type": "bar",
                "data": self.goal_series(goals),
                "config": {"x_key": "goal", "y_key": "progress", "colors": [PURPLE]},
            },
            {
                "id": "income-vs-expenses",
                "title": t("chart.income_vs_expenses", self.locale),
                "type": "bar",
                "data": self.monthly_series(in_period),
                "config": {"x_key": "month", "colors": [GREEN, RED]},
            },
        ]

    def cash_flow_series(
        self, transactions: Sequence[Transaction]
    ) -> list[dict[str, object]]:
        daily: dict[str, list[Decimal]] = {}
        for txn in transactions:
            bucket = daily.setdefault(txn.date.isoformat(), [ZERO, ZERO])
            if txn.type == TransactionType.income:
                bucket[0] += to_decimal(txn.amount)
            else:
                bucket[1] += to_decimal(txn.amount)

        cumulative = ZERO
        series: list[dict[str, object]] = []
        for day in sorted(daily):
            income, expenses = daily[day]
            cumulative += income - expenses
            series.append(
                {
                    "date": day,
                    "income": money(income),
                    "expenses": money(expenses),
                    "net": money(income - expenses),
                    "cumulative": money(cumulative),
                }
            )
        return series

    def category_distribution(
        self, transactions: Sequence[Transaction]
    ) -> list[dict[str, object]]:
        totals = expenses_by_category(transactions, self.locale)
        grand_total = sum((amount for _, amount in totals), ZERO)
        return [
            {
                "category": name,
                "amount": money(amount),
                "percentage": round(float(ratio_percent(amount, grand_total)), 1),
            }
            for name, amount in totals[:8]
        ]

    def budget_series(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
    ) -> list[dict[str, object]]:
        series: list[dict[str, object]] = []
        for budget in budgets:
            progress = budget_progress(user_id, budget, transactions)
            percentage = ratio_percent(progress.spent, budget.amount)
            series.append(
                {
                    "category": budget.category.name if budget.category else budget.name,
                    "budgeted": money(budget.amount),
                    "spent": money(progress.spent),
                    "percentage": round(float(min(percentage, Decimal(100))), 2),
                    "status": CHART_STATUS[progress.status],
                }
            )
        return series

    def goal_series(self, goals: Sequence[Goal]) -> list[dict[str, object]]:
        series: list[dict[str, object]] = []
        for goal in list(goals)[:5]:
            progress = goal_progress_percent(goal)
            if goal.is_completed:
                status = "completed"
            elif progress > 80:
                status = "near-complete"
            elif progress > 50:
                status = "on-track"
            else:
                status = "needs-attention"
            series.append(
                {
                    "goal": goal.title,
                    "target": money(goal.target_amount),
                    "current": money(goal.current_amount),
                    "progress": round(float(min(progress, Decimal(100))), 2),
                    "status": status,
                }
            )
        return series

    def monthly_series(
        self, transactions: Sequence[Transaction]
    ) -> list[dict[str, object]]:
        monthly: dict[str, list[Decimal]] = {}
        for txn in transactions:
            bucket = monthly.setdefault(f"{txn.date:%Y-%m}", [ZERO, ZERO])
            if txn.type == TransactionType.income:
                bucket[0] += to_decimal(txn.amount)
            else:
                bucket[1] += to_decimal(txn.amount)
        return [
            {
                "month": month,
                "income": money(values[0]),
                "expenses": money(values[1]),
                "net": money(values[0] - values[1]),
            }
            for month, values in sorted(monthly.items())
        ]

    def insights(
        self, transactions: Sequence[Transaction], goals: Sequence[Goal]
    ) -> list[dict[str, object]]:
        insights: list[dict[str, object]] = []

        by_category = expenses_by_category(transactions, self.locale)
        if by_category:
            category, amount = by_category[0]
            insights.append(
                {
                    "type": "spending-pattern",
                    "title": t("insight.top_category.title", self.locale),
                    "description": t(
                        "insight.top_category.description",
                        self.locale,
                        category=category,
                        amount=format_money(amount, self.locale),
                    ),
                    "actionable": t(
                        "insight.top_category.actionable", self.locale, category=category
                    ),
                    "priority": "medium",
                }
            )

        by_weekday: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for txn in transactions:
            if txn.type == TransactionType.expense:
                by_weekday[txn.date.weekday()] += to_decimal(txn.amount)
        if by_weekday:
            weekday, amount = sorted(by_weekday.items(), key=lambda i: (-i[1], i[0]))[0]
            name = weekday_name(weekday, self.locale)
            insights.append(
                {
                    "type": "temporal-pattern",
                    "title": t("insight.top_weekday.title", self.locale),
                    "description": t(
                        "insight.top_weekday.description",
                        self.locale,
                        weekday=name,
                        amount=format_money(amount, self.locale),
                    ),
                    "actionable": t(
                        "insight.top_weekday.actionable", self.locale, weekday=name
                    ),
                    "priority": "low",
                }
            )

        active = [g for g in goals if not g.is_completed]
        if active:
            avg = sum((goal_progress_percent(g) for g in active), ZERO) / len(active)
            insights.append(
                {
                    "type": "goal-performance",
                    "title": t("insight.goals.title", self.locale),
                    "description": t(
                        "insight.goals.description", self.locale, progress=f"{avg:.1f}"
                    ),
                    "actionable": t(
                        "insight.goals.actionable_low"
                        if avg < 50
                        else "insight.goals.actionable_ok",
                        self.locale,
                    ),
                    "priority": "high" if avg < 30 else "low",
                }
            )
        return insights

    def executive_summary(
        self, metrics: list[dict[str, object]], insights: list[dict[str, object]]
    ) -> str:
        values = {m["id"]: m["value"] for m in metrics}
        net = Decimal(str(values.get("net-cash-flow", 0)))
        savings_rate = float(values.get("savings-rate", 0))

        summary = ""
        if net > 0:
            summary += t("summary.positive", self.locale, amount=format_money(net, self.locale))
        elif net < 0:
            summary += t(
                "summary.deficit", self.locale, amount=format_money(abs(net), self.locale)
            )

        if savings_rate > 20:
            summary += t("summary.savings_high", self.locale)
        elif savings_rate > 10:
            summary += t("summary.savings_mid", self.locale)
        else:
            summary += t("summary.savings_low", self.locale)

        urgent = sum(1 for i in insights if i["priority"] == "high")
        if urgent:
            summary += t("summary.attention", self.locale, count=urgent)
        else:
            summary += t("summary.stable", self.locale)
        return summary

    def period_label(self, window: Window) -> str:
        start = window.start
        if window.slug == "weekly":
            return t("period.weekly", self.locale, start=start.date().isoformat())
        if window.slug == "quarterly":
            return t(
                "period.quarterly",
                self.locale,
                quarter=(start.month - 1) // 3 + 1,
                year=start.year,
            )
        if window.slug == "yearly":
            return t("period.yearly", self.locale, year=start.year)
        return t(
            "period.monthly",
            self.locale,
            month=month_name(start.month, self.locale),
            year=start.year,
        )
