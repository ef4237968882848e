from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from alerts import days_until
from budgeting import (
    ZERO,
    budget_progress,
    evaluate_goal,
    money,
    ratio_percent,
    to_decimal,
)
from dashboard import expenses_by_category, income_and_expenses
from messages import format_money, t, weekday_name
from models import Budget, Goal, ReportType, Transaction, TransactionType

ANOMALY_FACTOR = Decimal("3")
LOW_SAVINGS_RATE = 10
LOW_GOAL_PROGRESS = 50


def _pct(value: Decimal) -> float:
    return round(float(value), 1)


class ReportBuilder:
    """Builds the JSON payload stored for a generated report.

    Transactions are expected to be limited to the report window already;
    budget spend goes through the shared aggregator so budget windows still
    apply on top of the report window.
    """

    def __init__(self, locale: Optional[str] = None) -> None:
        self.locale = locale

    def title(self, report_type: ReportType, start: date, end: date) -> str:
        name = t(f"report.{report_type.value}", self.locale)
        return f"{name} {start.isoformat()} / {end.isoformat()}"

    def build(
        self,
        user_id: int,
        report_type: ReportType,
        start: date,
        end: date,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
    ) -> dict[str, object]:
        in_range = [
            txn
            for txn in transactions
            if txn.user_id == user_id and start <= txn.date <= end
        ]
        metrics = self.metrics(user_id, in_range, budgets, goals, now)
        return {
            "metadata": {
                "report_type": report_type.value,
                "title": self.title(report_type, start, end),
                "generated_at": now.isoformat(),
                "period": {"start": start.isoformat(), "end": end.isoformat()},
            },
            "summary": self.summary(metrics),
            "metrics": metrics,
            "analysis": self.analysis(report_type, user_id, in_range, budgets, goals, now),
            "raw_data": {
                "transactions": len(in_range),
                "budgets": len(budgets),
                "goals": len(goals),
            },
            "recommendations": self.recommendations(metrics),
        }

    def metrics(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
    ) -> dict[str, object]:
        income, expenses = income_and_expenses(transactions)
        net = income - expenses
        count = len(transactions)
        average = (income + expenses) / count if count else ZERO

        budget_rows = []
        for budget in budgets:
            progress = budget_progress(user_id, budget, transactions)
            budget_rows.append(
                {
                    "budget_id": budget.id,
                    "category": budget.category.name if budget.category else budget.name,
                    "budgeted": money(budget.amount),
                    "spent": money(progress.spent),
                    "remaining": money(progress.remaining),
                    "utilization": _pct(ratio_percent(progress.spent, budget.amount)),
                    "status": progress.status.value,
                }
            )

        goal_rows = []
        for goal in goals:
            evaluation = evaluate_goal(goal, now)
            goal_rows.append(
                {
                    "goal_id": goal.id,
                    "title": goal.title,
                    "target": money(goal.target_amount),
                    "current": money(goal.current_amount),
                    "progress": _pct(ratio_percent(goal.current_amount, goal.target_amount)),
                    "is_completed": bool(goal.is_completed),
                    "status": evaluation.status.value,
                    "deadline": goal.target_date.isoformat() if goal.target_date else None,
                }
            )

        return {
            "financial": {
                "total_income": money(income),
                "total_expenses": money(expenses),
                "net_cash_flow": money(net),
                "savings_rate": _pct(ratio_percent(net, income)),
                "transaction_count": count,
                "average_transaction_size": money(average.quantize(Decimal("0.01"))),
            },
            "budgets": budget_rows,
            "goals": goal_rows,
            "categories": [
                {"category": name, "amount": money(amount)}
                for name, amount in expenses_by_category(transactions, self.locale)
            ],
        }

    def analysis(
        self,
        report_type: ReportType,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
    ) -> dict[str, object]:
        if report_type == ReportType.budget_analysis:
            return self.budget_analysis(user_id, transactions, budgets)
        if report_type == ReportType.goal_progress:
            return self.goal_analysis(goals, now)
        if report_type == ReportType.spending_analysis:
            return self.spending_analysis(transactions)
        if report_type == ReportType.executive_summary:
            return {
                "budgets": self.budget_analysis(user_id, transactions, budgets),
                "goals": self.goal_analysis(goals, now),
                "spending": self.spending_analysis(transactions),
            }
        return self.monthly_analysis(user_id, transactions, budgets, goals, now)

    def monthly_analysis(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        now: datetime,
    ) -> dict[str, object]:
        weekly: dict[str, list[Decimal]] = {}
        for txn in transactions:
            iso = txn.date.isocalendar()
            bucket = weekly.setdefault(f"{iso[0]}-W{iso[1]:02d}", [ZERO, ZERO])
            if txn.type == TransactionType.income:
                bucket[0] += to_decimal(txn.amount)
            else:
                bucket[1] += to_decimal(txn.amount)
        return {
            "highlights": {
                "transactions": len(transactions),
                "budgets": len(budgets),
                "goals": len(goals),
            },
            "weekly_trend": [
                {"week": week, "income": money(v[0]), "expenses": money(v[1])}
                for week, v in sorted(weekly.items())
            ],
            "budget_performance": self.budget_analysis(user_id, transactions, budgets),
            "goal_progress": self.goal_analysis(goals, now)["summary"],
        }

    def budget_analysis(
        self,
        user_id: int,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
    ) -> dict[str, object]:
        breakdown = []
        within = 0
        for budget in budgets:
            progress = budget_progress(user_id, budget, transactions)
            if ratio_percent(progress.spent, budget.amount) <= 100:
                within += 1
            breakdown.append(
                {
                    "category": budget.category.name if budget.category else budget.name,
                    "percentage": progress.percentage,
                    "status": progress.status.value,
                }
            )
        compliance = Decimal(within) / len(budgets) * 100 if budgets else ZERO
        return {
            "overall_compliance": _pct(compliance),
            "over_budget": [b["category"] for b in breakdown if b["percentage"] > 100],
            "category_breakdown": breakdown,
        }

    def goal_analysis(self, goals: Sequence[Goal], now: datetime) -> dict[str, object]:
        completed = [g for g in goals if g.is_completed]
        return {
            "summary": {
                "total": len(goals),
                "active": len(goals) - len(completed),
                "completed": len(completed),
                "completion_rate": _pct(ratio_percent(len(completed), len(goals))),
            },
            "performance_by_goal": [
                {
                    "title": goal.title,
                    "progress": evaluate_goal(goal, now).progress,
                    "status": evaluate_goal(goal, now).status.value,
                    "days_to_deadline": days_until(goal.target_date, now)
                    if goal.target_date
                    else None,
                }
                for goal in goals
            ],
        }

    def spending_analysis(self, transactions: Sequence[Transaction]) -> dict[str, object]:
        expenses = [txn for txn in transactions if txn.type == TransactionType.expense]
        total = sum((to_decimal(txn.amount) for txn in expenses), ZERO)
        average = total / len(expenses) if expenses else ZERO

        by_weekday: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for txn in expenses:
            by_weekday[txn.date.weekday()] += to_decimal(txn.amount)

        anomalies = [
            {
                "id": txn.id,
                "date": txn.date.isoformat(),
                "description": txn.description,
                "amount": money(txn.amount),
            }
            for txn in expenses
            if average > 0 and to_decimal(txn.amount) > average * ANOMALY_FACTOR
        ]
        return {
            "total_spending": money(total),
            "average_per_transaction": money(average.quantize(Decimal("0.01"))),
            "top_categories": [
                {
                    "category": name,
                    "amount": money(amount),
                    "share": _pct(ratio_percent(amount, total)),
                }
                for name, amount in expenses_by_category(expenses, self.locale)[:5]
            ],
            "spending_by_day": [
                {"day": weekday_name(day, self.locale), "amount": money(amount)}
                for day, amount in sorted(by_weekday.items())
            ],
            "anomalies": anomalies,
        }

    def summary(self, metrics: dict[str, object]) -> str:
        financial = metrics["financial"]
        net = Decimal(str(financial["net_cash_flow"]))
        direction = t(
            "report.positive" if net >= 0 else "report.negative", self.locale
        )
        return t(
            "report.summary",
            self.locale,
            direction=direction,
            net=format_money(net, self.locale),
            rate=f"{financial['savings_rate']:.1f}",
        )

    def recommendations(self, metrics: dict[str, object]) -> list[str]:
        recommendations = []
        if metrics["financial"]["savings_rate"] < LOW_SAVINGS_RATE:
            recommendations.append(t("report.rec_savings", self.locale))
        if any(b["utilization"] > 100 for b in metrics["budgets"]):
            recommendations.append(t("report.rec_budgets", self.locale))
        if any(
            g["progress"] < LOW_GOAL_PROGRESS and not g["is_completed"]
            for g in metrics["goals"]
        ):
            recommendations.append(t("report.rec_goals", self.locale))
        if not recommendations:
            recommendations.append(t("report.rec_none", self.locale))
        return recommendations
