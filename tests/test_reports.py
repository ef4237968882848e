from datetime import date, datetime
from decimal import Decimal

from models import Category, Goal, ReportType, Transaction, TransactionType
from reports import ReportBuilder

NOW = datetime(2025, 4, 2, 9, 0)
START = date(2025, 3, 1)
END = date(2025, 3, 31)


def _txn(txn_id: int, kind: TransactionType, amount: str, day: date, category=None):
    txn = Transaction(
        id=txn_id,
        user_id=1,
        date=day,
        type=kind,
        amount=Decimal(amount),
        description=f"Entry {txn_id}",
        category_id=category.id if category else None,
    )
    txn.category = category
    return txn


def test_spending_analysis_flags_anomalies() -> None:
    food = Category(id=1, user_id=1, name="Food", type=TransactionType.expense)
    transactions = [
        _txn(i, TransactionType.expense, "10", date(2025, 3, i), food) for i in range(1, 10)
    ]
    transactions.append(_txn(99, TransactionType.expense, "500", date(2025, 3, 20), food))

    report = ReportBuilder("en").build(
        1, ReportType.spending_analysis, START, END, transactions, [], [], NOW
    )

    analysis = report["analysis"]
    assert analysis["total_spending"] == 590.0
    assert [a["id"] for a in analysis["anomalies"]] == [99]
    assert analysis["top_categories"][0]["share"] == 100.0


def test_rows_outside_the_window_are_ignored() -> None:
    transactions = [
        _txn(1, TransactionType.income, "1000", date(2025, 3, 1)),
        _txn(2, TransactionType.income, "5000", date(2025, 4, 1)),
    ]
    report = ReportBuilder("en").build(
        1, ReportType.monthly_summary, START, END, transactions, [], [], NOW
    )

    assert report["metrics"]["financial"]["total_income"] == 1000.0
    assert report["raw_data"]["transactions"] == 1
    assert report["metadata"]["period"] == {"start": "2025-03-01", "end": "2025-03-31"}


def test_recommendations_follow_weak_spots() -> None:
    transactions = [
        _txn(1, TransactionType.income, "100", date(2025, 3, 1)),
        _txn(2, TransactionType.expense, "98", date(2025, 3, 2)),
    ]
    goals = [
        Goal(
            id=1,
            user_id=1,
            title="House",
            target_amount=Decimal("10000"),
            current_amount=Decimal("100"),
            is_completed=False,
        )
    ]
    builder = ReportBuilder("en")

    weak = builder.build(1, ReportType.goal_progress, START, END, transactions, [], goals, NOW)
    assert len(weak["recommendations"]) == 2
    assert weak["analysis"]["summary"]["active"] == 1

    healthy = builder.build(
        1,
        ReportType.goal_progress,
        START,
        END,
        [_txn(1, TransactionType.income, "100", date(2025, 3, 1))],
        [],
        [],
        NOW,
    )
    assert len(healthy["recommendations"]) == 1
