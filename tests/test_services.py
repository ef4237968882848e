import json
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from database import create_db_engine, init_db
from models import (
    Alert,
    BudgetPeriod,
    Category,
    ChatMessage,
    ChatRole,
    Goal,
    GoalProgress,
    ReportType,
    TransactionType,
)
from schemas import (
    BudgetIn,
    BudgetUpdate,
    GoalIn,
    GoalUpdate,
    ReportRequest,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    AlertService,
    BudgetService,
    CategoryService,
    ChatHistoryService,
    GoalService,
    NotFoundError,
    ReminderService,
    ReportService,
    TransactionService,
    UsageLimitExceeded,
    UsageService,
    deliver_due_reminders,
    refresh_all_alerts,
)

NOW = datetime(2025, 3, 20, 12, 0)


def _engine():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    return engine


def _expense(amount: str, day: date, category="Food", description="Groceries"):
    return TransactionIn(
        amount=Decimal(amount),
        description=description,
        type=TransactionType.expense,
        date=day,
        category=category,
    )


def test_resolver_reuses_exact_match_and_creates_missing() -> None:
    with Session(_engine()) as session:
        categories = CategoryService(session, 1)
        first = categories.resolve(" Food ", TransactionType.expense)
        again = categories.resolve("Food", TransactionType.expense)
        salary = categories.resolve("Salary", TransactionType.income)

        assert first is not None
        assert first == again
        assert salary != first
        assert categories.resolve("   ", TransactionType.expense) is None
        assert categories.resolve(None, TransactionType.expense) is None


def test_resolver_falls_back_to_name_only_when_enabled() -> None:
    with Session(_engine()) as session:
        session.add(Category(user_id=1, name="Gifts", type=TransactionType.income))
        session.commit()
        existing = session.scalar(select(Category.id).where(Category.name == "Gifts"))

        lenient = CategoryService(session, 1, type_fallback=True)
        assert lenient.resolve("Gifts", TransactionType.expense) == existing

        strict = CategoryService(session, 1, type_fallback=False)
        created = strict.resolve("Gifts", TransactionType.expense)
        assert created != existing
        rows = session.scalars(select(Category).where(Category.name == "Gifts")).all()
        assert {row.type for row in rows} == {
            TransactionType.income,
            TransactionType.expense,
        }


def test_resolver_keeps_users_apart() -> None:
    with Session(_engine()) as session:
        mine = CategoryService(session, 1).resolve("Food", TransactionType.expense)
        theirs = CategoryService(session, 2).resolve("Food", TransactionType.expense)
        assert mine != theirs


def test_match_name_tolerates_case_and_one_typo() -> None:
    with Session(_engine()) as session:
        categories = CategoryService(session, 1)
        categories.resolve("Groceries", TransactionType.expense)
        categories.resolve("Rent", TransactionType.expense)

        assert categories.match_name("groceries").name == "Groceries"
        assert categories.match_name("Grocerie").name == "Groceries"
        assert categories.match_name("Travel") is None


def test_transaction_crud_is_scoped_to_user() -> None:
    with Session(_engine()) as session:
        service = TransactionService(session, 1)
        txn = service.create(_expense("12.50", date(2025, 3, 1)))
        assert txn.category.name == "Food"

        updated = service.update(
            txn.id, TransactionUpdate(amount=Decimal("15.00"), category="Dining")
        )
        assert updated.amount == Decimal("15.00")
        assert updated.category.name == "Dining"

        cleared = service.update(txn.id, TransactionUpdate(category=None))
        assert cleared.category_id is None

        with pytest.raises(NotFoundError):
            TransactionService(session, 2).get(txn.id)
        with pytest.raises(NotFoundError):
            TransactionService(session, 2).delete(txn.id)

        service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id)


def test_budget_end_date_defaults_from_period_and_progress_uses_window() -> None:
    with Session(_engine()) as session:
        budgets = BudgetService(session, 1)
        budget = budgets.create(
            BudgetIn(
                name="Food",
                amount=Decimal("100"),
                period=BudgetPeriod.monthly,
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )
        assert budget.end_date == date(2025, 3, 31)

        transactions = TransactionService(session, 1)
        transactions.create(_expense("95", date(2025, 3, 10)))
        transactions.create(_expense("40", date(2025, 4, 1)))
        transactions.create(_expense("30", date(2025, 3, 11), category="Rent"))

        [row] = budgets.with_progress(budgets.list_all())
        assert row["spent"] == 95.0
        assert row["remaining"] == 5.0
        assert row["percentage"] == 95
        assert row["status"] == "WARNING"
        assert row["category"] == "Food"

        weekly = budgets.update(budget.id, BudgetUpdate(period=BudgetPeriod.weekly))
        assert weekly.end_date == date(2025, 3, 7)

        with pytest.raises(ValueError):
            budgets.update(budget.id, BudgetUpdate(end_date=date(2025, 2, 1)))


def test_add_progress_updates_goal_and_ledger_together() -> None:
    with Session(_engine()) as session:
        goals = GoalService(session, 1)
        goal = goals.create(
            GoalIn(title="Bike", target_amount=Decimal("500"), current_amount=Decimal("100"))
        )
        assert goal.is_completed is False

        goal, entry = goals.add_progress(goal.id, Decimal("150"), "March savings")
        assert goal.current_amount == Decimal("250")
        assert goal.is_completed is False
        assert entry.amount == Decimal("150")

        goal, _ = goals.add_progress(goal.id, Decimal("250"))
        assert goal.current_amount == Decimal("500")
        assert goal.is_completed is True

        history = goals.progress_history(goal.id)
        assert [e.amount for e in history] == [Decimal("250"), Decimal("150")]

        with pytest.raises(ValueError):
            goals.add_progress(goal.id, Decimal("-1"))
        with pytest.raises(NotFoundError):
            GoalService(session, 2).add_progress(goal.id, Decimal("1"))


def test_completed_goal_does_not_revert_on_update() -> None:
    with Session(_engine()) as session:
        goals = GoalService(session, 1)
        goal = goals.create(
            GoalIn(title="Laptop", target_amount=Decimal("100"), current_amount=Decimal("100"))
        )
        assert goal.is_completed is True

        goal = goals.update(goal.id, GoalUpdate(target_amount=Decimal("300")))
        assert goal.is_completed is True

        evaluated = goals.serialize(goal, NOW)
        assert evaluated["status"] == "COMPLETED"
        assert evaluated["progress"] == 33


def test_deleting_goal_removes_its_ledger() -> None:
    with Session(_engine()) as session:
        goals = GoalService(session, 1)
        goal = goals.create(GoalIn(title="Camera", target_amount=Decimal("800")))
        goals.add_progress(goal.id, Decimal("50"))
        goals.delete(goal.id)

        with pytest.raises(NotFoundError):
            goals.get(goal.id)


def test_alert_refresh_upserts_and_preserves_read_flag() -> None:
    with Session(_engine()) as session:
        budgets = BudgetService(session, 1)
        budget = budgets.create(
            BudgetIn(
                name="Food",
                amount=Decimal("100"),
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )
        TransactionService(session, 1).create(_expense("150", date(2025, 3, 10)))

        alerts = AlertService(session, 1)
        first = alerts.refresh(NOW)
        key = f"budget-{budget.id}"
        assert key in {a.key for a in first}

        assert alerts.mark_read([key]) == 1
        second = alerts.refresh(NOW)
        assert [a.key for a in first] == [a.key for a in second]

        rows = session.scalars(select(Alert).where(Alert.key == key)).all()
        assert len(rows) == 1
        assert rows[0].is_read is True
        assert rows[0].priority.value == "URGENT"


def test_alert_refresh_deactivates_stale_alerts() -> None:
    with Session(_engine()) as session:
        budget = BudgetService(session, 1).create(
            BudgetIn(
                name="Food",
                amount=Decimal("100"),
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )
        txn = TransactionService(session, 1).create(_expense("150", date(2025, 3, 10)))

        alerts = AlertService(session, 1)
        alerts.refresh(NOW)
        assert f"budget-{budget.id}" in {a.key for a in alerts.list_active()}

        TransactionService(session, 1).delete(txn.id)
        alerts.refresh(NOW)
        assert f"budget-{budget.id}" not in {a.key for a in alerts.list_active()}


def test_one_shot_achievement_is_not_regenerated() -> None:
    with Session(_engine()) as session:
        GoalService(session, 1).create(
            GoalIn(title="Done", target_amount=Decimal("10"), current_amount=Decimal("10"))
        )
        alerts = AlertService(session, 1)

        first = alerts.refresh(NOW)
        assert "achievement-first-goal" in {a.key for a in first}

        second = alerts.refresh(NOW)
        assert "achievement-first-goal" not in {a.key for a in second}
        assert "achievement-first-goal" in {a.key for a in alerts.list_active()}


def test_refresh_all_alerts_visits_users_with_plans() -> None:
    with Session(_engine()) as session:
        GoalService(session, 1).create(GoalIn(title="A", target_amount=Decimal("10")))
        BudgetService(session, 2).create(
            BudgetIn(name="B", amount=Decimal("10"), start_date=date(2025, 3, 1))
        )
        TransactionService(session, 3).create(_expense("5", date(2025, 3, 1)))

        assert refresh_all_alerts(session, NOW) == 2


def test_usage_limit_is_enforced_per_day() -> None:
    with Session(_engine()) as session:
        usage = UsageService(session, 1, limit=2)
        usage.consume(NOW.date())
        assert usage.consume(NOW.date()) == {"used": 2, "limit": 2, "remaining": 0}

        with pytest.raises(UsageLimitExceeded):
            usage.consume(NOW.date())

        tomorrow = NOW.date() + timedelta(days=1)
        assert usage.consume(tomorrow)["used"] == 1


def test_chat_history_is_chronological_and_session_scoped() -> None:
    with Session(_engine()) as session:
        history = ChatHistoryService(session, 1)
        history.add(ChatRole.user, "first", "s1")
        history.add(ChatRole.assistant, "second", "s1")
        history.add(ChatRole.user, "other", "s2")

        assert [m.content for m in history.recent("s1")] == ["first", "second"]
        assert [m.content for m in history.recent(limit=2)] == ["second", "other"]


def test_due_reminders_are_delivered_once_as_chat_messages() -> None:
    with Session(_engine()) as session:
        reminders = ReminderService(session, 1)
        reminders.create("Pay rent", NOW + timedelta(minutes=10), NOW)
        reminders.create("Review budget", NOW + timedelta(days=2), NOW)
        with pytest.raises(ValueError):
            reminders.create("Too late", NOW - timedelta(minutes=1), NOW)

        assert deliver_due_reminders(session, NOW + timedelta(minutes=15)) == 1
        assert deliver_due_reminders(session, NOW + timedelta(minutes=20)) == 0

        messages = session.scalars(select(ChatMessage)).all()
        assert len(messages) == 1
        assert messages[0].role == ChatRole.assistant
        assert messages[0].content.endswith("Pay rent")

        pending = reminders.list_all(include_delivered=False)
        assert [r.message for r in pending] == ["Review budget"]


def test_report_is_persisted_with_real_figures() -> None:
    with Session(_engine()) as session:
        transactions = TransactionService(session, 1)
        transactions.create(
            TransactionIn(
                amount=Decimal("1000"),
                description="Salary",
                type=TransactionType.income,
                date=date(2025, 3, 1),
                category="Salary",
            )
        )
        transactions.create(_expense("300", date(2025, 3, 5)))
        transactions.create(_expense("999", date(2025, 4, 5)))
        BudgetService(session, 1).create(
            BudgetIn(
                name="Food",
                amount=Decimal("200"),
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )

        reports = ReportService(session, 1)
        report = reports.create(
            ReportRequest(
                type=ReportType.budget_analysis,
                start=date(2025, 3, 1),
                end=date(2025, 3, 31),
            ),
            NOW,
        )

        stored = reports.get(report.id)
        assert stored.type == ReportType.budget_analysis
        assert [r.id for r in reports.list_all()] == [report.id]
        with pytest.raises(NotFoundError):
            ReportService(session, 2).get(report.id)

        content = json.loads(stored.content_json)
        assert content["metrics"]["financial"]["total_income"] == 1000.0
        assert content["metrics"]["financial"]["total_expenses"] == 300.0
        assert content["metrics"]["financial"]["savings_rate"] == 70.0
        assert content["analysis"]["over_budget"] == ["Food"]
        assert content["raw_data"]["transactions"] == 2


def test_resolver_returns_none_when_category_insert_fails(monkeypatch) -> None:
    with Session(_engine()) as session:
        real_flush = session.flush

        def failing_flush(objects=None):
            if any(isinstance(obj, Category) for obj in session.new):
                raise IntegrityError("INSERT INTO categories", {}, Exception("locked"))
            return real_flush(objects)

        monkeypatch.setattr(session, "flush", failing_flush)

        resolver = CategoryService(session, 1)
        assert resolver.resolve("Food", TransactionType.expense) is None

        txn = TransactionService(session, 1).create(_expense("12.50", date(2025, 3, 3)))
        assert txn.id is not None
        assert txn.category_id is None
        assert session.scalar(select(func.count(Category.id))) == 0


def test_failed_progress_commit_leaves_goal_and_ledger_untouched(monkeypatch) -> None:
    with Session(_engine()) as session:
        goals = GoalService(session, 1)
        goal = goals.create(
            GoalIn(title="Bike", target_amount=Decimal("500"), current_amount=Decimal("100"))
        )
        goal_id = goal.id

        def failing_commit():
            session.flush()
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(OperationalError):
            goals.add_progress(goal_id, Decimal("50"), "Paycheck")
        monkeypatch.undo()

        session.expire_all()
        assert session.get(Goal, goal_id).current_amount == Decimal("100")
        assert session.scalar(select(func.count(GoalProgress.id))) == 0


def test_budget_alert_counts_expenses_older_than_recent_activity() -> None:
    with Session(_engine()) as session:
        budget = BudgetService(session, 1).create(
            BudgetIn(
                name="Food",
                amount=Decimal("100"),
                period=BudgetPeriod.monthly,
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )
        transactions = TransactionService(session, 1)
        transactions.create(_expense("150", date(2025, 3, 1)))
        for i in range(100):
            transactions.create(
                _expense(
                    "1",
                    date(2025, 3, 2) + timedelta(days=i % 18),
                    category="Transport",
                    description="Bus",
                )
            )

        alerts = {a.key: a for a in AlertService(session, 1).refresh(NOW)}

        assert alerts[f"budget-{budget.id}"].priority.value == "URGENT"
        assert "achievement-budget-master-2025-03" not in alerts


def test_past_month_budget_master_is_deactivated() -> None:
    with Session(_engine()) as session:
        BudgetService(session, 1).create(
            BudgetIn(
                name="Food",
                amount=Decimal("100"),
                period=BudgetPeriod.monthly,
                start_date=date(2025, 3, 1),
                category="Food",
            )
        )
        TransactionService(session, 1).create(_expense("20", date(2025, 3, 5)))
        GoalService(session, 1).create(
            GoalIn(title="Done", target_amount=Decimal("10"), current_amount=Decimal("10"))
        )

        alerts = AlertService(session, 1)
        alerts.refresh(NOW)
        active = {a.key for a in alerts.list_active()}
        assert "achievement-budget-master-2025-03" in active
        assert "achievement-first-goal" in active

        alerts.refresh(datetime(2025, 4, 5, 9, 0))
        active = {a.key for a in alerts.list_active()}
        assert "achievement-budget-master-2025-03" not in active
        assert "achievement-first-goal" in active
