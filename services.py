from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from alerts import (
    RECENT_TRANSACTION_LIMIT,
    AlertGenerator,
    GeneratedAlert,
    achievement_expired,
)
from budgeting import (
    budget_is_active,
    budget_progress,
    completes_goal,
    evaluate_goal,
    money,
    serialize_budget,
    serialize_goal,
    to_decimal,
)
from config import get_settings
from dashboard import DashboardBuilder, financial_summary
from models import (
    Alert,
    AlertType,
    Budget,
    Category,
    ChatMessage,
    ChatRole,
    DailyUsage,
    Goal,
    GoalProgress,
    Reminder,
    Report,
    Transaction,
    TransactionType,
)
from periods import budget_period_end, dashboard_window
from reports import ReportBuilder
from schemas import (
    BudgetIn,
    BudgetUpdate,
    GoalIn,
    GoalUpdate,
    ReportRequest,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

REMINDER_PREFIX = "⏰ "


class NotFoundError(ValueError):
    pass


class UsageLimitExceeded(Exception):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Daily message limit reached ({limit} messages per day). Try again tomorrow!"
        )
        self.limit = limit


class CategoryService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        type_fallback: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        if type_fallback is None:
            type_fallback = get_settings().category_type_fallback
        self.type_fallback = type_fallback

    def list_all(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if txn_type is not None:
            stmt = stmt.where(Category.type == txn_type)
        return self.session.scalars(stmt).all()

    def resolve(self, name: Optional[str], desired_type: TransactionType) -> Optional[int]:
        clean_name = (name or "").strip()
        if not clean_name:
            return None

        try:
            with self.session.begin_nested():
                category = self.session.scalar(
                    select(Category).where(
                        Category.user_id == self.user_id,
                        Category.name == clean_name,
                        Category.type == desired_type,
                    )
                )
                if category is None and self.type_fallback:
                    category = self.session.scalar(
                        select(Category)
                        .where(
                            Category.user_id == self.user_id,
                            Category.name == clean_name,
                        )
                        .order_by(Category.id)
                    )
                    if category is not None:
                        logger.info(
                            f"category_type_fallback: user_id={self.user_id} "
                            f"name={clean_name!r} wanted={desired_type.value} "
                            f"found={category.type.value}"
                        )
                if category is None:
                    category = Category(
                        user_id=self.user_id, name=clean_name, type=desired_type
                    )
                    self.session.add(category)
                    self.session.flush()
                return category.id
        except SQLAlchemyError:
            logger.exception(
                f"category_resolve_failed: user_id={self.user_id} name={clean_name!r}"
            )
            return None

    def match_name(
        self, name: str, txn_type: Optional[TransactionType] = None
    ) -> Optional[Category]:
        """Find a category by name, tolerating case and a single typo."""
        input_lower = name.strip().lower()
        if not input_lower:
            return None
        categories = self.list_all(txn_type)
        for category in categories:
            if category.name.lower() == input_lower:
                return category

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _base(self):
        return (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
        )

    def list(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        txn_type: Optional[TransactionType] = None,
        category_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Transaction]:
        stmt = self._base()
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        stmt = (
            stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).unique().all()

    def count(self) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def recent(self, limit: int = RECENT_TRANSACTION_LIMIT) -> list[Transaction]:
        return self.list(limit=limit)

    def between(self, start: date, end: date) -> list[Transaction]:
        stmt = (
            self._base()
            .where(Transaction.date.between(start, end))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).unique().all()

    def covering(self, start: date, end: date, budgets: list[Budget]) -> list[Transaction]:
        """Transactions spanning both a reporting window and every budget window."""
        for budget in budgets:
            start = min(start, budget.start_date)
            end = max(end, budget.end_date)
        return self.between(start, end)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            self._base().where(Transaction.id == transaction_id)
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        category_id = CategoryService(self.session, self.user_id).resolve(
            data.category, data.type
        )
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount=data.amount,
            description=data.description.strip(),
            category_id=category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_fields_set
        if data.type is not None:
            txn.type = data.type
        if data.amount is not None:
            txn.amount = data.amount
        if data.description is not None:
            txn.description = data.description.strip()
        if data.date is not None:
            txn.date = data.date
        if "category" in fields:
            txn.category_id = CategoryService(self.session, self.user_id).resolve(
                data.category, txn.type
            )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, active_on: Optional[date] = None) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc(), Budget.id)
        )
        budgets = self.session.scalars(stmt).unique().all()
        if active_on is not None:
            budgets = [b for b in budgets if budget_is_active(b, active_on)]
        return budgets

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def window_expenses(self, budgets: list[Budget]) -> list[Transaction]:
        if not budgets:
            return []
        start = min(b.start_date for b in budgets)
        end = max(b.end_date for b in budgets)
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(start, end),
            )
        )
        return self.session.scalars(stmt).unique().all()

    def with_progress(self, budgets: list[Budget]) -> list[dict[str, object]]:
        transactions = self.window_expenses(budgets)
        return [
            serialize_budget(budget, budget_progress(self.user_id, budget, transactions))
            for budget in budgets
        ]

    def create(self, data: BudgetIn) -> Budget:
        category_id = CategoryService(self.session, self.user_id).resolve(
            data.category, TransactionType.expense
        )
        budget = Budget(
            user_id=self.user_id,
            category_id=category_id,
            name=data.name.strip(),
            amount=data.amount,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date or budget_period_end(data.start_date, data.period),
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_fields_set
        if data.name is not None:
            budget.name = data.name.strip()
        if data.amount is not None:
            budget.amount = data.amount
        if data.period is not None:
            budget.period = data.period
        if data.start_date is not None:
            budget.start_date = data.start_date
        if data.end_date is not None:
            budget.end_date = data.end_date
        elif data.period is not None or data.start_date is not None:
            budget.end_date = budget_period_end(budget.start_date, budget.period)
        if budget.end_date < budget.start_date:
            self.session.rollback()
            raise ValueError("end_date must not be before start_date")
        if "category" in fields:
            budget.category_id = CategoryService(self.session, self.user_id).resolve(
                data.category, TransactionType.expense
            )
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, include_completed: bool = True) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.target_date.is_(None), Goal.target_date, Goal.id)
        )
        if not include_completed:
            stmt = stmt.where(Goal.is_completed.is_(False))
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> Goal:
        goal = self.session.scalar(
            select(Goal).where(Goal.user_id == self.user_id, Goal.id == goal_id)
        )
        if not goal:
            raise NotFoundError("Goal not found")
        return goal

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(
            user_id=self.user_id,
            title=data.title.strip(),
            description=data.description,
            target_amount=data.target_amount,
            current_amount=data.current_amount,
            target_date=data.target_date,
            is_completed=completes_goal(data.current_amount, data.target_amount),
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        fields = data.model_fields_set
        if data.title is not None:
            goal.title = data.title.strip()
        if "description" in fields:
            goal.description = data.description
        if data.target_amount is not None:
            goal.target_amount = data.target_amount
        if data.current_amount is not None:
            goal.current_amount = data.current_amount
        if "target_date" in fields:
            goal.target_date = data.target_date
        if data.is_completed is not None:
            goal.is_completed = data.is_completed
        elif not goal.is_completed:
            goal.is_completed = completes_goal(goal.current_amount, goal.target_amount)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def add_progress(
        self, goal_id: int, amount: Decimal, note: Optional[str] = None
    ) -> tuple[Goal, GoalProgress]:
        amount = to_decimal(amount)
        if amount < 0:
            raise ValueError("Progress amount must not be negative")
        goal = self.get(goal_id)

        entry = GoalProgress(goal_id=goal.id, amount=amount, note=note)
        try:
            self.session.add(entry)
            goal.current_amount = to_decimal(goal.current_amount) + amount
            if not goal.is_completed:
                goal.is_completed = completes_goal(
                    goal.current_amount, goal.target_amount
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"goal_progress_failed: goal_id={goal_id}")
            raise
        self.session.refresh(goal)
        self.session.refresh(entry)
        logger.info(
            f"goal_progress: goal_id={goal.id} amount={amount} "
            f"current={goal.current_amount} completed={goal.is_completed}"
        )
        return goal, entry

    def progress_history(self, goal_id: int) -> list[GoalProgress]:
        goal = self.get(goal_id)
        stmt = (
            select(GoalProgress)
            .where(GoalProgress.goal_id == goal.id)
            .order_by(GoalProgress.created_at.desc(), GoalProgress.id.desc())
        )
        return self.session.scalars(stmt).all()

    def serialize(self, goal: Goal, now: datetime) -> dict[str, object]:
        return serialize_goal(goal, evaluate_goal(goal, now))


def serialize_progress(entry: GoalProgress) -> dict[str, object]:
    return {
        "id": entry.id,
        "goal_id": entry.goal_id,
        "amount": money(entry.amount),
        "note": entry.note,
        "created_at": entry.created_at.isoformat(),
    }


def serialize_alert(alert: Alert) -> dict[str, object]:
    return {
        "id": alert.key,
        "type": alert.type.value,
        "condition": json.loads(alert.condition_json),
        "message": alert.message,
        "priority": alert.priority.value,
        "is_active": alert.is_active,
        "is_read": alert.is_read,
        "created_at": alert.created_at.isoformat(),
    }


class AlertService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _persisted(self) -> dict[str, Alert]:
        rows = self.session.scalars(
            select(Alert).where(Alert.user_id == self.user_id)
        ).all()
        return {row.key: row for row in rows}

    def refresh(self, now: datetime) -> list[GeneratedAlert]:
        transactions = TransactionService(self.session, self.user_id).recent()
        budget_service = BudgetService(self.session, self.user_id)
        budgets = budget_service.list_all()
        spend_rows = budget_service.window_expenses(budgets)
        goals = GoalService(self.session, self.user_id).list_all()

        existing = self._persisted()
        unlocked = {
            json.loads(row.condition_json).get("achievement")
            for row in existing.values()
            if row.type == AlertType.achievement
        }

        generator = AlertGenerator(locale=get_settings().locale)
        generated = generator.generate(
            self.user_id,
            transactions,
            budgets,
            goals,
            now,
            unlocked=frozenset(u for u in unlocked if u),
            spend_rows=spend_rows,
        )

        for alert in generated:
            payload = json.dumps(alert.condition_payload(), sort_keys=True)
            row = existing.get(alert.key)
            if row is None:
                row = Alert(
                    user_id=self.user_id,
                    key=alert.key,
                    type=alert.type,
                    condition_json=payload,
                    message=alert.message,
                    priority=alert.priority,
                    is_active=alert.is_active,
                )
                self.session.add(row)
                existing[alert.key] = row
            else:
                row.type = alert.type
                row.condition_json = payload
                row.message = alert.message
                row.priority = alert.priority
                row.is_active = alert.is_active

        current = {alert.key for alert in generated}
        stale = 0
        for key, row in existing.items():
            if key in current:
                continue
            if row.type == AlertType.achievement and not achievement_expired(
                json.loads(row.condition_json), now
            ):
                continue
            if row.is_active:
                row.is_active = False
                stale += 1

        self.session.commit()
        logger.info(
            f"alerts_refreshed: user_id={self.user_id} generated={len(generated)} "
            f"deactivated={stale}"
        )
        return generated

    def list_active(self, unread_only: bool = False, limit: Optional[int] = None) -> list[Alert]:
        stmt = (
            select(Alert)
            .where(Alert.user_id == self.user_id, Alert.is_active.is_(True))
            .order_by(Alert.updated_at.desc(), Alert.id.desc())
        )
        if unread_only:
            stmt = stmt.where(Alert.is_read.is_(False))
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def mark_read(self, keys: list[str]) -> int:
        result = self.session.execute(
            update(Alert)
            .where(Alert.user_id == self.user_id, Alert.key.in_(keys))
            .values(is_read=True)
        )
        self.session.commit()
        return int(result.rowcount or 0)


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def build(self, period: Optional[str], now: datetime) -> dict[str, object]:
        window = dashboard_window(period, now)
        budgets = BudgetService(self.session, self.user_id).list_all()
        goals = GoalService(self.session, self.user_id).list_all()
        transactions = TransactionService(self.session, self.user_id).covering(
            window.start.date(), window.end.date(), budgets
        )
        alerts = AlertService(self.session, self.user_id).list_active(limit=5)
        builder = DashboardBuilder(get_settings().locale)
        return builder.build(
            self.user_id, transactions, budgets, goals, period, now, alerts=alerts
        )

    def summary(self, now: datetime) -> dict[str, object]:
        window = dashboard_window("monthly", now)
        budgets = BudgetService(self.session, self.user_id).list_all()
        goals = GoalService(self.session, self.user_id).list_all()
        transactions = TransactionService(self.session, self.user_id).covering(
            window.start.date(), window.end.date(), budgets
        )
        return financial_summary(
            self.user_id,
            transactions,
            budgets,
            goals,
            get_settings().locale,
            since=window.start.date(),
        )


class UsageService:
    def __init__(
        self, session: Session, user_id: int, limit: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.limit = limit if limit is not None else get_settings().chat_daily_limit

    def _row(self, day: date) -> Optional[DailyUsage]:
        return self.session.scalar(
            select(DailyUsage).where(
                DailyUsage.user_id == self.user_id, DailyUsage.date == day
            )
        )

    def usage(self, day: date) -> dict[str, int]:
        row = self._row(day)
        used = row.message_count if row else 0
        return {
            "used": used,
            "limit": self.limit,
            "remaining": max(0, self.limit - used),
        }

    def consume(self, day: date) -> dict[str, int]:
        row = self._row(day)
        if row is None:
            row = DailyUsage(user_id=self.user_id, date=day, message_count=0)
            self.session.add(row)
            self.session.flush()
        if row.message_count >= self.limit:
            logger.info(
                f"chat_limit_reached: user_id={self.user_id} limit={self.limit}"
            )
            raise UsageLimitExceeded(self.limit)
        row.message_count += 1
        self.session.commit()
        return self.usage(day)


def serialize_message(message: ChatMessage) -> dict[str, object]:
    return {
        "id": message.id,
        "role": message.role.value,
        "content": message.content,
        "session_id": message.session_id,
        "timestamp": message.created_at.isoformat(),
    }


class ChatHistoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def add(
        self, role: ChatRole, content: str, session_id: Optional[str] = None
    ) -> ChatMessage:
        message = ChatMessage(
            user_id=self.user_id, role=role, content=content, session_id=session_id
        )
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    def recent(
        self, session_id: Optional[str] = None, limit: int = 50
    ) -> list[ChatMessage]:
        stmt = select(ChatMessage).where(ChatMessage.user_id == self.user_id)
        if session_id:
            stmt = stmt.where(ChatMessage.session_id == session_id)
        stmt = stmt.order_by(ChatMessage.id.desc()).limit(limit)
        return list(reversed(self.session.scalars(stmt).all()))


def serialize_reminder(reminder: Reminder) -> dict[str, object]:
    return {
        "id": reminder.id,
        "message": reminder.message,
        "remind_at": reminder.remind_at.isoformat(),
        "delivered_at": reminder.delivered_at.isoformat()
        if reminder.delivered_at
        else None,
    }


class ReminderService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, message: str, remind_at: datetime, now: datetime) -> Reminder:
        if remind_at <= now:
            raise ValueError("Reminder time must be in the future")
        reminder = Reminder(
            user_id=self.user_id, message=message.strip(), remind_at=remind_at
        )
        self.session.add(reminder)
        self.session.commit()
        self.session.refresh(reminder)
        return reminder

    def list_all(self, include_delivered: bool = True) -> list[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.user_id == self.user_id)
            .order_by(Reminder.remind_at)
        )
        if not include_delivered:
            stmt = stmt.where(Reminder.delivered_at.is_(None))
        return self.session.scalars(stmt).all()


def deliver_due_reminders(session: Session, now: datetime) -> int:
    due = session.scalars(
        select(Reminder)
        .where(Reminder.delivered_at.is_(None), Reminder.remind_at <= now)
        .order_by(Reminder.remind_at, Reminder.id)
    ).all()
    for reminder in due:
        session.add(
            ChatMessage(
                user_id=reminder.user_id,
                role=ChatRole.assistant,
                content=f"{REMINDER_PREFIX}{reminder.message}",
            )
        )
        reminder.delivered_at = now
    session.commit()
    return len(due)


def users_with_plans(session: Session) -> list[int]:
    budget_users = select(Budget.user_id)
    goal_users = select(Goal.user_id)
    rows = session.execute(budget_users.union(goal_users)).scalars().all()
    return sorted(set(rows))


def refresh_all_alerts(session: Session, now: datetime) -> int:
    refreshed = 0
    for user_id in users_with_plans(session):
        AlertService(session, user_id).refresh(now)
        refreshed += 1
    return refreshed


def serialize_report(report: Report, include_content: bool = True) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": report.id,
        "title": report.title,
        "type": report.type.value,
        "period_start": report.period_start.isoformat(),
        "period_end": report.period_end.isoformat(),
        "created_at": report.created_at.isoformat(),
    }
    if include_content:
        payload["content"] = json.loads(report.content_json)
    return payload


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ReportRequest, now: datetime) -> Report:
        transactions = TransactionService(self.session, self.user_id).between(
            data.start, data.end
        )
        budgets = BudgetService(self.session, self.user_id).list_all()
        goals = GoalService(self.session, self.user_id).list_all()

        builder = ReportBuilder(get_settings().locale)
        content = builder.build(
            self.user_id,
            data.type,
            data.start,
            data.end,
            transactions,
            budgets,
            goals,
            now,
        )
        report = Report(
            user_id=self.user_id,
            title=builder.title(data.type, data.start, data.end),
            type=data.type,
            period_start=data.start,
            period_end=data.end,
            content_json=json.dumps(content),
        )
        self.session.add(report)
        self.session.commit()
        self.session.refresh(report)
        logger.info(
            f"report_generated: user_id={self.user_id} type={data.type.value} "
            f"report_id={report.id}"
        )
        return report

    def list_all(self, limit: int = 20) -> list[Report]:
        stmt = (
            select(Report)
            .where(Report.user_id == self.user_id)
            .order_by(Report.created_at.desc(), Report.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def get(self, report_id: int) -> Report:
        report = self.session.scalar(
            select(Report).where(Report.user_id == self.user_id, Report.id == report_id)
        )
        if not report:
            raise NotFoundError("Report not found")
        return report
