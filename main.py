from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from assistant import FinanceAssistant
from auth import current_user_id
from budgeting import serialize_transaction
from database import SessionLocal, init_db
from models import TransactionType
from periods import local_now
from scheduler import SchedulerManager
from schemas import (
    AlertMarkReadIn,
    BudgetIn,
    BudgetUpdate,
    ChatIn,
    GoalIn,
    GoalProgressIn,
    GoalUpdate,
    ReportRequest,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    AlertService,
    BudgetService,
    ChatHistoryService,
    DashboardService,
    GoalService,
    NotFoundError,
    ReminderService,
    ReportService,
    TransactionService,
    UsageLimitExceeded,
    UsageService,
    serialize_alert,
    serialize_message,
    serialize_progress,
    serialize_reminder,
    serialize_report,
)


app = FastAPI(title="Personal Finance")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/api/transactions")
def list_transactions(
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    offset = (page - 1) * limit
    items = TransactionService(db, user_id).list(
        limit=limit + 1,
        offset=offset,
        txn_type=type,
        category_id=category_id,
        start=start,
        end=end,
    )
    has_more = len(items) > limit
    return {
        "items": [serialize_transaction(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return serialize_transaction(txn)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return serialize_transaction(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return serialize_transaction(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/budgets")
def list_budgets(
    active: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    budgets = service.list_all(local_now().date() if active else None)
    return {"budgets": service.with_progress(budgets)}


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.with_progress([budget])[0]


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.get(budget_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.with_progress([budget])[0]


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.update(budget_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.with_progress([budget])[0]


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/goals")
def list_goals(
    include_completed: bool = True,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    now = local_now()
    goals = service.list_all(include_completed=include_completed)
    return {"goals": [service.serialize(goal, now) for goal in goals]}


@app.post("/api/goals", status_code=201)
def create_goal(
    data: GoalIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    try:
        goal = service.create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.serialize(goal, local_now())


@app.get("/api/goals/{goal_id}")
def get_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    try:
        goal = service.get(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.serialize(goal, local_now())


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: int,
    data: GoalUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    try:
        goal = service.update(goal_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return service.serialize(goal, local_now())


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        GoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/goals/{goal_id}/progress")
def goal_progress_history(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    try:
        goal = service.get(goal_id)
        entries = service.progress_history(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "goal": service.serialize(goal, local_now()),
        "entries": [serialize_progress(entry) for entry in entries],
    }


@app.put("/api/goals/{goal_id}/progress")
def add_goal_progress(
    goal_id: int,
    data: GoalProgressIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = GoalService(db, user_id)
    try:
        goal, entry = service.add_progress(goal_id, data.amount, data.note)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "goal": service.serialize(goal, local_now()),
        "entry": serialize_progress(entry),
    }


@app.get("/api/alerts")
def list_alerts(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = AlertService(db, user_id)
    service.refresh(local_now())
    alerts = service.list_active(unread_only=unread_only)
    return {
        "alerts": [serialize_alert(alert) for alert in alerts],
        "unread": sum(1 for alert in alerts if not alert.is_read),
    }


@app.post("/api/alerts/mark-read")
def mark_alerts_read(
    data: AlertMarkReadIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    updated = AlertService(db, user_id).mark_read(data.alert_ids)
    return {"updated": updated}


@app.get("/api/dashboard")
def dashboard(
    period: str = "monthly",
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return DashboardService(db, user_id).build(period, local_now())
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/reports")
def list_reports(
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    reports = ReportService(db, user_id).list_all(limit=limit)
    return {"reports": [serialize_report(r, include_content=False) for r in reports]}


@app.post("/api/reports", status_code=201)
def create_report(
    data: ReportRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        report = ReportService(db, user_id).create(data, local_now())
    except ValueError as exc:
        raise _http_error(exc) from exc
    return serialize_report(report)


@app.get("/api/reports/{report_id}")
def get_report(
    report_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        report = ReportService(db, user_id).get(report_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return serialize_report(report)


@app.get("/api/chat")
def chat_history(
    session_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    messages = ChatHistoryService(db, user_id).recent(session_id, limit=limit)
    usage = UsageService(db, user_id).usage(local_now().date())
    return {
        "messages": [serialize_message(message) for message in messages],
        "usage": usage,
    }


@app.post("/api/chat")
def chat(
    data: ChatIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    assistant = FinanceAssistant(db, user_id)
    try:
        return assistant.reply(data.message, local_now(), data.session_id)
    except UsageLimitExceeded as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from exc


@app.get("/api/reminders")
def list_reminders(
    pending_only: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    reminders = ReminderService(db, user_id).list_all(
        include_delivered=not pending_only
    )
    return {"reminders": [serialize_reminder(r) for r in reminders]}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
