"""AI chat assistant backed by an OpenAI-compatible chat completions API.

The model sees a short financial summary of the user, the recent conversation
and a set of function declarations. Requested function calls are executed by
`ToolDispatcher` against the regular services and their JSON results are fed
back until the model answers in plain text.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import openai
from pydantic import ValidationError
from sqlalchemy.orm import Session

from budgeting import serialize_transaction
from config import Settings, get_settings
from models import ChatRole
from schemas import (
    AddBudgetArgs,
    AddGoalArgs,
    AddTransactionArgs,
    BudgetIn,
    CreateScheduledReminderArgs,
    GenerateDashboardArgs,
    GenerateReportArgs,
    GetBudgetsArgs,
    GetFinancialSummaryArgs,
    GetGoalsArgs,
    GetSmartAlertsArgs,
    GetSpendingInsightsArgs,
    GetTransactionsArgs,
    GoalIn,
    ReportRequest,
    ToolArgs,
    TransactionIn,
    UpdateGoalProgressArgs,
)
from services import (
    AlertService,
    BudgetService,
    CategoryService,
    ChatHistoryService,
    DashboardService,
    GoalService,
    ReminderService,
    ReportService,
    TransactionService,
    UsageService,
    serialize_alert,
    serialize_message,
    serialize_progress,
    serialize_reminder,
    serialize_report,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
MAX_TOKENS = 400

FALLBACK_MESSAGE = (
    "I'm having trouble connecting right now 🤖 But I'm here to help with your "
    "finances! Try asking me about budgeting, saving strategies, or your "
    "financial goals."
)

SYSTEM_PROMPT = """You are a friendly and knowledgeable personal finance assistant.

Your role:
- Give helpful, personalized financial advice
- Be encouraging and give specific, actionable recommendations
- Keep answers concise (2-4 sentences) unless the user asks for detail
- Use the available functions to read or change the user's data instead of guessing

Today is {today}. Amounts are in euros.
Reply in the user's language; the preferred locale is "{locale}".

User's financial context:
{context}
"""

TOOL_ARGS: dict[str, type[ToolArgs]] = {
    "addTransaction": AddTransactionArgs,
    "getTransactions": GetTransactionsArgs,
    "addBudget": AddBudgetArgs,
    "getBudgets": GetBudgetsArgs,
    "addGoal": AddGoalArgs,
    "getGoals": GetGoalsArgs,
    "getFinancialSummary": GetFinancialSummaryArgs,
    "getSmartAlerts": GetSmartAlertsArgs,
    "generateDashboard": GenerateDashboardArgs,
    "generateReport": GenerateReportArgs,
    "updateGoalProgress": UpdateGoalProgressArgs,
    "getSpendingInsights": GetSpendingInsightsArgs,
    "createScheduledReminder": CreateScheduledReminderArgs,
}

TOOL_DESCRIPTIONS = {
    "addTransaction": "Record an income or expense transaction.",
    "getTransactions": "List the most recent transactions, optionally filtered by type or category.",
    "addBudget": "Create a spending budget, optionally tied to an expense category.",
    "getBudgets": "List budgets with spent, remaining, percentage and status.",
    "addGoal": "Create a savings goal.",
    "getGoals": "List savings goals with progress and status.",
    "getFinancialSummary": "Summarize this month's income, expenses, budgets and goals.",
    "getSmartAlerts": "Refresh and list budget, goal, spending and achievement alerts.",
    "generateDashboard": "Build the dashboard metrics, charts and insights for a period.",
    "generateReport": "Generate and store a financial report for a date range.",
    "updateGoalProgress": "Add a contribution to a savings goal.",
    "getSpendingInsights": "Describe notable spending patterns for a period.",
    "createScheduledReminder": "Schedule a reminder message for a future local time.",
}


def tool_definitions() -> list[dict[str, Any]]:
    definitions = []
    for name, model in TOOL_ARGS.items():
        schema = model.model_json_schema()
        schema.pop("title", None)
        definitions.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": TOOL_DESCRIPTIONS[name],
                    "parameters": schema,
                },
            }
        )
    return definitions


TOOL_DEFINITIONS = tool_definitions()


class AssistantResponseError(Exception):
    pass


class ToolDispatcher:
    def __init__(self, session: Session, user_id: int, now: datetime) -> None:
        self.session = session
        self.user_id = user_id
        self.now = now
        self.handlers: dict[str, Callable[[Any], dict[str, Any]]] = {
            "addTransaction": self.add_transaction,
            "getTransactions": self.get_transactions,
            "addBudget": self.add_budget,
            "getBudgets": self.get_budgets,
            "addGoal": self.add_goal,
            "getGoals": self.get_goals,
            "getFinancialSummary": self.get_financial_summary,
            "getSmartAlerts": self.get_smart_alerts,
            "generateDashboard": self.generate_dashboard,
            "generateReport": self.generate_report,
            "updateGoalProgress": self.update_goal_progress,
            "getSpendingInsights": self.get_spending_insights,
            "createScheduledReminder": self.create_scheduled_reminder,
        }

    def dispatch(self, name: str, arguments: Any) -> dict[str, Any]:
        model = TOOL_ARGS.get(name)
        handler = self.handlers.get(name)
        if model is None or handler is None:
            return {"error": f"Unknown function: {name}"}

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                return {"error": "Arguments are not valid JSON"}
        try:
            args = model.model_validate(arguments or {})
        except ValidationError as exc:
            return {
                "error": "Invalid arguments",
                "details": [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                ],
            }

        logger.info(f"assistant_tool: user_id={self.user_id} name={name}")
        try:
            return handler(args)
        except ValueError as exc:
            return {"error": str(exc)}

    def add_transaction(self, args: AddTransactionArgs) -> dict[str, Any]:
        txn = TransactionService(self.session, self.user_id).create(
            TransactionIn(
                amount=args.amount,
                description=args.description,
                type=args.type,
                date=args.date or self.now.date(),
                category=args.category,
            )
        )
        return {"success": True, "transaction": serialize_transaction(txn)}

    def get_transactions(self, args: GetTransactionsArgs) -> dict[str, Any]:
        category_id = None
        if args.category:
            category = CategoryService(self.session, self.user_id).match_name(
                args.category, args.type
            )
            if category is None:
                return {"transactions": [], "count": 0}
            category_id = category.id
        rows = TransactionService(self.session, self.user_id).list(
            limit=args.limit, txn_type=args.type, category_id=category_id
        )
        return {
            "transactions": [serialize_transaction(txn) for txn in rows],
            "count": len(rows),
        }

    def add_budget(self, args: AddBudgetArgs) -> dict[str, Any]:
        service = BudgetService(self.session, self.user_id)
        budget = service.create(
            BudgetIn(
                name=args.name,
                amount=args.amount,
                period=args.period,
                start_date=args.start_date or self.now.date(),
                category=args.category,
            )
        )
        return {"success": True, "budget": service.with_progress([budget])[0]}

    def get_budgets(self, args: GetBudgetsArgs) -> dict[str, Any]:
        service = BudgetService(self.session, self.user_id)
        budgets = service.list_all(self.now.date() if args.active_only else None)
        return {"budgets": service.with_progress(budgets)}

    def add_goal(self, args: AddGoalArgs) -> dict[str, Any]:
        service = GoalService(self.session, self.user_id)
        goal = service.create(
            GoalIn(
                title=args.title,
                description=args.description,
                target_amount=args.target_amount,
                target_date=args.target_date,
            )
        )
        return {"success": True, "goal": service.serialize(goal, self.now)}

    def get_goals(self, args: GetGoalsArgs) -> dict[str, Any]:
        service = GoalService(self.session, self.user_id)
        goals = service.list_all(include_completed=args.include_completed)
        return {"goals": [service.serialize(goal, self.now) for goal in goals]}

    def get_financial_summary(self, args: GetFinancialSummaryArgs) -> dict[str, Any]:
        return DashboardService(self.session, self.user_id).summary(self.now)

    def get_smart_alerts(self, args: GetSmartAlertsArgs) -> dict[str, Any]:
        service = AlertService(self.session, self.user_id)
        service.refresh(self.now)
        alerts = service.list_active(unread_only=args.unread_only)
        return {"alerts": [serialize_alert(alert) for alert in alerts]}

    def generate_dashboard(self, args: GenerateDashboardArgs) -> dict[str, Any]:
        return DashboardService(self.session, self.user_id).build(args.period, self.now)

    def generate_report(self, args: GenerateReportArgs) -> dict[str, Any]:
        today = self.now.date()
        start = args.start or today.replace(day=1)
        end = args.end or today
        report = ReportService(self.session, self.user_id).create(
            ReportRequest(type=args.type, start=start, end=end), self.now
        )
        return {"success": True, "report": serialize_report(report)}

    def update_goal_progress(self, args: UpdateGoalProgressArgs) -> dict[str, Any]:
        service = GoalService(self.session, self.user_id)
        goal, entry = service.add_progress(args.goal_id, args.amount, args.note)
        return {
            "success": True,
            "goal": service.serialize(goal, self.now),
            "entry": serialize_progress(entry),
        }

    def get_spending_insights(self, args: GetSpendingInsightsArgs) -> dict[str, Any]:
        dashboard = DashboardService(self.session, self.user_id).build(
            args.period, self.now
        )
        return {
            "period": dashboard["period"],
            "insights": dashboard["insights"],
            "summary": dashboard["summary"],
        }

    def create_scheduled_reminder(
        self, args: CreateScheduledReminderArgs
    ) -> dict[str, Any]:
        remind_at = args.remind_at.replace(tzinfo=None)
        reminder = ReminderService(self.session, self.user_id).create(
            args.message, remind_at, self.now
        )
        return {"success": True, "reminder": serialize_reminder(reminder)}


def _build_client(settings: Settings) -> Optional[openai.OpenAI]:
    if not settings.openai_api_key:
        return None
    return openai.OpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout_secs,
    )


class FinanceAssistant:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        client: Optional[Any] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.client = client if client is not None else _build_client(self.settings)

    def system_prompt(self, now: datetime) -> str:
        summary = DashboardService(self.session, self.user_id).summary(now)
        return SYSTEM_PROMPT.format(
            today=now.date().isoformat(),
            locale=self.settings.locale,
            context=json.dumps(summary, indent=2, ensure_ascii=False),
        )

    def reply(
        self, message: str, now: datetime, session_id: Optional[str] = None
    ) -> dict[str, Any]:
        usage = UsageService(
            self.session, self.user_id, self.settings.chat_daily_limit
        ).consume(now.date())

        history = ChatHistoryService(self.session, self.user_id)
        previous = history.recent(session_id, limit=HISTORY_LIMIT)
        history.add(ChatRole.user, message, session_id)

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt(now)}
        ]
        messages.extend(
            {"role": m.role.value.lower(), "content": m.content} for m in previous
        )
        messages.append({"role": "user", "content": message})

        dispatcher = ToolDispatcher(self.session, self.user_id, now)
        tools_used: list[str] = []
        try:
            text = self.complete(messages, dispatcher, tools_used)
        except (openai.OpenAIError, AssistantResponseError):
            logger.exception(f"assistant_fallback: user_id={self.user_id}")
            text = FALLBACK_MESSAGE

        stored = history.add(ChatRole.assistant, text, session_id)
        payload = serialize_message(stored)
        return {
            "message": text,
            "message_id": stored.id,
            "timestamp": payload["timestamp"],
            "tools_used": tools_used,
            "usage": usage,
        }

    def _create(self, messages: list[dict[str, Any]], with_tools: bool) -> Any:
        kwargs: dict[str, Any] = {
            "model": self.settings.openai_model,
            "messages": messages,
            "max_tokens": MAX_TOKENS,
            "temperature": 0.7,
        }
        if with_tools:
            kwargs["tools"] = TOOL_DEFINITIONS
            kwargs["tool_choice"] = "auto"
        return self.client.chat.completions.create(**kwargs)

    def complete(
        self,
        messages: list[dict[str, Any]],
        dispatcher: ToolDispatcher,
        tools_used: Optional[list[str]] = None,
    ) -> str:
        if self.client is None:
            raise AssistantResponseError("No chat provider configured")
        if tools_used is None:
            tools_used = []

        for _ in range(max(0, self.settings.chat_max_tool_rounds)):
            response = self._create(messages, with_tools=True)
            reply = _first_message(response)
            tool_calls = list(getattr(reply, "tool_calls", None) or [])
            if not tool_calls:
                return _text(reply)

            messages.append(
                {
                    "role": "assistant",
                    "content": reply.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                tools_used.append(call.function.name)
                result = dispatcher.dispatch(call.function.name, call.function.arguments)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(result, default=str, ensure_ascii=False),
                    }
                )

        # out of tool rounds: ask for a plain answer from what was gathered
        response = self._create(messages, with_tools=False)
        return _text(_first_message(response))


def _first_message(response: Any) -> Any:
    choices = getattr(response, "choices", None)
    if not choices:
        raise AssistantResponseError("Response has no choices")
    message = getattr(choices[0], "message", None)
    if message is None:
        raise AssistantResponseError("Response choice has no message")
    return message


def _text(message: Any) -> str:
    content = (getattr(message, "content", None) or "").strip()
    if not content:
        raise AssistantResponseError("Response has no text content")
    return content
