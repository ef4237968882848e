import copy
import json
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import openai
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from assistant import (
    FALLBACK_MESSAGE,
    TOOL_DEFINITIONS,
    FinanceAssistant,
    ToolDispatcher,
)
from config import Settings
from database import create_db_engine, init_db
from models import ChatMessage, ChatRole, Goal, Transaction
from schemas import GoalIn
from services import GoalService, UsageLimitExceeded

NOW = datetime(2025, 3, 20, 12, 0)


def _engine():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    return engine


def _settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite:///:memory:",
        timezone="Europe/Madrid",
        session_secret="test-secret",
        session_max_age_hours=1,
        locale="en",
        category_type_fallback=True,
        openai_api_key=None,
        openai_base_url=None,
        openai_model="test-model",
        openai_timeout_secs=1.0,
        chat_daily_limit=10,
        chat_max_tool_rounds=4,
    )
    values.update(overrides)
    return Settings(**values)


def _text_response(content):
    message = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_response(*calls):
    tool_calls = [
        SimpleNamespace(
            id=f"call_{i}",
            function=SimpleNamespace(name=name, arguments=json.dumps(args)),
        )
        for i, (name, args) in enumerate(calls)
    ]
    message = SimpleNamespace(content=None, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(copy.deepcopy(kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(*responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_tool_definitions_cover_every_function() -> None:
    names = [tool["function"]["name"] for tool in TOOL_DEFINITIONS]
    assert len(names) == 13
    assert "addTransaction" in names
    assert "createScheduledReminder" in names
    for tool in TOOL_DEFINITIONS:
        assert tool["type"] == "function"
        assert tool["function"]["parameters"]["type"] == "object"


def test_dispatch_rejects_unknown_and_invalid_calls() -> None:
    with Session(_engine()) as session:
        dispatcher = ToolDispatcher(session, 1, NOW)

        assert "Unknown function" in dispatcher.dispatch("deleteEverything", "{}")["error"]
        assert dispatcher.dispatch("addTransaction", "{not json")["error"] == (
            "Arguments are not valid JSON"
        )

        invalid = dispatcher.dispatch(
            "addTransaction", {"amount": -5, "description": "x", "type": "EXPENSE"}
        )
        assert invalid["error"] == "Invalid arguments"
        assert any(detail.startswith("amount") for detail in invalid["details"])

        extra = dispatcher.dispatch("getBudgets", {"active_only": True, "foo": 1})
        assert extra["error"] == "Invalid arguments"


def test_dispatch_returns_service_errors_to_the_model() -> None:
    with Session(_engine()) as session:
        result = ToolDispatcher(session, 1, NOW).dispatch(
            "updateGoalProgress", {"goal_id": 99, "amount": 10}
        )
        assert result == {"error": "Goal not found"}


def test_add_transaction_defaults_date_and_resolves_category() -> None:
    with Session(_engine()) as session:
        result = ToolDispatcher(session, 1, NOW).dispatch(
            "addTransaction",
            json.dumps(
                {
                    "amount": 42.5,
                    "description": "Dinner",
                    "type": "EXPENSE",
                    "category": "Dining",
                }
            ),
        )
        assert result["success"] is True
        assert result["transaction"]["date"] == "2025-03-20"
        assert result["transaction"]["category"] == "Dining"
        assert session.scalar(select(Transaction)).amount == Decimal("42.50")


def test_get_transactions_matches_category_with_typo() -> None:
    with Session(_engine()) as session:
        dispatcher = ToolDispatcher(session, 1, NOW)
        dispatcher.dispatch(
            "addTransaction",
            {"amount": 12, "description": "Bread", "type": "EXPENSE", "category": "Groceries"},
        )
        dispatcher.dispatch(
            "addTransaction",
            {"amount": 30, "description": "Cinema", "type": "EXPENSE", "category": "Leisure"},
        )

        result = dispatcher.dispatch("getTransactions", {"category": "grocerie"})
        assert result["count"] == 1
        assert result["transactions"][0]["description"] == "Bread"

        assert dispatcher.dispatch("getTransactions", {"category": "Travel"})["count"] == 0


def test_reply_runs_tool_round_then_answers() -> None:
    with Session(_engine()) as session:
        goal = GoalService(session, 1).create(
            GoalIn(title="Trip", target_amount=Decimal("100"))
        )
        client, completions = _client(
            _tool_response(("updateGoalProgress", {"goal_id": goal.id, "amount": 100})),
            _text_response("Great job, your trip goal is complete!"),
        )

        result = FinanceAssistant(
            session, 1, client=client, settings=_settings()
        ).reply("I saved 100 for my trip", NOW, session_id="s1")

        assert result["message"] == "Great job, your trip goal is complete!"
        assert result["tools_used"] == ["updateGoalProgress"]
        assert result["usage"] == {"used": 1, "limit": 10, "remaining": 9}
        assert session.get(Goal, goal.id).is_completed is True

        first, second = completions.calls
        assert first["tool_choice"] == "auto"
        assert first["messages"][0]["role"] == "system"
        assert first["messages"][-1] == {
            "role": "user",
            "content": "I saved 100 for my trip",
        }
        tool_message = second["messages"][-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "call_0"
        assert json.loads(tool_message["content"])["success"] is True

        stored = session.scalars(select(ChatMessage).order_by(ChatMessage.id)).all()
        assert [m.role for m in stored] == [ChatRole.user, ChatRole.assistant]


def test_history_is_sent_with_the_next_message() -> None:
    with Session(_engine()) as session:
        client, completions = _client(_text_response("Hi!"), _text_response("Sure."))
        assistant = FinanceAssistant(session, 1, client=client, settings=_settings())

        assistant.reply("Hello", NOW, session_id="s1")
        assistant.reply("Help me save", NOW, session_id="s1")

        roles = [m["role"] for m in completions.calls[1]["messages"]]
        assert roles == ["system", "user", "assistant", "user"]
        assert completions.calls[1]["messages"][2]["content"] == "Hi!"


def test_provider_errors_fall_back_to_canned_reply() -> None:
    with Session(_engine()) as session:
        client, _ = _client(openai.OpenAIError("provider down"))
        result = FinanceAssistant(session, 1, client=client, settings=_settings()).reply(
            "Hello", NOW
        )
        assert result["message"] == FALLBACK_MESSAGE
        assert result["tools_used"] == []


def test_empty_choices_fall_back_to_canned_reply() -> None:
    with Session(_engine()) as session:
        client, _ = _client(SimpleNamespace(choices=[]))
        result = FinanceAssistant(session, 1, client=client, settings=_settings()).reply(
            "Hello", NOW
        )
        assert result["message"] == FALLBACK_MESSAGE


def test_missing_api_key_uses_fallback() -> None:
    with Session(_engine()) as session:
        assistant = FinanceAssistant(session, 1, settings=_settings())
        assert assistant.client is None
        assert assistant.reply("Hello", NOW)["message"] == FALLBACK_MESSAGE


def test_tool_rounds_are_capped_with_a_final_plain_call() -> None:
    with Session(_engine()) as session:
        client, completions = _client(
            _tool_response(("getGoals", {})),
            _text_response("You have no goals yet."),
        )
        result = FinanceAssistant(
            session, 1, client=client, settings=_settings(chat_max_tool_rounds=1)
        ).reply("Show goals", NOW)

        assert result["message"] == "You have no goals yet."
        assert "tools" not in completions.calls[-1]


def test_daily_limit_blocks_before_calling_the_provider() -> None:
    with Session(_engine()) as session:
        client, completions = _client(_text_response("One"))
        assistant = FinanceAssistant(
            session, 1, client=client, settings=_settings(chat_daily_limit=1)
        )
        assistant.reply("First", NOW)

        with pytest.raises(UsageLimitExceeded):
            assistant.reply("Second", NOW)
        assert len(completions.calls) == 1

        # a new day resets the counter
        client2, _ = _client(_text_response("Two"))
        assistant.client = client2
        assert assistant.reply("Third", datetime.combine(date(2025, 3, 21), NOW.time()))[
            "usage"
        ]["used"] == 1
