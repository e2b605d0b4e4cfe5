"""
Tests for the AI collaborator: tool rounds, proposal storage, retries and approval.

The provider is scripted, so no network calls are made.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from opustasks.ai.assistant.executors import approve_actions, expire_stale_actions, reject_action
from opustasks.ai.assistant.schemas import AssistantChatRequest
from opustasks.ai.assistant.service import ACTIONS_ONLY_MESSAGE, APPROVAL_NOTE, AssistantService
from opustasks.ai.exceptions import (
    AIFeatureDisabledError,
    AIProviderError,
    AIRateLimitError,
    CollaboratorError,
    CollaboratorErrorCategory,
    categorize_error,
)
from opustasks.config import Settings
from opustasks.exceptions import ConflictError, NotFoundError
from opustasks.models import AIConversationMessage, AIPendingAction, Task
from tests.conftest import ScriptedProvider, reload, reply

TODAY = date(2024, 5, 6)


def fast_settings(**overrides) -> Settings:
    values = {"ai_max_retries": 2, "ai_retry_min_seconds": 0, "ai_retry_max_seconds": 0}
    values.update(overrides)
    return Settings(**values)


def assistant(db, user, provider, **settings) -> AssistantService:
    return AssistantService(provider=provider, db=db, user_id=user.id, settings=fast_settings(**settings))


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# =============================================================================
# Chat
# =============================================================================


class TestChat:
    async def test_plain_answer_is_stored(self, db_session, alice):
        provider = ScriptedProvider(reply("You have a light day."))

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="How's my day?"), today=TODAY
        )

        assert response.message == "You have a light day."
        assert response.pending_actions == []
        messages = (await db_session.execute(select(AIConversationMessage))).scalars().all()
        assert [(m.role, m.content) for m in messages] == [
            ("user", "How's my day?"),
            ("assistant", "You have a light day."),
        ]

    async def test_context_is_sent_with_the_message(self, db_session, alice, make_task):
        await make_task(alice, "Renew passport", due_date=TODAY)
        provider = ScriptedProvider(reply("Noted."))

        await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="Hi"), today=TODAY)

        sent = provider.calls[0]["messages"][-1]
        assert sent.role == "user"
        assert "Renew passport" in sent.content
        assert sent.content.endswith("User message: Hi")

    async def test_query_tool_result_feeds_next_round(self, db_session, alice, make_task):
        await make_task(alice, "Write report")
        provider = ScriptedProvider(
            reply("", ("search_tasks", {"query": "report"})),
            reply("Found your report task."),
        )

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="Where is the report?"), today=TODAY
        )

        assert response.message == "Found your report task."
        second = provider.calls[1]
        assert second["tool_uses"][0].name == "search_tasks"
        assert "Write report" in second["tool_results"][0].content
        assert not second["tool_results"][0].is_error

    async def test_query_tools_only_see_readable_tasks(self, db_session, alice, bob, make_task):
        await make_task(bob, "Bob's secret report")
        provider = ScriptedProvider(
            reply("", ("search_tasks", {"query": "report"})),
            reply("Nothing found."),
        )

        await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="report?"), today=TODAY)

        assert "secret" not in provider.calls[1]["tool_results"][0].content

    async def test_action_tool_becomes_pending_action(self, db_session, alice):
        provider = ScriptedProvider(
            reply("Sure.", ("create_task", {"title": "Call mom", "due_date": "2024-05-07", "bogus": 1})),
        )

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="Remind me to call mom tomorrow"), today=TODAY
        )

        assert response.message == "Sure." + APPROVAL_NOTE
        assert len(response.pending_actions) == 1
        proposal = response.pending_actions[0]
        assert proposal.kind == "create_task"
        assert proposal.description == 'Create task: "Call mom" (due 2024-05-07)'
        assert proposal.payload == {
            "title": "Call mom",
            "due_date": "2024-05-07",
            "kind": "create_task",
            "origin": "assistant",
        }
        assert proposal.status == "pending"
        # Proposing never writes domain state
        assert await count(db_session, Task) == 0
        # Proposals end the turn without another provider call
        assert len(provider.calls) == 1

    async def test_actions_only_reply_gets_default_message(self, db_session, alice):
        provider = ScriptedProvider(reply("", ("create_project", {"name": "Garden"})))

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="Start a garden project"), today=TODAY
        )
        assert response.message == ACTIONS_ONLY_MESSAGE

    async def test_identical_proposals_are_deduplicated(self, db_session, alice):
        call = ("create_project", {"name": "Garden"})
        provider = ScriptedProvider(reply("", call), reply("", call))
        service = assistant(db_session, alice, provider)

        first = await service.chat(AssistantChatRequest(message="garden"), today=TODAY)
        second = await service.chat(AssistantChatRequest(message="garden again"), today=TODAY)

        assert first.pending_actions[0].id == second.pending_actions[0].id
        assert await count(db_session, AIPendingAction) == 1

    async def test_unknown_tool_reported_as_error(self, db_session, alice):
        provider = ScriptedProvider(
            reply("", ("search_tasks", {"query": "x"}), ("launch_rocket", {})),
            reply("Done."),
        )

        await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="go"), today=TODAY)

        results = provider.calls[1]["tool_results"]
        assert results[1].is_error
        assert "launch_rocket" in results[1].content

    async def test_foreign_conversation_is_not_found(self, db_session, alice, bob):
        provider = ScriptedProvider(reply("Hi Bob."))
        bobs = await assistant(db_session, bob, provider).chat(AssistantChatRequest(message="hi"), today=TODAY)

        with pytest.raises(NotFoundError):
            await assistant(db_session, alice, ScriptedProvider(reply("x"))).chat(
                AssistantChatRequest(message="peek", conversation_id=bobs.conversation_id), today=TODAY
            )

    async def test_disabled_feature(self, db_session, alice):
        provider = ScriptedProvider()
        with pytest.raises(AIFeatureDisabledError):
            await assistant(db_session, alice, provider, feature_ai_enabled=False).chat(
                AssistantChatRequest(message="hi"), today=TODAY
            )
        assert provider.calls == []


# =============================================================================
# Provider failures
# =============================================================================


class TestProviderFailures:
    async def test_transient_failure_is_retried(self, db_session, alice):
        provider = ScriptedProvider(AIProviderError("scripted", "overloaded_error", status_code=529), reply("Back."))

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="hi"), today=TODAY
        )
        assert response.message == "Back."
        assert len(provider.calls) == 2

    async def test_exhausted_retries_become_collaborator_error(self, db_session, alice):
        provider = ScriptedProvider(
            AIProviderError("scripted", "boom", status_code=500),
            AIProviderError("scripted", "boom", status_code=500),
        )

        with pytest.raises(CollaboratorError) as exc:
            await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="hi"), today=TODAY)

        assert exc.value.category == CollaboratorErrorCategory.UNAVAILABLE
        assert exc.value.message == "The AI service is temporarily unavailable. Please try again."
        assert len(provider.calls) == 2

    async def test_bad_credentials_are_not_retried(self, db_session, alice):
        provider = ScriptedProvider(AIProviderError("scripted", "authentication_error", status_code=401))

        with pytest.raises(CollaboratorError) as exc:
            await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="hi"), today=TODAY)

        assert exc.value.category == CollaboratorErrorCategory.INVALID_CREDENTIALS
        assert len(provider.calls) == 1

    async def test_rate_limit_is_retried(self, db_session, alice):
        provider = ScriptedProvider(AIRateLimitError("scripted", "slow down", retry_after=30), reply("Ready."))

        response = await assistant(db_session, alice, provider).chat(
            AssistantChatRequest(message="hi"), today=TODAY
        )
        assert response.message == "Ready."
        assert len(provider.calls) == 2

    async def test_persistent_rate_limit_category(self, db_session, alice):
        provider = ScriptedProvider(
            AIRateLimitError("scripted", "slow down", retry_after=30),
            AIProviderError("scripted", "rate_limit_error", status_code=429),
        )

        with pytest.raises(CollaboratorError) as exc:
            await assistant(db_session, alice, provider).chat(AssistantChatRequest(message="hi"), today=TODAY)
        assert exc.value.category == CollaboratorErrorCategory.RATE_LIMITED
        assert len(provider.calls) == 2


@pytest.mark.parametrize(
    "error,category",
    [
        (AIRateLimitError("p", "too many"), CollaboratorErrorCategory.RATE_LIMITED),
        (AIProviderError("p", "nope", status_code=401), CollaboratorErrorCategory.INVALID_CREDENTIALS),
        (AIProviderError("p", "nope", status_code=403), CollaboratorErrorCategory.INVALID_CREDENTIALS),
        (AIProviderError("p", "slow", status_code=429), CollaboratorErrorCategory.RATE_LIMITED),
        (AIProviderError("p", "busy", status_code=529), CollaboratorErrorCategory.OVERLOADED),
        (AIProviderError("p", "oops", status_code=503), CollaboratorErrorCategory.UNAVAILABLE),
        (AIProviderError("p", "Your credit balance is too low", status_code=400), CollaboratorErrorCategory.QUOTA_EXCEEDED),
        (AIProviderError("p", "connection reset"), CollaboratorErrorCategory.UNAVAILABLE),
        (AIProviderError("p", "bad request", status_code=400), CollaboratorErrorCategory.GENERIC),
    ],
)
def test_categorize_error(error, category):
    assert categorize_error(error) == category


def test_transient_statuses():
    assert AIProviderError("p", "x").is_transient
    assert AIProviderError("p", "x", status_code=529).is_transient
    assert AIProviderError("p", "x", status_code=429).is_transient
    assert not AIProviderError("p", "x", status_code=400).is_transient


# =============================================================================
# Approval
# =============================================================================


async def propose(db, user, *tool_calls) -> list[AIPendingAction]:
    provider = ScriptedProvider(reply("", *tool_calls))
    response = await assistant(db, user, provider).chat(AssistantChatRequest(message="please"), today=TODAY)
    return [await reload(db, AIPendingAction, p.id) for p in response.pending_actions]


class TestApproval:
    async def test_approve_runs_mutation(self, db_session, executor, alice):
        [action] = await propose(db_session, alice, ("create_task", {"title": "Call mom", "priority": 2}))

        [result] = await approve_actions(db_session, alice.id, [action.id], executor=executor)

        assert result.success
        task = await reload(db_session, Task, result.entity_id)
        assert task.title == "Call mom"
        assert task.priority == 2
        assert task.owner_id == alice.id
        assert action.status == "executed"
        assert action.executed_at is not None
        assert action.result["success"] is True

    async def test_actions_run_in_given_order_and_fail_alone(self, db_session, executor, alice, make_task):
        task = await make_task(alice, "Existing")
        actions = await propose(
            db_session,
            alice,
            ("complete_task", {"task_id": str(task.id)}),
            ("update_task", {"task_id": str(task.id), "priority": 7}),
            ("create_project", {"name": "Later"}),
        )

        results = await approve_actions(
            db_session, alice.id, [actions[2].id, actions[1].id, actions[0].id], executor=executor
        )

        assert [r.kind for r in results] == ["create_project", "update_task", "complete_task"]
        assert [r.success for r in results] == [True, False, True]
        assert results[1].error_code == "VALIDATION_ERROR"
        assert actions[1].status == "failed"
        assert actions[1].error == "Priority must be between 0 and 3"
        assert (await reload(db_session, Task, task.id)).status == "done"

    async def test_approval_respects_visibility(self, db_session, executor, alice, bob, make_task):
        hidden = await make_task(bob, "Bob's")
        [action] = await propose(db_session, alice, ("delete_task", {"task_id": str(hidden.id)}))

        [result] = await approve_actions(db_session, alice.id, [action.id], executor=executor)

        assert not result.success
        assert result.error_code == "NOT_FOUND"
        assert await reload(db_session, Task, hidden.id) is not None

    async def test_reject_leaves_domain_untouched(self, db_session, alice):
        [action] = await propose(db_session, alice, ("create_project", {"name": "Maybe"}))

        rejected = await reject_action(db_session, alice.id, action.id)

        assert rejected.status == "rejected"
        assert rejected.rejected_at is not None
        assert await count(db_session, Task) == 0

    async def test_rejected_action_cannot_be_approved(self, db_session, executor, alice):
        [action] = await propose(db_session, alice, ("create_project", {"name": "Maybe"}))
        await reject_action(db_session, alice.id, action.id)

        [result] = await approve_actions(db_session, alice.id, [action.id], executor=executor)
        assert result.error_code == "CONFLICT"

    async def test_executed_action_cannot_be_rejected(self, db_session, executor, alice):
        [action] = await propose(db_session, alice, ("create_project", {"name": "Now"}))
        await approve_actions(db_session, alice.id, [action.id], executor=executor)

        with pytest.raises(ConflictError):
            await reject_action(db_session, alice.id, action.id)

    async def test_other_users_action_is_not_found(self, db_session, executor, alice, bob):
        [action] = await propose(db_session, alice, ("create_project", {"name": "Mine"}))

        [result] = await approve_actions(db_session, bob.id, [action.id], executor=executor)
        assert result.error_code == "NOT_FOUND"
        with pytest.raises(NotFoundError):
            await reject_action(db_session, bob.id, action.id)

    async def test_expired_action(self, db_session, executor, alice):
        [action] = await propose(db_session, alice, ("create_project", {"name": "Stale"}))
        action.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await db_session.flush()

        [result] = await approve_actions(db_session, alice.id, [action.id], executor=executor)

        assert result.error_code == "EXPIRED"
        assert action.status == "expired"

    async def test_expire_stale_actions_sweeps_only_past_expiry(self, db_session, alice):
        stale, fresh = await propose(
            db_session, alice, ("create_project", {"name": "Old"}), ("create_project", {"name": "New"})
        )
        stale.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await db_session.flush()

        assert await expire_stale_actions(db_session, alice.id) == 1
        assert stale.status == "expired"
        assert fresh.status == "pending"

        live = await assistant(db_session, alice, ScriptedProvider()).get_pending_actions()
        assert [a.id for a in live] == [fresh.id]
