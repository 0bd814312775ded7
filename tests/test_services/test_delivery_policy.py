"""Tests for the delivery policy."""

from __future__ import annotations

from agentrelay.models.agent import AgentRef, BehaviorFlags
from agentrelay.models.delivery import DeliveryContext
from agentrelay.models.notification import Notification
from agentrelay.models.task import MessageRef, TaskSnapshot, ThreadMessage
from agentrelay.services.delivery_policy import (
    can_mark_done,
    is_recipient_in_multi_assignee_task,
    is_stale_thread_update,
    should_deliver,
    should_retry_on_no_response,
)

ORCH = "agent-orch"


def _ctx(
    type: str = "thread_update",
    status: str = "in_progress",
    recipient: str = "agent-a",
    recipient_type: str = "agent",
    author_type: str | None = "agent",
    author_id: str = "agent-b",
    source: str | None = None,
    assigned: tuple[str, ...] = ("agent-a",),
    labels: tuple[str, ...] = (),
    flags: BehaviorFlags | None = None,
    thread: tuple[ThreadMessage, ...] = (),
) -> DeliveryContext:
    message = None
    if author_type is not None:
        message = MessageRef(id="m1", author_type=author_type, author_id=author_id, content="update")
    return DeliveryContext(
        notification=Notification(
            id="n1",
            type=type,
            recipient_id=recipient,
            recipient_type=recipient_type,
            task_id="t1",
            message_id="m1" if message else None,
        ),
        agent=AgentRef(id=recipient, session_key=f"session-{recipient}", name=recipient),
        task=TaskSnapshot(id="t1", title="Ship it", status=status, assigned_agent_ids=assigned, labels=labels),
        message=message,
        thread=thread,
        source_notification_type=source,
        orchestrator_agent_id=ORCH,
        flags=flags or BehaviorFlags(),
    )


class TestOrchestratorChat:
    def test_only_orchestrator_receives(self):
        labels = ("system:orchestrator-chat",)
        assert should_deliver(_ctx(type="mention", recipient=ORCH, labels=labels)) is True
        assert should_deliver(_ctx(type="mention", recipient="agent-a", labels=labels)) is False

    def test_user_recipient_not_affected(self):
        ctx = _ctx(type="mention", recipient="user-1", recipient_type="user",
                   labels=("system:orchestrator-chat",))
        assert should_deliver(ctx) is True


class TestQuietTaskSuppression:
    def test_thread_update_on_done_task_suppressed(self):
        assert should_deliver(_ctx(status="done", author_type="user", author_id="u1")) is False

    def test_blocked_task_allows_orchestrator_author(self):
        assert should_deliver(_ctx(status="blocked", author_id=ORCH)) is True

    def test_blocked_task_suppresses_other_agent(self):
        assert should_deliver(_ctx(status="blocked", author_id="agent-b")) is False

    def test_done_task_suppresses_orchestrator_author(self):
        assert should_deliver(_ctx(status="done", author_id=ORCH)) is False


class TestStatusChange:
    def test_done_suppressed(self):
        assert should_deliver(_ctx(type="status_change", status="done", author_type=None)) is False

    def test_blocked_suppressed(self):
        assert should_deliver(_ctx(type="status_change", status="blocked", author_type=None)) is False

    def test_review_to_orchestrator(self):
        assert should_deliver(_ctx(type="status_change", status="review", recipient=ORCH, author_type=None)) is True

    def test_review_to_non_reviewer(self):
        assert should_deliver(_ctx(type="status_change", status="review", author_type=None)) is False

    def test_review_to_reviewer(self):
        ctx = _ctx(type="status_change", status="review", author_type=None,
                   flags=BehaviorFlags(can_review_tasks=True))
        assert should_deliver(ctx) is True

    def test_in_progress_delivered(self):
        assert should_deliver(_ctx(type="status_change", status="in_progress", author_type=None)) is True


class TestAgentThreadUpdateLoopGuard:
    def test_orchestrator_sees_agent_updates(self):
        assert should_deliver(_ctx(recipient=ORCH, assigned=("agent-b",))) is True

    def test_orchestrator_not_echoed_own_update(self):
        assert should_deliver(_ctx(recipient=ORCH, author_id=ORCH, assigned=("agent-b",))) is False

    def test_assigned_recipient_receives(self):
        assert should_deliver(_ctx(source="assignment")) is True

    def test_unassigned_recipient_suppressed(self):
        assert should_deliver(_ctx(recipient="agent-c")) is False

    def test_reviewer_receives_while_in_review(self):
        ctx = _ctx(recipient="agent-c", status="review", flags=BehaviorFlags(can_review_tasks=True))
        assert should_deliver(ctx) is True

    def test_second_order_echo_suppressed_for_every_non_orchestrator_recipient(self):
        reviewer_flags = BehaviorFlags(can_review_tasks=True)
        for ctx in (
            _ctx(source="thread_update"),
            _ctx(source="thread_update", recipient="agent-c"),
            _ctx(source="thread_update", recipient="agent-c", status="review", flags=reviewer_flags),
        ):
            assert should_deliver(ctx) is False

    def test_second_order_echo_allowed_from_orchestrator_to_assignee(self):
        assert should_deliver(_ctx(source="thread_update", author_id=ORCH)) is True

    def test_second_order_echo_from_orchestrator_to_unassigned(self):
        assert should_deliver(_ctx(source="thread_update", author_id=ORCH, recipient="agent-c")) is False

    def test_ping_pong_scenario(self):
        first = _ctx(recipient="agent-a", author_id="agent-b", source="assignment",
                     assigned=("agent-a", "agent-b"))
        assert should_deliver(first) is True
        echo = _ctx(recipient="agent-b", author_id="agent-a", source="thread_update",
                    assigned=("agent-a", "agent-b"))
        assert should_deliver(echo) is False


class TestAlwaysDelivered:
    def test_mention_on_done_task(self):
        assert should_deliver(_ctx(type="mention", status="done")) is True

    def test_assignment(self):
        assert should_deliver(_ctx(type="assignment", status="assigned", author_type=None)) is True

    def test_human_thread_update(self):
        assert should_deliver(_ctx(author_type="user", author_id="u1", recipient="agent-c")) is True

    def test_unknown_type(self):
        assert should_deliver(_ctx(type="digest", author_type=None)) is True


class TestRetryOnNoResponse:
    def test_required_types(self):
        for kind in ("assignment", "mention", "response_request"):
            assert should_retry_on_no_response(_ctx(type=kind)) is True

    def test_thread_update_from_user(self):
        assert should_retry_on_no_response(_ctx(author_type="user", author_id="u1")) is True

    def test_thread_update_from_agent(self):
        assert should_retry_on_no_response(_ctx()) is False

    def test_status_change(self):
        assert should_retry_on_no_response(_ctx(type="status_change", author_type=None)) is False


class TestHelpers:
    def test_can_mark_done(self):
        assert can_mark_done("review", True) is True
        assert can_mark_done("in_progress", True) is False
        assert can_mark_done("review", False) is False
        assert can_mark_done(None, True) is False

    def test_multi_assignee(self):
        assert is_recipient_in_multi_assignee_task(_ctx(assigned=("agent-a", "agent-b"))) is True
        assert is_recipient_in_multi_assignee_task(_ctx(assigned=("agent-a",))) is False
        assert is_recipient_in_multi_assignee_task(_ctx(assigned=("agent-b", "agent-c"))) is False


class TestStaleThreadUpdate:
    def _thread(self, *authors: str) -> tuple[ThreadMessage, ...]:
        return tuple(
            ThreadMessage(message_id=f"m{i + 1}", author_type=author, author_id=f"{author}-id")
            for i, author in enumerate(authors)
        )

    def test_later_user_message_makes_stale(self):
        ctx = _ctx(author_type="user", author_id="u1", thread=self._thread("user", "agent", "user"))
        assert is_stale_thread_update(ctx) is True

    def test_latest_user_message_not_stale(self):
        ctx = _ctx(author_type="user", author_id="u1", thread=self._thread("user", "agent"))
        assert is_stale_thread_update(ctx) is False

    def test_agent_message_never_stale(self):
        ctx = _ctx(thread=self._thread("agent", "user"))
        assert is_stale_thread_update(ctx) is False
