"""Tests for effect collaborators and the post-commit dispatcher."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
import requests

from dripline.cache import MemoryCache
from dripline.errors import StepExecutionError, TransientDispatchError
from dripline.effects import (
    DispatchStatus,
    EffectDispatcher,
    HttpMessageSender,
    RetryStrategy,
    WebhookCaller,
    WebhookResult,
)
from dripline.workflow.models import (
    CallWebhookEffect,
    Contact,
    ContactWorkflowState,
    SendMessageEffect,
)

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _response(status_code: int, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    return response


def _session(*outcomes) -> MagicMock:
    session = MagicMock()
    session.request.side_effect = list(outcomes)
    return session


def _state(revision: int = 1) -> ContactWorkflowState:
    return ContactWorkflowState(
        id="s1",
        workflow_id="wf-1",
        contact_id="c1",
        organization_id="org-1",
        revision=revision,
    )


def _contact() -> Contact:
    return Contact(id="c1", organization_id="org-1", first_name="Ada", tags=["vip"])


# =============================================================================
# RetryStrategy
# =============================================================================


class TestRetryStrategy:
    def test_exponential_delays(self) -> None:
        strategy = RetryStrategy(base_delay=1.0, jitter=False)
        assert [strategy.get_delay(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_capped(self) -> None:
        strategy = RetryStrategy(base_delay=10.0, max_delay=15.0, jitter=False)
        assert strategy.get_delay(5) == 15.0

    def test_jitter_range(self) -> None:
        strategy = RetryStrategy(base_delay=2.0, jitter=True)
        for _ in range(50):
            assert 1.0 <= strategy.get_delay(1) <= 3.0


# =============================================================================
# WebhookCaller
# =============================================================================


class TestWebhookCaller:
    def _caller(self, session, attempts: int = 3) -> tuple[WebhookCaller, list[float]]:
        sleeps: list[float] = []
        caller = WebhookCaller(
            retry=RetryStrategy(max_attempts=attempts, base_delay=1.0, jitter=False),
            session=session,
            sleep=sleeps.append,
        )
        return caller, sleeps

    def test_success_first_try(self) -> None:
        session = _session(_response(200, "ok"))
        caller, sleeps = self._caller(session)

        result = caller.call("https://hooks.example.com/a", "post", {"x": 1})

        assert result == WebhookResult(status_code=200, attempts=1, body="ok")
        assert sleeps == []
        args, kwargs = session.request.call_args
        assert args == ("POST", "https://hooks.example.com/a")
        assert kwargs["data"] == b'{"x": 1}'

    def test_retries_retryable_status(self) -> None:
        session = _session(_response(503), _response(502), _response(204))
        caller, sleeps = self._caller(session)

        result = caller.call("https://hooks.example.com/a", "POST", {})

        assert result.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_exhaustion_is_transient(self) -> None:
        session = _session(_response(503), _response(503), _response(503))
        caller, sleeps = self._caller(session)

        with pytest.raises(TransientDispatchError) as exc_info:
            caller.call("https://hooks.example.com/a", "POST", {})

        assert exc_info.value.details["attempts"] == 3
        assert "HTTP 503" in exc_info.value.message
        assert len(sleeps) == 2

    def test_client_error_not_retried(self) -> None:
        session = _session(_response(404))
        caller, sleeps = self._caller(session)

        with pytest.raises(StepExecutionError, match="HTTP 404"):
            caller.call("https://hooks.example.com/a", "POST", {})
        assert session.request.call_count == 1

    def test_timeout_and_connection_errors_retried(self) -> None:
        session = _session(
            requests.exceptions.Timeout(),
            requests.exceptions.ConnectionError("refused"),
            _response(200),
        )
        caller, _ = self._caller(session)
        assert caller.call("https://hooks.example.com/a", "PUT", {}).attempts == 3

    def test_get_sends_query_params(self) -> None:
        session = _session(_response(200))
        caller, _ = self._caller(session)

        caller.call("https://hooks.example.com/a", "GET", {"id": "s1", "n": 2, "nested": {}})

        kwargs = session.request.call_args.kwargs
        assert kwargs["params"] == {"id": "s1", "n": "2"}
        assert "data" not in kwargs


# =============================================================================
# HttpMessageSender
# =============================================================================


class TestHttpMessageSender:
    def test_posts_payload_with_bearer(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(202)
        sender = HttpMessageSender("https://mail.example.com/send", "key-1", session=session)

        assert sender.send("tpl-1", "c1", "Hello") is True

        kwargs = session.post.call_args.kwargs
        assert kwargs["json"] == {
            "template_id": "tpl-1",
            "contact_id": "c1",
            "subject_override": "Hello",
        }
        assert kwargs["headers"]["Authorization"] == "Bearer key-1"

    def test_rejection_returns_false(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(400)
        sender = HttpMessageSender("https://mail.example.com/send", session=session)
        assert sender.send("tpl-1", "c1") is False

    def test_network_error_returns_false(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("down")
        sender = HttpMessageSender("https://mail.example.com/send", session=session)
        assert sender.send("tpl-1", "c1") is False


# =============================================================================
# EffectDispatcher
# =============================================================================


class TestEffectDispatcher:
    def _dispatcher(self, states=None):
        sender = MagicMock()
        sender.send.return_value = True
        caller = MagicMock()
        caller.call.return_value = WebhookResult(status_code=200, attempts=1)
        dispatcher = EffectDispatcher(
            message_sender=sender,
            webhook_caller=caller,
            states=states,
            cache=MemoryCache(),
        )
        return dispatcher, sender, caller

    def test_send_message(self, states) -> None:
        dispatcher, sender, _ = self._dispatcher(states)

        result = dispatcher.dispatch(_state(), _contact(), SendMessageEffect("tpl-1", "Hi"), 2)

        assert result.status == DispatchStatus.SENT
        sender.send.assert_called_once_with("tpl-1", "c1", "Hi")
        (entry,) = states.execution_log(state_id="s1")
        assert entry.outcome == "effect_sent"
        assert entry.step_pointer == 2

    def test_same_revision_dispatched_once(self) -> None:
        dispatcher, sender, _ = self._dispatcher()
        effect = SendMessageEffect("tpl-1")

        first = dispatcher.dispatch(_state(revision=3), _contact(), effect)
        second = dispatcher.dispatch(_state(revision=3), _contact(), effect)
        third = dispatcher.dispatch(_state(revision=4), _contact(), effect)

        assert first.status == DispatchStatus.SENT
        assert second.status == DispatchStatus.DUPLICATE
        assert second.ok
        assert third.status == DispatchStatus.SENT
        assert sender.send.call_count == 2

    def test_rejected_send_fails_and_can_replay(self, states) -> None:
        dispatcher, sender, _ = self._dispatcher(states)
        sender.send.return_value = False

        result = dispatcher.dispatch(_state(), _contact(), SendMessageEffect("tpl-1"))

        assert result.status == DispatchStatus.FAILED
        assert not result.ok
        assert "rejected" in result.error
        assert not dispatcher.cache.exists(EffectDispatcher.dedupe_key(_state()))
        assert states.execution_log(state_id="s1")[0].outcome == "effect_failed"

        sender.send.return_value = True
        replay = dispatcher.dispatch(_state(), _contact(), SendMessageEffect("tpl-1"))
        assert replay.status == DispatchStatus.SENT

    def test_webhook_payload(self) -> None:
        dispatcher, _, caller = self._dispatcher()
        effect = CallWebhookEffect("https://hooks.example.com/a", "POST")

        dispatcher.dispatch(_state(), _contact(), effect, 1)

        url, method, payload = caller.call.call_args.args
        assert (url, method) == ("https://hooks.example.com/a", "POST")
        assert payload["event"] == "workflow.step"
        assert payload["state_id"] == "s1"
        assert payload["step_pointer"] == 1
        assert payload["contact"]["tags"] == ["vip"]

    def test_transient_webhook_failure_is_contained(self) -> None:
        dispatcher, _, caller = self._dispatcher()
        caller.call.side_effect = TransientDispatchError(
            "gave up", target="https://hooks.example.com/a", attempts=3
        )

        result = dispatcher.dispatch(
            _state(), _contact(), CallWebhookEffect("https://hooks.example.com/a")
        )

        assert result.status == DispatchStatus.FAILED
        assert result.error == "gave up"
