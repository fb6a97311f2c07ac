"""Post-commit dispatch of external effects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from dripline.cache import MemoryCache
from dripline.errors import StepExecutionError, TransientDispatchError
from dripline.store.states import ContactStateRepository, ExecutionLogEntry
from dripline.workflow.models import (
    CallWebhookEffect,
    Contact,
    ContactWorkflowState,
    Effect,
    SendMessageEffect,
    utcnow,
)

from .messages import MessageSender
from .webhooks import WebhookCaller

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    SENT = "sent"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class DispatchResult:
    status: DispatchStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != DispatchStatus.FAILED


class EffectDispatcher:
    """Fires the external effect of a committed transition.

    Runs only after the state change is durable. Failures are logged and
    recorded in the execution log; they never undo the transition. A
    ``(state_id, revision)`` key in the injected cache suppresses duplicate
    dispatches of the same committed transition, and is invalidated on
    failure so the effect can be replayed.

    Args:
        message_sender: Message-send collaborator
        webhook_caller: Webhook-call collaborator
        states: Repository used to record dispatch outcomes (optional)
        cache: Idempotency cache owned by this dispatcher
        dedupe_ttl: Seconds a dispatched key is remembered
    """

    def __init__(
        self,
        message_sender: MessageSender,
        webhook_caller: WebhookCaller,
        states: ContactStateRepository | None = None,
        cache: MemoryCache | None = None,
        dedupe_ttl: float = 86400,
    ):
        self.message_sender = message_sender
        self.webhook_caller = webhook_caller
        self.states = states
        self.dedupe_ttl = dedupe_ttl
        self.cache = cache if cache is not None else MemoryCache(default_ttl=dedupe_ttl)

    @staticmethod
    def dedupe_key(state: ContactWorkflowState) -> str:
        return f"effect:{state.id}:{state.revision}"

    def dispatch(
        self,
        state: ContactWorkflowState,
        contact: Contact,
        effect: Effect,
        step_pointer: int | None = None,
    ) -> DispatchResult:
        """Dispatch one effect for a committed state.

        Args:
            state: The state as committed (its revision identifies the transition)
            contact: Contact the effect targets
            effect: Effect to perform
            step_pointer: Step that produced the effect, for the execution log
        """
        key = self.dedupe_key(state)
        if not self.cache.add(key, ttl=self.dedupe_ttl):
            logger.info(f"Skipping duplicate effect for state {state.id} rev {state.revision}")
            return DispatchResult(status=DispatchStatus.DUPLICATE)

        kind = "send_message" if isinstance(effect, SendMessageEffect) else "call_webhook"
        extra = {
            "workflow_id": state.workflow_id,
            "state_id": state.id,
            "contact_id": state.contact_id,
            "step_kind": kind,
        }
        try:
            detail = self._perform(state, contact, effect, step_pointer)
        except (TransientDispatchError, StepExecutionError) as e:
            self.cache.invalidate(key)
            logger.error(f"Effect {kind} failed for state {state.id}: {e.message}", extra=extra)
            self._record(state, step_pointer, kind, "effect_failed", e.message)
            return DispatchResult(status=DispatchStatus.FAILED, error=e.message)

        logger.info(f"Effect {kind} dispatched for state {state.id}", extra=extra)
        self._record(state, step_pointer, kind, "effect_sent", detail)
        return DispatchResult(status=DispatchStatus.SENT)

    def _perform(
        self,
        state: ContactWorkflowState,
        contact: Contact,
        effect: Effect,
        step_pointer: int | None,
    ) -> str:
        if isinstance(effect, SendMessageEffect):
            sent = self.message_sender.send(
                effect.template_id, contact.id, effect.subject_override
            )
            if not sent:
                raise StepExecutionError(
                    f"Message provider rejected template {effect.template_id}",
                    step_pointer=step_pointer,
                    step_kind="send_message",
                )
            return f"template {effect.template_id}"

        if isinstance(effect, CallWebhookEffect):
            result = self.webhook_caller.call(
                effect.url, effect.method, self.webhook_payload(state, contact, step_pointer)
            )
            return f"HTTP {result.status_code} after {result.attempts} attempt(s)"

        assert_never(effect)

    @staticmethod
    def webhook_payload(
        state: ContactWorkflowState, contact: Contact, step_pointer: int | None
    ) -> dict:
        return {
            "event": "workflow.step",
            "workflow_id": state.workflow_id,
            "organization_id": state.organization_id,
            "state_id": state.id,
            "step_pointer": step_pointer,
            "contact": {
                "id": contact.id,
                "first_name": contact.first_name,
                "last_name": contact.last_name,
                "email": contact.email,
                "company_name": contact.company_name,
                "tags": list(contact.tags),
                "attributes": contact.attributes,
            },
            "dispatched_at": utcnow().isoformat(),
        }

    def _record(
        self,
        state: ContactWorkflowState,
        step_pointer: int | None,
        kind: str,
        outcome: str,
        detail: str | None,
    ) -> None:
        if self.states is None:
            return
        self.states.log(
            ExecutionLogEntry(
                state_id=state.id,
                workflow_id=state.workflow_id,
                contact_id=state.contact_id,
                step_pointer=step_pointer,
                step_kind=kind,
                outcome=outcome,
                detail=detail,
            )
        )
