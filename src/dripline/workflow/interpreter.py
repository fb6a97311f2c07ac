"""Step interpreter: computes the next transition for one contact state.

The interpreter is pure. It reads the definition, the state, the contact and
the current time, and returns a transition value describing what should
happen. Persisting that transition and firing its effect belong to the
scheduler driver.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import assert_never

from dripline.errors import StepExecutionError

from .branching import BranchResolver
from .filters import evaluate
from .models import (
    Advance,
    BranchStep,
    CallWebhookEffect,
    CallWebhookStep,
    ClearFieldStep,
    Contact,
    ContactStatus,
    ContactWorkflowState,
    Effect,
    Fail,
    FieldMutation,
    RemoveFromWorkflowStep,
    RetryLater,
    SendMessageEffect,
    SendMessageStep,
    Step,
    Terminal,
    Transition,
    UpdateFieldStep,
    WaitStep,
    WorkflowDefinition,
    ensure_utc,
)

logger = logging.getLogger(__name__)


class StepInterpreter:
    """Turns ``(definition, state, contact, now)`` into a transition.

    Args:
        resolver: Branch resolver (the only source of randomness)
        engagement_retry: Longest a busy contact waits before being re-checked
    """

    def __init__(
        self,
        resolver: BranchResolver | None = None,
        engagement_retry: timedelta = timedelta(minutes=15),
    ):
        self.resolver = resolver or BranchResolver()
        self.engagement_retry = engagement_retry

    def next_transition(
        self,
        definition: WorkflowDefinition,
        state: ContactWorkflowState,
        contact: Contact | None,
        now: datetime,
    ) -> Transition:
        if state.status.is_terminal:
            raise ValueError(f"State {state.id} is already {state.status.value}")

        now = ensure_utc(now)
        if contact is None:
            return Fail(
                error=f"Contact {state.contact_id} not found",
                pointer=state.current_step_pointer,
            )

        pointer = state.current_step_pointer
        if state.wait_until is not None:
            if now < state.wait_until:
                # Armed wait has not elapsed yet
                return Advance(
                    pointer=pointer,
                    next_eligible_at=state.wait_until,
                    wait_until=state.wait_until,
                    step_kind=WaitStep.kind,
                    step_pointer=pointer,
                )
            pointer += 1

        return self._execute(definition, pointer, contact, now)

    def _execute(
        self,
        definition: WorkflowDefinition,
        pointer: int,
        contact: Contact,
        now: datetime,
    ) -> Transition:
        steps = definition.steps
        if pointer < 0:
            return Fail(error=f"Invalid step pointer {pointer}", pointer=pointer)
        if pointer >= len(steps):
            return Terminal(
                status=ContactStatus.COMPLETED, pointer=pointer, reason="No steps remaining"
            )

        step = steps[pointer]
        if step.condition is not None:
            result = evaluate(step.condition, contact.to_record())
            if not result.passed:
                return Terminal(
                    status=ContactStatus.FILTERED,
                    pointer=pointer,
                    step_kind=step.kind,
                    reason=result.reason,
                )

        try:
            return self._run_step(definition, step, pointer, contact, now)
        except StepExecutionError as e:
            logger.debug("Step %d (%s) failed: %s", pointer, step.kind, e.message)
            return Fail(error=e.message, pointer=pointer, step_kind=step.kind)
        except (OverflowError, ValueError) as e:
            # Out-of-range date arithmetic from a stored configuration
            logger.warning("Step %d (%s) could not be scheduled: %s", pointer, step.kind, e)
            return Fail(
                error=f"Step {pointer} ({step.kind}) could not be scheduled: {e}",
                pointer=pointer,
                step_kind=step.kind,
            )

    def _run_step(
        self,
        definition: WorkflowDefinition,
        step: Step,
        pointer: int,
        contact: Contact,
        now: datetime,
    ) -> Transition:
        if isinstance(step, WaitStep):
            if step.duration <= 0:
                raise StepExecutionError(
                    f"Wait duration must be positive, got {step.duration}",
                    step_pointer=pointer,
                    step_kind=step.kind,
                )
            until = now + step.delta
            return Advance(
                pointer=pointer,
                next_eligible_at=until,
                wait_until=until,
                step_kind=step.kind,
                step_pointer=pointer,
            )

        if isinstance(step, SendMessageStep):
            if contact.is_engaged(now):
                retry_at = min(contact.engaged_until, now + self.engagement_retry)
                return RetryLater(
                    pointer=pointer,
                    next_eligible_at=retry_at,
                    step_kind=step.kind,
                    reason=f"Contact engaged until {contact.engaged_until.isoformat()}",
                )
            effect = SendMessageEffect(
                template_id=step.template_id, subject_override=step.subject_override
            )
            return self._continue(definition, pointer, step, now, effect=effect)

        if isinstance(step, UpdateFieldStep):
            mutation = FieldMutation(path=step.path, value=step.value)
            return self._continue(definition, pointer, step, now, mutation=mutation)

        if isinstance(step, ClearFieldStep):
            mutation = FieldMutation(path=step.path, clear=True)
            return self._continue(definition, pointer, step, now, mutation=mutation)

        if isinstance(step, CallWebhookStep):
            effect = CallWebhookEffect(url=step.url, method=step.method)
            return self._continue(definition, pointer, step, now, effect=effect)

        if isinstance(step, BranchStep):
            path = self.resolver.choose(step.paths)
            if not 0 <= path.next_pointer < len(definition.steps):
                raise StepExecutionError(
                    f"Branch target {path.next_pointer} is out of range "
                    f"(workflow has {len(definition.steps)} steps)",
                    step_pointer=pointer,
                    step_kind=step.kind,
                )
            return Advance(
                pointer=path.next_pointer,
                next_eligible_at=now,
                step_kind=step.kind,
                step_pointer=pointer,
            )

        if isinstance(step, RemoveFromWorkflowStep):
            return Terminal(
                status=ContactStatus.REMOVED,
                pointer=pointer,
                step_kind=step.kind,
                reason="Removed by workflow",
            )

        assert_never(step)

    @staticmethod
    def _continue(
        definition: WorkflowDefinition,
        pointer: int,
        step: Step,
        now: datetime,
        mutation: FieldMutation | None = None,
        effect: Effect | None = None,
    ) -> Transition:
        """Move past a step that just ran, completing when it was the last one."""
        next_pointer = pointer + 1
        if next_pointer >= len(definition.steps):
            return Terminal(
                status=ContactStatus.COMPLETED,
                pointer=pointer,
                step_kind=step.kind,
                reason="All steps executed",
                mutation=mutation,
                effect=effect,
            )
        return Advance(
            pointer=next_pointer,
            next_eligible_at=now,
            step_kind=step.kind,
            step_pointer=pointer,
            mutation=mutation,
            effect=effect,
        )
