"""Scheduler driver: the recurring sweep that advances contacts.

Each sweep pulls a bounded batch of due states from workflows whose drip
window is open, runs the interpreter on each, and commits the result under
the state's revision check. Effects are dispatched only after the commit.
Many drivers may sweep the same database concurrently; a driver that loses
the race for a state skips it until the next sweep.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dripline.effects import DispatchStatus, EffectDispatcher
from dripline.errors import ConcurrencyConflict
from dripline.store import (
    ContactStateRepository,
    ContactStore,
    DailyCapCounter,
    WorkflowRepository,
)
from dripline.workflow.interpreter import StepInterpreter
from dripline.workflow.models import (
    Advance,
    ContactStatus,
    ContactWorkflowState,
    Terminal,
    Transition,
    WorkflowDefinition,
    ensure_utc,
    utcnow,
)
from dripline.workflow.window import cap_resets_at, is_window_open, local_day

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "dripline-sweep"


@dataclass
class SweepReport:
    """What one sweep did."""

    started_at: datetime
    fetched: int = 0
    deferred: int = 0
    conflicts: int = 0
    errors: int = 0
    effects_sent: int = 0
    effects_failed: int = 0
    outcomes: Counter = field(default_factory=Counter)
    closed_workflows: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def processed(self) -> int:
        return sum(self.outcomes.values())

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "fetched": self.fetched,
            "processed": self.processed,
            "deferred": self.deferred,
            "conflicts": self.conflicts,
            "errors": self.errors,
            "effects_sent": self.effects_sent,
            "effects_failed": self.effects_failed,
            "outcomes": dict(self.outcomes),
            "closed_workflows": list(self.closed_workflows),
            "duration_ms": round(self.duration_ms, 2),
        }


class SchedulerDriver:
    """Runs sweeps on demand or on an interval.

    All repositories must share one database backend: the cap admission,
    the state commit, the contact mutation and the log row for a tick are
    written in a single transaction.
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        states: ContactStateRepository,
        contacts: ContactStore,
        caps: DailyCapCounter,
        dispatcher: EffectDispatcher,
        interpreter: StepInterpreter | None = None,
        batch_size: int = 200,
        interval_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.workflows = workflows
        self.states = states
        self.contacts = contacts
        self.caps = caps
        self.dispatcher = dispatcher
        self.interpreter = interpreter or StepInterpreter()
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self._clock = clock
        self.backend = states.backend
        self.scheduler = BackgroundScheduler()

    @classmethod
    def from_settings(cls, settings=None, backend=None) -> SchedulerDriver:
        """Wire a driver and its collaborators from application settings."""
        from dripline.cache import MemoryCache
        from dripline.config import get_settings
        from dripline.effects import HttpMessageSender, RetryStrategy, WebhookCaller
        from dripline.state import get_database
        from dripline.store import SQLContactStore

        settings = settings or get_settings()
        backend = backend or get_database()
        states = ContactStateRepository(backend)
        dispatcher = EffectDispatcher(
            message_sender=HttpMessageSender(
                settings.message_provider_url,
                api_key=settings.message_provider_api_key,
                timeout=settings.webhook_timeout_seconds,
            ),
            webhook_caller=WebhookCaller(
                retry=RetryStrategy(
                    max_attempts=settings.webhook_max_attempts,
                    base_delay=settings.webhook_base_delay,
                ),
                timeout=settings.webhook_timeout_seconds,
            ),
            states=states,
            cache=MemoryCache(default_ttl=settings.effect_dedupe_ttl_seconds),
            dedupe_ttl=settings.effect_dedupe_ttl_seconds,
        )
        return cls(
            workflows=WorkflowRepository(backend),
            states=states,
            contacts=SQLContactStore(backend),
            caps=DailyCapCounter(backend),
            dispatcher=dispatcher,
            interpreter=StepInterpreter(
                engagement_retry=timedelta(minutes=settings.engagement_retry_minutes)
            ),
            batch_size=settings.sweep_batch_size,
            interval_seconds=settings.sweep_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Process one batch of due states."""
        now = ensure_utc(now or self._clock())
        started = time.perf_counter()
        report = SweepReport(started_at=now)

        definitions: dict[str, WorkflowDefinition] = {}
        for definition in self.workflows.list_definitions(active_only=True):
            if is_window_open(definition, now):
                definitions[definition.id] = definition
            else:
                report.closed_workflows.append(definition.id)

        states = self.states.fetch_eligible(
            now, self.batch_size, workflow_ids=list(definitions)
        )
        report.fetched = len(states)

        for state in states:
            try:
                self.process_state(definitions[state.workflow_id], state, now, report)
            except ConcurrencyConflict as e:
                report.conflicts += 1
                logger.debug(f"Skipping state {state.id}: {e.message}")
            except Exception as e:
                report.errors += 1
                logger.error(
                    f"Failed to process state {state.id}: {e}",
                    exc_info=True,
                    extra={"workflow_id": state.workflow_id, "state_id": state.id},
                )

        report.duration_ms = (time.perf_counter() - started) * 1000
        if report.fetched:
            logger.info(
                f"Sweep processed {report.processed}/{report.fetched} states "
                f"({report.deferred} deferred, {report.conflicts} conflicts, "
                f"{report.errors} errors)",
                extra={"duration_ms": report.duration_ms},
            )
        return report

    @staticmethod
    def _consumes_cap(transition: Transition) -> bool:
        # Filtered contacts and runs past the last step execute nothing
        if isinstance(transition, Terminal):
            return (
                transition.step_kind is not None
                and transition.status != ContactStatus.FILTERED
            )
        return isinstance(transition, Advance)

    def process_state(
        self,
        definition: WorkflowDefinition,
        state: ContactWorkflowState,
        now: datetime,
        report: SweepReport | None = None,
    ) -> ContactWorkflowState | None:
        """Run one tick for one state.

        Returns the committed state, or None when the daily cap deferred it.

        Raises:
            ConcurrencyConflict: If the state changed since it was read
        """
        report = report or SweepReport(started_at=now)
        contact = self.contacts.get(state.contact_id, state.organization_id)
        transition = self.interpreter.next_transition(definition, state, contact, now)
        limit = definition.daily_contact_limit

        with self.backend.transaction():
            if limit is not None and self._consumes_cap(transition):
                day = local_day(definition, now)
                if not self.caps.admit(definition.id, day, state.contact_id, limit):
                    self.states.defer(
                        state,
                        cap_resets_at(definition, now),
                        reason=f"Daily cap of {limit} reached for {day.isoformat()}",
                        now=now,
                    )
                    report.deferred += 1
                    return None

            committed = self.states.apply_transition(state, transition, now)
            mutation = getattr(transition, "mutation", None)
            if mutation is not None and contact is not None:
                contact = self.contacts.apply_mutation(
                    contact.id, state.organization_id, mutation
                )

        report.outcomes[transition.outcome] += 1
        logger.debug(
            f"State {state.id} -> {committed.status.value} at step "
            f"{committed.current_step_pointer}",
            extra={
                "workflow_id": state.workflow_id,
                "state_id": state.id,
                "contact_id": state.contact_id,
                "step_kind": transition.step_kind,
                "outcome": transition.outcome,
            },
        )

        effect = getattr(transition, "effect", None)
        if effect is not None and contact is not None:
            step_pointer = getattr(transition, "step_pointer", None)
            if step_pointer is None:
                step_pointer = committed.current_step_pointer
            result = self.dispatcher.dispatch(committed, contact, effect, step_pointer)
            if result.status == DispatchStatus.SENT:
                report.effects_sent += 1
            elif result.status == DispatchStatus.FAILED:
                report.effects_failed += 1
        return committed

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def _run_sweep(self) -> None:
        try:
            self.sweep()
        except Exception as e:
            logger.error(f"Scheduled sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start sweeping every ``interval_seconds`` in a background thread."""
        self.scheduler.add_job(
            self._run_sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name="Dripline sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Scheduler started (every {self.interval_seconds}s)")

    def shutdown(self) -> None:
        """Shutdown the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown")

    @property
    def running(self) -> bool:
        return self.scheduler.running
