"""Workflow, contact and per-contact state models.

Steps form a closed set of frozen dataclasses. Each carries a ``kind`` tag
used for (de)serialization; the interpreter matches on the concrete class.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from enum import Enum
from typing import Any, ClassVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dripline.errors import ValidationError

from .filters import FilterTree

# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime | None) -> str | None:
    """Fixed-width UTC text so stored timestamps sort lexicographically."""
    if value is None:
        return None
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_timestamp(value) -> datetime | None:
    """Parse datetime from database (handles both strings and datetime objects)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


def parse_time_of_day(value) -> time | None:
    """Parse an ``HH:MM`` (or ``HH:MM:SS``) drip window bound."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid time of day '{value}', expected HH:MM")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContactStatus(str, Enum):
    """Lifecycle status of a contact inside one workflow."""

    PENDING_SCHEDULE = "pending_schedule"
    ACTIVE = "active"
    WAITING_SCENARIO = "waiting_scenario"
    FILTERED = "filtered"
    ERRORED = "errored"
    COMPLETED = "completed"
    REMOVED = "removed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ContactStatus.FILTERED,
        ContactStatus.ERRORED,
        ContactStatus.COMPLETED,
        ContactStatus.REMOVED,
    }
)

SCHEDULABLE_STATUSES = (
    ContactStatus.PENDING_SCHEDULE,
    ContactStatus.ACTIVE,
    ContactStatus.WAITING_SCENARIO,
)


class WaitUnit(str, Enum):
    """Units accepted by wait steps."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


WEBHOOK_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

MAX_WAIT = timedelta(days=3650)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class _StepBase:
    kind: ClassVar[str] = ""

    # Re-evaluated against current contact data when the step is reached
    condition: FilterTree | None = None

    def _config(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        data = {"kind": self.kind, **self._config()}
        if self.condition is not None:
            data["condition"] = self.condition.to_dict()
        return data


@dataclass(frozen=True, kw_only=True)
class WaitStep(_StepBase):
    kind: ClassVar[str] = "wait"

    duration: int
    unit: WaitUnit = WaitUnit.DAYS

    @property
    def delta(self) -> timedelta:
        return timedelta(**{self.unit.value: self.duration})

    def _config(self) -> dict:
        return {"duration": self.duration, "unit": self.unit.value}


@dataclass(frozen=True, kw_only=True)
class SendMessageStep(_StepBase):
    kind: ClassVar[str] = "send_message"

    template_id: str
    subject_override: str | None = None

    def _config(self) -> dict:
        return {"template_id": self.template_id, "subject_override": self.subject_override}


@dataclass(frozen=True, kw_only=True)
class UpdateFieldStep(_StepBase):
    kind: ClassVar[str] = "update_field"

    path: str
    value: Any

    def _config(self) -> dict:
        return {"path": self.path, "value": self.value}


@dataclass(frozen=True, kw_only=True)
class ClearFieldStep(_StepBase):
    kind: ClassVar[str] = "clear_field"

    path: str

    def _config(self) -> dict:
        return {"path": self.path}


@dataclass(frozen=True, kw_only=True)
class CallWebhookStep(_StepBase):
    kind: ClassVar[str] = "call_webhook"

    url: str
    method: str = "POST"

    def _config(self) -> dict:
        return {"url": self.url, "method": self.method}


@dataclass(frozen=True)
class BranchPath:
    """One weighted continuation of a branch step."""

    weight_percent: float
    next_pointer: int

    def to_dict(self) -> dict:
        return {"weight_percent": self.weight_percent, "next_pointer": self.next_pointer}


@dataclass(frozen=True, kw_only=True)
class BranchStep(_StepBase):
    kind: ClassVar[str] = "branch"

    paths: tuple[BranchPath, ...]

    def _config(self) -> dict:
        return {"paths": [p.to_dict() for p in self.paths]}


@dataclass(frozen=True, kw_only=True)
class RemoveFromWorkflowStep(_StepBase):
    kind: ClassVar[str] = "remove_from_workflow"


Step = (
    WaitStep
    | SendMessageStep
    | UpdateFieldStep
    | ClearFieldStep
    | CallWebhookStep
    | BranchStep
    | RemoveFromWorkflowStep
)

STEP_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        WaitStep,
        SendMessageStep,
        UpdateFieldStep,
        ClearFieldStep,
        CallWebhookStep,
        BranchStep,
        RemoveFromWorkflowStep,
    )
}


def step_from_dict(data: dict) -> Step:
    """Build a step from its serialized form.

    The input is expected to have passed ``validate_step`` already; malformed
    data raises ``ValidationError``.
    """
    kind = data.get("kind")
    if kind not in STEP_TYPES:
        raise ValidationError(f"Unknown step kind '{kind}'")

    condition = None
    if data.get("condition"):
        condition = FilterTree.from_dict(data["condition"])

    try:
        if kind == "wait":
            return WaitStep(
                duration=int(data["duration"]),
                unit=WaitUnit(data.get("unit", "days")),
                condition=condition,
            )
        if kind == "send_message":
            return SendMessageStep(
                template_id=str(data["template_id"]),
                subject_override=data.get("subject_override"),
                condition=condition,
            )
        if kind == "update_field":
            return UpdateFieldStep(path=data["path"], value=data.get("value"), condition=condition)
        if kind == "clear_field":
            return ClearFieldStep(path=data["path"], condition=condition)
        if kind == "call_webhook":
            return CallWebhookStep(
                url=data["url"],
                method=str(data.get("method", "POST")).upper(),
                condition=condition,
            )
        if kind == "branch":
            paths = tuple(
                BranchPath(
                    weight_percent=float(p["weight_percent"]),
                    next_pointer=int(p["next_pointer"]),
                )
                for p in data["paths"]
            )
            return BranchStep(paths=paths, condition=condition)
        return RemoveFromWorkflowStep(condition=condition)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed '{kind}' step: {e}")


# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{name}'")


@dataclass
class WorkflowDefinition:
    """An ordered list of steps plus its pacing configuration."""

    id: str
    organization_id: str
    name: str
    steps: list[Step] = field(default_factory=list)
    description: str = ""
    daily_contact_limit: int | None = None
    drip_window_start: time | None = None
    drip_window_end: time | None = None
    timezone: str = "UTC"
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def tz(self) -> ZoneInfo:
        return load_timezone(self.timezone)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
            "daily_contact_limit": self.daily_contact_limit,
            "drip_window_start": self.drip_window_start.strftime("%H:%M")
            if self.drip_window_start
            else None,
            "drip_window_end": self.drip_window_end.strftime("%H:%M")
            if self.drip_window_end
            else None,
            "timezone": self.timezone,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> WorkflowDefinition:
        timezone = data.get("timezone") or "UTC"
        load_timezone(timezone)
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            name=data["name"],
            description=data.get("description") or "",
            steps=[step_from_dict(s) for s in data.get("steps", [])],
            daily_contact_limit=data.get("daily_contact_limit"),
            drip_window_start=parse_time_of_day(data.get("drip_window_start")),
            drip_window_end=parse_time_of_day(data.get("drip_window_end")),
            timezone=timezone,
            active=data.get("active", True),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
        )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@dataclass
class Contact:
    """A record-store contact as seen by the engine."""

    id: str
    organization_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    title: str | None = None
    company_name: str | None = None
    lead_status: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    tags: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    engaged_until: datetime | None = None
    last_activity_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_engaged(self, now: datetime) -> bool:
        return self.engaged_until is not None and self.engaged_until > now

    def to_record(self) -> dict[str, Any]:
        """Flat mapping consumed by the filter evaluator."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "title": self.title,
            "company_name": self.company_name,
            "lead_status": self.lead_status,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "tags": list(self.tags),
            "attributes": copy.deepcopy(self.attributes),
            "engaged_until": self.engaged_until,
            "last_activity_at": self.last_activity_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class FieldMutation:
    """A set or delete on a dot-addressed path in a contact's attribute bag."""

    path: str
    value: Any = None
    clear: bool = False

    def apply(self, attributes: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``attributes`` with the mutation applied.

        Clearing deletes the key; clearing a missing key is a no-op.
        """
        result = copy.deepcopy(attributes)
        *parents, leaf = self.path.split(".")
        node = result
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                if self.clear:
                    return result
                child = {}
                node[part] = child
            node = child
        if self.clear:
            node.pop(leaf, None)
        else:
            node[leaf] = copy.deepcopy(self.value)
        return result


# ---------------------------------------------------------------------------
# Per-contact workflow state
# ---------------------------------------------------------------------------


@dataclass
class ContactWorkflowState:
    """Progress of one contact through one workflow."""

    id: str
    workflow_id: str
    contact_id: str
    organization_id: str
    status: ContactStatus = ContactStatus.PENDING_SCHEDULE
    current_step_pointer: int = 0
    next_eligible_at: datetime | None = None
    wait_until: datetime | None = None
    last_error: str | None = None
    revision: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "contact_id": self.contact_id,
            "organization_id": self.organization_id,
            "status": self.status.value,
            "current_step_pointer": self.current_step_pointer,
            "next_eligible_at": self.next_eligible_at.isoformat()
            if self.next_eligible_at
            else None,
            "wait_until": self.wait_until.isoformat() if self.wait_until else None,
            "last_error": self.last_error,
            "revision": self.revision,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# External effects and transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SendMessageEffect:
    template_id: str
    subject_override: str | None = None


@dataclass(frozen=True)
class CallWebhookEffect:
    url: str
    method: str = "POST"


Effect = SendMessageEffect | CallWebhookEffect


@dataclass(frozen=True)
class Advance:
    """Stay schedulable at ``pointer``; next tick no earlier than ``next_eligible_at``.

    ``step_pointer`` is the step that actually ran, which differs from
    ``pointer`` after a branch or when execution moves past a step.
    """

    pointer: int
    next_eligible_at: datetime
    step_kind: str
    step_pointer: int | None = None
    wait_until: datetime | None = None
    mutation: FieldMutation | None = None
    effect: Effect | None = None

    outcome: ClassVar[str] = "advanced"


@dataclass(frozen=True)
class Terminal:
    """Finish the contact's run with a terminal status."""

    status: ContactStatus
    pointer: int | None = None
    step_kind: str | None = None
    reason: str = ""
    mutation: FieldMutation | None = None
    effect: Effect | None = None

    @property
    def outcome(self) -> str:
        return self.status.value


@dataclass(frozen=True)
class RetryLater:
    """Transiently blocked; park in ``waiting_scenario`` and re-check later."""

    pointer: int
    next_eligible_at: datetime
    step_kind: str
    reason: str = ""

    outcome: ClassVar[str] = "waiting"


@dataclass(frozen=True)
class Fail:
    """Non-retryable error; the state becomes ``errored``."""

    error: str
    pointer: int | None = None
    step_kind: str | None = None

    outcome: ClassVar[str] = "errored"


Transition = Advance | Terminal | RetryLater | Fail
