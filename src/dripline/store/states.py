"""Contact workflow state repository and execution log."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from dripline.errors import ConcurrencyConflict
from dripline.state import DatabaseBackend, get_database
from dripline.workflow.models import (
    SCHEDULABLE_STATUSES,
    Advance,
    ContactStatus,
    ContactWorkflowState,
    Fail,
    RetryLater,
    Terminal,
    Transition,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class ExecutionLogEntry:
    """One row of the per-contact execution history."""

    state_id: str
    workflow_id: str
    contact_id: str
    outcome: str
    step_pointer: int | None = None
    step_kind: str | None = None
    detail: str | None = None
    created_at: datetime | None = None
    id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "state_id": self.state_id,
            "workflow_id": self.workflow_id,
            "contact_id": self.contact_id,
            "step_pointer": self.step_pointer,
            "step_kind": self.step_kind,
            "outcome": self.outcome,
            "detail": self.detail,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ContactStateRepository:
    """Persists per-contact workflow progress.

    Every write that changes a state is guarded by its revision counter:
    ``UPDATE ... WHERE id = ? AND revision = ?``. A write that matches no
    row raises ``ConcurrencyConflict`` and leaves the row untouched.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS contact_workflow_states (
            id TEXT PRIMARY KEY,
            workflow_id TEXT NOT NULL,
            contact_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending_schedule',
            current_step_pointer INTEGER NOT NULL DEFAULT 0,
            next_eligible_at TEXT,
            wait_until TEXT,
            last_error TEXT,
            revision INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (workflow_id, contact_id)
        );

        CREATE INDEX IF NOT EXISTS idx_cws_eligible
            ON contact_workflow_states(status, next_eligible_at);
        CREATE INDEX IF NOT EXISTS idx_cws_org_workflow
            ON contact_workflow_states(organization_id, workflow_id);

        CREATE TABLE IF NOT EXISTS workflow_execution_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            state_id TEXT NOT NULL,
            workflow_id TEXT NOT NULL,
            contact_id TEXT NOT NULL,
            step_pointer INTEGER,
            step_kind TEXT,
            outcome TEXT NOT NULL,
            detail TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_wel_state ON workflow_execution_log(state_id);
        CREATE INDEX IF NOT EXISTS idx_wel_workflow ON workflow_execution_log(workflow_id);
    """

    def __init__(self, backend: DatabaseBackend | None = None):
        self.backend = backend or get_database()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.backend.executescript(self.SCHEMA)

    @staticmethod
    def _row_to_state(row: dict) -> ContactWorkflowState:
        return ContactWorkflowState(
            id=row["id"],
            workflow_id=row["workflow_id"],
            contact_id=row["contact_id"],
            organization_id=row["organization_id"],
            status=ContactStatus(row["status"]),
            current_step_pointer=row["current_step_pointer"],
            next_eligible_at=parse_timestamp(row.get("next_eligible_at")),
            wait_until=parse_timestamp(row.get("wait_until")),
            last_error=row.get("last_error"),
            revision=row["revision"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def create_if_absent(
        self,
        workflow_id: str,
        organization_id: str,
        contact_ids: Iterable[str],
        now: datetime | None = None,
    ) -> int:
        """Create ``pending_schedule`` states for contacts not yet enrolled.

        The unique ``(workflow_id, contact_id)`` constraint makes repeated
        enrollment a no-op. Returns the number of states created.
        """
        now = now or utcnow()
        stamp = format_timestamp(now)
        created = 0
        with self.backend.transaction():
            for contact_id in dict.fromkeys(contact_ids):
                cursor = self.backend.execute(
                    """
                    INSERT INTO contact_workflow_states
                    (id, workflow_id, contact_id, organization_id, status,
                     current_step_pointer, next_eligible_at, revision, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 0, ?, 0, ?, ?)
                    ON CONFLICT (workflow_id, contact_id) DO NOTHING
                    """,
                    (
                        str(uuid.uuid4()),
                        workflow_id,
                        contact_id,
                        organization_id,
                        ContactStatus.PENDING_SCHEDULE.value,
                        stamp,
                        stamp,
                        stamp,
                    ),
                )
                created += max(cursor.rowcount, 0)
        return created

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, state_id: str) -> ContactWorkflowState | None:
        row = self.backend.fetchone(
            "SELECT * FROM contact_workflow_states WHERE id = ?", (state_id,)
        )
        return self._row_to_state(row) if row else None

    def get_for_contact(self, workflow_id: str, contact_id: str) -> ContactWorkflowState | None:
        row = self.backend.fetchone(
            "SELECT * FROM contact_workflow_states WHERE workflow_id = ? AND contact_id = ?",
            (workflow_id, contact_id),
        )
        return self._row_to_state(row) if row else None

    def list_for_workflow(
        self,
        workflow_id: str,
        status: ContactStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ContactWorkflowState]:
        query = "SELECT * FROM contact_workflow_states WHERE workflow_id = ?"
        params: list = [workflow_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at, id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self.backend.fetchall(query, tuple(params))
        return [self._row_to_state(row) for row in rows]

    def fetch_eligible(
        self,
        now: datetime,
        limit: int,
        workflow_ids: Iterable[str] | None = None,
    ) -> list[ContactWorkflowState]:
        """Schedulable states due at ``now``, oldest ``next_eligible_at`` first.

        Args:
            now: Current time
            limit: Maximum number of states to return
            workflow_ids: Restrict to these workflows (e.g. those with an open window)
        """
        statuses = [s.value for s in SCHEDULABLE_STATUSES]
        query = (
            "SELECT * FROM contact_workflow_states "
            f"WHERE status IN ({', '.join('?' for _ in statuses)}) "
            "AND next_eligible_at IS NOT NULL AND next_eligible_at <= ?"
        )
        params: list = [*statuses, format_timestamp(now)]
        if workflow_ids is not None:
            ids = list(workflow_ids)
            if not ids:
                return []
            query += f" AND workflow_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        query += " ORDER BY next_eligible_at, id LIMIT ?"
        params.append(limit)
        rows = self.backend.fetchall(query, tuple(params))
        return [self._row_to_state(row) for row in rows]

    def status_counts(
        self, organization_id: str, workflow_id: str | None = None
    ) -> dict[str, int]:
        """Count states per status, zero-filled for every status."""
        query = (
            "SELECT status, COUNT(*) AS count FROM contact_workflow_states "
            "WHERE organization_id = ?"
        )
        params: list = [organization_id]
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        query += " GROUP BY status"
        counts = {status.value: 0 for status in ContactStatus}
        for row in self.backend.fetchall(query, tuple(params)):
            counts[row["status"]] = row["count"]
        return counts

    def step_counts(self, workflow_id: str, organization_id: str) -> dict[int, int]:
        """Contacts still in progress, grouped by current step pointer."""
        statuses = [s.value for s in SCHEDULABLE_STATUSES]
        rows = self.backend.fetchall(
            "SELECT current_step_pointer, COUNT(*) AS count FROM contact_workflow_states "
            "WHERE workflow_id = ? AND organization_id = ? "
            f"AND status IN ({', '.join('?' for _ in statuses)}) "
            "GROUP BY current_step_pointer ORDER BY current_step_pointer",
            (workflow_id, organization_id, *statuses),
        )
        return {row["current_step_pointer"]: row["count"] for row in rows}

    def count_for_workflow(self, workflow_id: str, in_flight_only: bool = False) -> int:
        query = "SELECT COUNT(*) AS count FROM contact_workflow_states WHERE workflow_id = ?"
        params: list = [workflow_id]
        if in_flight_only:
            statuses = [s.value for s in SCHEDULABLE_STATUSES]
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        row = self.backend.fetchone(query, tuple(params))
        return row["count"] if row else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def resolve(
        state: ContactWorkflowState, transition: Transition, now: datetime
    ) -> ContactWorkflowState:
        """The state a transition produces, before it is written."""
        if isinstance(transition, Advance):
            return replace(
                state,
                status=ContactStatus.ACTIVE,
                current_step_pointer=transition.pointer,
                next_eligible_at=transition.next_eligible_at,
                wait_until=transition.wait_until,
                last_error=None,
                updated_at=now,
            )
        if isinstance(transition, Terminal):
            return replace(
                state,
                status=transition.status,
                current_step_pointer=(
                    transition.pointer
                    if transition.pointer is not None
                    else state.current_step_pointer
                ),
                next_eligible_at=None,
                wait_until=None,
                updated_at=now,
            )
        if isinstance(transition, RetryLater):
            return replace(
                state,
                status=ContactStatus.WAITING_SCENARIO,
                current_step_pointer=transition.pointer,
                next_eligible_at=transition.next_eligible_at,
                wait_until=None,
                updated_at=now,
            )
        if isinstance(transition, Fail):
            return replace(
                state,
                status=ContactStatus.ERRORED,
                current_step_pointer=(
                    transition.pointer
                    if transition.pointer is not None
                    else state.current_step_pointer
                ),
                next_eligible_at=None,
                wait_until=None,
                last_error=transition.error,
                updated_at=now,
            )
        raise TypeError(f"Unknown transition {transition!r}")

    def _write(
        self, expected: ContactWorkflowState, new: ContactWorkflowState
    ) -> ContactWorkflowState:
        cursor = self.backend.execute(
            """
            UPDATE contact_workflow_states
            SET status = ?, current_step_pointer = ?, next_eligible_at = ?, wait_until = ?,
                last_error = ?, revision = revision + 1, updated_at = ?
            WHERE id = ? AND revision = ?
            """,
            (
                new.status.value,
                new.current_step_pointer,
                format_timestamp(new.next_eligible_at),
                format_timestamp(new.wait_until),
                new.last_error,
                format_timestamp(new.updated_at),
                expected.id,
                expected.revision,
            ),
        )
        if cursor.rowcount == 0:
            raise ConcurrencyConflict(
                f"State {expected.id} changed since revision {expected.revision}",
                state_id=expected.id,
                expected_revision=expected.revision,
            )
        return replace(new, revision=expected.revision + 1)

    def apply_transition(
        self,
        state: ContactWorkflowState,
        transition: Transition,
        now: datetime | None = None,
    ) -> ContactWorkflowState:
        """Commit a transition if the state is still at the revision it was read at.

        Also appends an execution log row in the same transaction.

        Raises:
            ConcurrencyConflict: If another writer committed first
        """
        now = now or utcnow()
        new = self.resolve(state, transition, now)
        detail = getattr(transition, "reason", None) or getattr(transition, "error", None)
        step_pointer = getattr(transition, "step_pointer", None)
        if step_pointer is None:
            step_pointer = new.current_step_pointer
        with self.backend.transaction():
            committed = self._write(state, new)
            self.log(
                ExecutionLogEntry(
                    state_id=state.id,
                    workflow_id=state.workflow_id,
                    contact_id=state.contact_id,
                    step_pointer=step_pointer,
                    step_kind=transition.step_kind,
                    outcome=transition.outcome,
                    detail=detail or None,
                    created_at=now,
                )
            )
        return committed

    def defer(
        self,
        state: ContactWorkflowState,
        until: datetime,
        reason: str,
        now: datetime | None = None,
    ) -> ContactWorkflowState:
        """Push ``next_eligible_at`` out without executing a step."""
        now = now or utcnow()
        new = replace(state, next_eligible_at=until, updated_at=now)
        with self.backend.transaction():
            committed = self._write(state, new)
            self.log(
                ExecutionLogEntry(
                    state_id=state.id,
                    workflow_id=state.workflow_id,
                    contact_id=state.contact_id,
                    step_pointer=state.current_step_pointer,
                    outcome="deferred",
                    detail=reason,
                    created_at=now,
                )
            )
        return committed

    def delete_for_workflow(self, workflow_id: str) -> int:
        """Remove every state and log row of a workflow. Returns states removed."""
        with self.backend.transaction():
            self.backend.execute(
                "DELETE FROM workflow_execution_log WHERE workflow_id = ?", (workflow_id,)
            )
            cursor = self.backend.execute(
                "DELETE FROM contact_workflow_states WHERE workflow_id = ?", (workflow_id,)
            )
        return max(cursor.rowcount, 0)

    # ------------------------------------------------------------------
    # Execution log
    # ------------------------------------------------------------------

    def log(self, entry: ExecutionLogEntry) -> None:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO workflow_execution_log
                (state_id, workflow_id, contact_id, step_pointer, step_kind, outcome, detail,
                 created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.state_id,
                    entry.workflow_id,
                    entry.contact_id,
                    entry.step_pointer,
                    entry.step_kind,
                    entry.outcome,
                    entry.detail,
                    format_timestamp(entry.created_at or utcnow()),
                ),
            )

    def execution_log(
        self,
        state_id: str | None = None,
        workflow_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        query = "SELECT * FROM workflow_execution_log"
        clauses = []
        params: list = []
        if state_id is not None:
            clauses.append("state_id = ?")
            params.append(state_id)
        if workflow_id is not None:
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id LIMIT ?"
        params.append(limit)
        return [
            ExecutionLogEntry(
                id=row["id"],
                state_id=row["state_id"],
                workflow_id=row["workflow_id"],
                contact_id=row["contact_id"],
                step_pointer=row.get("step_pointer"),
                step_kind=row.get("step_kind"),
                outcome=row["outcome"],
                detail=row.get("detail"),
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in self.backend.fetchall(query, tuple(params))
        ]
