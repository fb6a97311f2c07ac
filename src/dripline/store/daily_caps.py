"""Per-workflow, per-day admission counter."""

from __future__ import annotations

import logging
from datetime import date

from dripline.state import DatabaseBackend, get_database
from dripline.workflow.models import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class DailyCapCounter:
    """Counts distinct contacts advanced per workflow per local day.

    Admission is one atomic ``UPDATE ... SET used = used + 1 WHERE used < ?``
    so workers racing near the limit cannot over-admit. A contact admitted
    earlier the same day passes again without consuming another slot.

    Call ``admit`` inside the caller's transaction so that a rolled-back
    commit also returns the slot.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS workflow_daily_caps (
            workflow_id TEXT NOT NULL,
            day TEXT NOT NULL,
            used INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (workflow_id, day)
        );

        CREATE TABLE IF NOT EXISTS workflow_daily_admissions (
            workflow_id TEXT NOT NULL,
            day TEXT NOT NULL,
            contact_id TEXT NOT NULL,
            admitted_at TEXT NOT NULL,
            PRIMARY KEY (workflow_id, day, contact_id)
        );
    """

    def __init__(self, backend: DatabaseBackend | None = None):
        self.backend = backend or get_database()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.backend.executescript(self.SCHEMA)

    def admit(self, workflow_id: str, day: date, contact_id: str, limit: int | None) -> bool:
        """Try to admit a contact for ``day``.

        Args:
            workflow_id: Workflow being advanced
            day: Local day the cap is charged against
            contact_id: Contact being advanced
            limit: Daily ceiling; ``None`` means uncapped

        Returns:
            True if the contact may be advanced today
        """
        if limit is None:
            return True
        key = (workflow_id, day.isoformat())
        with self.backend.transaction():
            cursor = self.backend.execute(
                """
                INSERT INTO workflow_daily_admissions (workflow_id, day, contact_id, admitted_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (workflow_id, day, contact_id) DO NOTHING
                """,
                (*key, contact_id, format_timestamp(utcnow())),
            )
            if cursor.rowcount == 0:
                # Already admitted today
                return True

            self.backend.execute(
                """
                INSERT INTO workflow_daily_caps (workflow_id, day, used) VALUES (?, ?, 0)
                ON CONFLICT (workflow_id, day) DO NOTHING
                """,
                key,
            )
            cursor = self.backend.execute(
                "UPDATE workflow_daily_caps SET used = used + 1 "
                "WHERE workflow_id = ? AND day = ? AND used < ?",
                (*key, limit),
            )
            if cursor.rowcount == 0:
                self.backend.execute(
                    "DELETE FROM workflow_daily_admissions "
                    "WHERE workflow_id = ? AND day = ? AND contact_id = ?",
                    (*key, contact_id),
                )
                logger.debug(f"Daily cap {limit} reached for workflow {workflow_id} on {day}")
                return False
        return True

    def used(self, workflow_id: str, day: date) -> int:
        row = self.backend.fetchone(
            "SELECT used FROM workflow_daily_caps WHERE workflow_id = ? AND day = ?",
            (workflow_id, day.isoformat()),
        )
        return row["used"] if row else 0

    def remaining(self, workflow_id: str, day: date, limit: int | None) -> int | None:
        if limit is None:
            return None
        return max(limit - self.used(workflow_id, day), 0)

    def delete_for_workflow(self, workflow_id: str) -> None:
        with self.backend.transaction():
            self.backend.execute(
                "DELETE FROM workflow_daily_admissions WHERE workflow_id = ?", (workflow_id,)
            )
            self.backend.execute(
                "DELETE FROM workflow_daily_caps WHERE workflow_id = ?", (workflow_id,)
            )
