"""Workflow definition repository."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace

from dripline.errors import NotFoundError, ValidationError
from dripline.state import DatabaseBackend, get_database
from dripline.workflow.models import (
    Step,
    WorkflowDefinition,
    format_timestamp,
    parse_time_of_day,
    parse_timestamp,
    step_from_dict,
    utcnow,
)

logger = logging.getLogger(__name__)


class WorkflowRepository:
    """Persists workflow definitions.

    Steps are stored as a JSON document. Because contact states hold 0-based
    pointers into that list, step edits on a workflow with contacts in flight
    must be append-only.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS workflows (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            steps TEXT NOT NULL,
            daily_contact_limit INTEGER,
            drip_window_start TEXT,
            drip_window_end TEXT,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_workflows_org ON workflows(organization_id);
        CREATE INDEX IF NOT EXISTS idx_workflows_active ON workflows(active);
    """

    def __init__(self, backend: DatabaseBackend | None = None):
        self.backend = backend or get_database()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.backend.executescript(self.SCHEMA)

    @staticmethod
    def _row_to_definition(row: dict) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=row["id"],
            organization_id=row["organization_id"],
            name=row["name"],
            description=row.get("description") or "",
            steps=[step_from_dict(s) for s in json.loads(row["steps"])],
            daily_contact_limit=row.get("daily_contact_limit"),
            drip_window_start=parse_time_of_day(row.get("drip_window_start")),
            drip_window_end=parse_time_of_day(row.get("drip_window_end")),
            timezone=row.get("timezone") or "UTC",
            active=bool(row["active"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Insert or replace a definition as-is (no append-only check)."""
        data = definition.to_dict()
        definition.updated_at = utcnow()
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT INTO workflows
                (id, organization_id, name, description, steps, daily_contact_limit,
                 drip_window_start, drip_window_end, timezone, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    steps = excluded.steps,
                    daily_contact_limit = excluded.daily_contact_limit,
                    drip_window_start = excluded.drip_window_start,
                    drip_window_end = excluded.drip_window_end,
                    timezone = excluded.timezone,
                    active = excluded.active,
                    updated_at = excluded.updated_at
                """,
                (
                    definition.id,
                    definition.organization_id,
                    definition.name,
                    definition.description,
                    json.dumps(data["steps"]),
                    definition.daily_contact_limit,
                    data["drip_window_start"],
                    data["drip_window_end"],
                    definition.timezone,
                    1 if definition.active else 0,
                    format_timestamp(definition.created_at),
                    format_timestamp(definition.updated_at),
                ),
            )
        logger.info(f"Saved workflow {definition.id} ({len(definition.steps)} steps)")
        return definition

    def get(
        self, workflow_id: str, organization_id: str | None = None
    ) -> WorkflowDefinition | None:
        if organization_id is None:
            row = self.backend.fetchone("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
        else:
            row = self.backend.fetchone(
                "SELECT * FROM workflows WHERE id = ? AND organization_id = ?",
                (workflow_id, organization_id),
            )
        return self._row_to_definition(row) if row else None

    def require(
        self, workflow_id: str, organization_id: str | None = None
    ) -> WorkflowDefinition:
        definition = self.get(workflow_id, organization_id)
        if definition is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        return definition

    def list_definitions(
        self, organization_id: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        query = "SELECT * FROM workflows"
        clauses = []
        params: list = []
        if organization_id is not None:
            clauses.append("organization_id = ?")
            params.append(organization_id)
        if active_only:
            clauses.append("active = 1")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, id"
        rows = self.backend.fetchall(query, tuple(params))
        return [self._row_to_definition(row) for row in rows]

    def set_active(
        self, workflow_id: str, organization_id: str, active: bool
    ) -> WorkflowDefinition:
        definition = self.require(workflow_id, organization_id)
        with self.backend.transaction():
            self.backend.execute(
                "UPDATE workflows SET active = ?, updated_at = ? WHERE id = ?",
                (1 if active else 0, format_timestamp(utcnow()), workflow_id),
            )
        logger.info(f"Workflow {workflow_id} {'activated' if active else 'deactivated'}")
        definition.active = active
        return definition

    def update_steps(
        self,
        workflow_id: str,
        organization_id: str,
        steps: list[Step],
        in_flight: bool,
    ) -> WorkflowDefinition:
        """Replace a workflow's steps.

        Args:
            workflow_id: Workflow to edit
            organization_id: Owning organization
            steps: New step list
            in_flight: Whether non-terminal contact states exist for the workflow

        Raises:
            ValidationError: If contacts are in flight and the edit is not append-only
        """
        definition = self.require(workflow_id, organization_id)
        current = [s.to_dict() for s in definition.steps]
        proposed = [s.to_dict() for s in steps]
        if in_flight and proposed[: len(current)] != current:
            raise ValidationError(
                "Workflow has contacts in flight; steps may only be appended. "
                "Duplicate the workflow to make other changes.",
                {"workflow_id": workflow_id},
            )
        updated = replace(definition, steps=list(steps))
        return self.save(updated)

    def duplicate(
        self,
        workflow_id: str,
        organization_id: str,
        new_id: str | None = None,
        name: str | None = None,
    ) -> WorkflowDefinition:
        """Copy a workflow into a new, inactive definition."""
        source = self.require(workflow_id, organization_id)
        now = utcnow()
        copy = replace(
            source,
            id=new_id or str(uuid.uuid4()),
            name=name or f"{source.name} (Copy)",
            active=False,
            created_at=now,
            updated_at=now,
        )
        if self.get(copy.id) is not None:
            raise ValidationError(f"Workflow {copy.id} already exists")
        return self.save(copy)

    def delete(self, workflow_id: str, organization_id: str) -> bool:
        with self.backend.transaction():
            cursor = self.backend.execute(
                "DELETE FROM workflows WHERE id = ? AND organization_id = ?",
                (workflow_id, organization_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted workflow {workflow_id}")
        return deleted
