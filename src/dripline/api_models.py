"""Request models for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WorkflowCreateRequest(BaseModel):
    """Body for creating a workflow."""

    id: str | None = Field(None, description="Workflow id (generated when omitted)")
    name: str = Field(..., min_length=1)
    description: str = ""
    steps: list[dict[str, Any]] = Field(..., min_length=1)
    daily_contact_limit: int | None = Field(None, ge=1)
    drip_window_start: str | None = Field(None, description="HH:MM in the workflow timezone")
    drip_window_end: str | None = Field(None, description="HH:MM in the workflow timezone")
    timezone: str = "UTC"
    active: bool = True


class StepsUpdateRequest(BaseModel):
    """Body for replacing a workflow's steps."""

    steps: list[dict[str, Any]] = Field(..., min_length=1)


class DuplicateWorkflowRequest(BaseModel):
    """Body for duplicating a workflow."""

    new_id: str | None = None
    name: str | None = None


class EnrollContactsRequest(BaseModel):
    """Body for enrolling contacts into a workflow."""

    contact_ids: list[str] | None = None
    select_all_matching: bool = False
    filters: dict[str, Any] | None = Field(
        None, description="Filter tree: {logicalOperator, conditions: [...]}"
    )
    search_term: str | None = None
