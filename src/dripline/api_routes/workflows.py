"""Workflow CRUD, lifecycle and reporting endpoints."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends

from dripline import api_state as state
from dripline.api_errors import (
    CRUD_RESPONSES,
    bad_request,
    conflict,
    not_found,
    responses,
)
from dripline.api_models import (
    DuplicateWorkflowRequest,
    StepsUpdateRequest,
    WorkflowCreateRequest,
)
from dripline.api_routes.dependencies import get_organization_id
from dripline.workflow.loader import definition_from_dict, validate_workflow
from dripline.workflow.models import step_from_dict

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@router.get("/workflows/status-counts", responses=CRUD_RESPONSES)
def get_status_counts(
    workflow_id: str | None = None,
    organization_id: str = Depends(get_organization_id),
):
    """Count contact states per status, with every status present."""
    if workflow_id is not None:
        state.workflows.require(workflow_id, organization_id)
    return {
        "workflow_id": workflow_id,
        "counts": state.states.status_counts(organization_id, workflow_id),
    }


@router.get("/workflows/{workflow_id}/step-counts", responses=CRUD_RESPONSES)
def get_step_counts(workflow_id: str, organization_id: str = Depends(get_organization_id)):
    """Count in-progress contacts per step."""
    definition = state.workflows.require(workflow_id, organization_id)
    counts = state.states.step_counts(workflow_id, organization_id)
    return {
        "workflow_id": workflow_id,
        "steps": [
            {"pointer": index, "kind": step.kind, "contacts": counts.get(index, 0)}
            for index, step in enumerate(definition.steps)
        ],
    }


@router.get("/workflows/{workflow_id}/log", responses=CRUD_RESPONSES)
def get_execution_log(
    workflow_id: str,
    limit: int = 100,
    organization_id: str = Depends(get_organization_id),
):
    """Execution log rows for a workflow, oldest first."""
    state.workflows.require(workflow_id, organization_id)
    entries = state.states.execution_log(workflow_id=workflow_id, limit=min(max(limit, 1), 1000))
    return {"workflow_id": workflow_id, "entries": [e.to_dict() for e in entries]}


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.get("/workflows", responses=CRUD_RESPONSES)
def list_workflows(
    active_only: bool = False,
    organization_id: str = Depends(get_organization_id),
):
    """List the organization's workflows."""
    definitions = state.workflows.list_definitions(organization_id, active_only=active_only)
    return {"workflows": [d.to_dict() for d in definitions]}


@router.get("/workflows/{workflow_id}", responses=CRUD_RESPONSES)
def get_workflow(workflow_id: str, organization_id: str = Depends(get_organization_id)):
    """Get a specific workflow."""
    definition = state.workflows.get(workflow_id, organization_id)
    if definition is None:
        raise not_found("Workflow", workflow_id)
    return definition.to_dict()


@router.post("/workflows", status_code=201, responses=responses(400, 409, 500))
def create_workflow(
    body: WorkflowCreateRequest,
    organization_id: str = Depends(get_organization_id),
):
    """Create a new workflow."""
    workflow_id = body.id or str(uuid.uuid4())
    if state.workflows.get(workflow_id) is not None:
        raise conflict(f"Workflow '{workflow_id}' already exists", {"workflow_id": workflow_id})

    data = body.model_dump(exclude={"id"}, exclude_none=True)
    definition = definition_from_dict(
        data, organization_id=organization_id, workflow_id=workflow_id
    )
    state.workflows.save(definition)
    return {"status": "success", "workflow_id": definition.id}


@router.put("/workflows/{workflow_id}/steps", responses=responses(400, 404, 500))
def update_workflow_steps(
    workflow_id: str,
    body: StepsUpdateRequest,
    organization_id: str = Depends(get_organization_id),
):
    """Replace a workflow's steps.

    While contacts are in flight only appending steps is allowed.
    """
    current = state.workflows.require(workflow_id, organization_id)
    errors = validate_workflow({"name": current.name, "steps": body.steps})
    if errors:
        raise bad_request("Workflow validation failed", {"errors": errors})
    steps = [step_from_dict(s) for s in body.steps]
    in_flight = state.states.count_for_workflow(workflow_id, in_flight_only=True) > 0
    updated = state.workflows.update_steps(workflow_id, organization_id, steps, in_flight)
    return {"status": "success", "workflow_id": workflow_id, "steps": len(updated.steps)}


@router.post("/workflows/{workflow_id}/activate", responses=CRUD_RESPONSES)
def activate_workflow(workflow_id: str, organization_id: str = Depends(get_organization_id)):
    """Resume scheduling for a workflow."""
    state.workflows.set_active(workflow_id, organization_id, True)
    return {"status": "success", "message": "Workflow activated"}


@router.post("/workflows/{workflow_id}/deactivate", responses=CRUD_RESPONSES)
def deactivate_workflow(workflow_id: str, organization_id: str = Depends(get_organization_id)):
    """Pause scheduling for a workflow; enrolled contacts keep their place."""
    state.workflows.set_active(workflow_id, organization_id, False)
    return {"status": "success", "message": "Workflow deactivated"}


@router.post("/workflows/{workflow_id}/duplicate", status_code=201, responses=CRUD_RESPONSES)
def duplicate_workflow(
    workflow_id: str,
    body: DuplicateWorkflowRequest | None = None,
    organization_id: str = Depends(get_organization_id),
):
    """Copy a workflow into a new inactive workflow."""
    body = body or DuplicateWorkflowRequest()
    copy = state.workflows.duplicate(
        workflow_id, organization_id, new_id=body.new_id, name=body.name
    )
    return {"status": "success", "workflow_id": copy.id, "name": copy.name}


@router.delete("/workflows/{workflow_id}", responses=responses(404, 409, 500))
def delete_workflow(
    workflow_id: str,
    force: bool = False,
    organization_id: str = Depends(get_organization_id),
):
    """Delete a workflow with its contact states and cap counters.

    Refused while contacts are in flight unless ``force`` is set.
    """
    state.workflows.require(workflow_id, organization_id)
    in_flight = state.states.count_for_workflow(workflow_id, in_flight_only=True)
    if in_flight and not force:
        raise conflict(
            f"Workflow '{workflow_id}' has {in_flight} contacts in flight",
            {"workflow_id": workflow_id, "in_flight": in_flight},
        )

    with state.backend.transaction():
        removed = state.states.delete_for_workflow(workflow_id)
        state.caps.delete_for_workflow(workflow_id)
        state.workflows.delete(workflow_id, organization_id)
    logger.info(f"Deleted workflow {workflow_id} and {removed} contact states")
    return {"status": "success", "removed_states": removed}
