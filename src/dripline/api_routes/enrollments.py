"""Enrollment endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from dripline import api_state as state
from dripline.api_errors import ENROLLMENT_RESPONSES, bad_request
from dripline.api_models import EnrollContactsRequest
from dripline.api_routes.dependencies import get_organization_id
from dripline.enrollment import EnrollmentRequest
from dripline.workflow.models import ContactStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/workflows/{workflow_id}/enrollments", responses=ENROLLMENT_RESPONSES)
def enroll_contacts(
    workflow_id: str,
    body: EnrollContactsRequest,
    organization_id: str = Depends(get_organization_id),
):
    """Enroll explicit contacts, or every contact matching a filter tree."""
    result = state.enrollment.enroll(
        EnrollmentRequest(
            workflow_id=workflow_id,
            organization_id=organization_id,
            contact_ids=body.contact_ids,
            select_all_matching=body.select_all_matching,
            filters=body.filters,
            search_term=body.search_term,
        )
    )
    return {"status": "success", "workflow_id": workflow_id, **result.to_dict()}


@router.get("/workflows/{workflow_id}/contacts", responses=ENROLLMENT_RESPONSES)
def list_enrolled_contacts(
    workflow_id: str,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    organization_id: str = Depends(get_organization_id),
):
    """List contact states of a workflow, optionally for one status."""
    state.workflows.require(workflow_id, organization_id)
    status_filter = None
    if status is not None:
        try:
            status_filter = ContactStatus(status)
        except ValueError:
            raise bad_request(
                f"Unknown status '{status}'",
                {"allowed": [s.value for s in ContactStatus]},
            )
    states = state.states.list_for_workflow(
        workflow_id, status=status_filter, limit=min(max(limit, 1), 500), offset=max(offset, 0)
    )
    return {"workflow_id": workflow_id, "states": [s.to_dict() for s in states]}
