"""Enrollment service: resolve target contacts and create their states."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from dripline.errors import LimitExceeded, NotFoundError, ValidationError
from dripline.store.contacts import ContactStore
from dripline.store.states import ContactStateRepository
from dripline.store.workflows import WorkflowRepository
from dripline.workflow.filters import FilterTree
from dripline.workflow.models import utcnow

logger = logging.getLogger(__name__)


class EnrollmentRequest(BaseModel):
    """Enroll contacts into one workflow of one organization.

    Either ``contact_ids`` is non-empty, or ``select_all_matching`` is set
    together with ``filters`` (optionally narrowed by ``search_term``).
    An empty filter tree selects every contact in the organization.
    """

    workflow_id: str
    organization_id: str
    contact_ids: list[str] | None = None
    select_all_matching: bool = False
    filters: dict | None = Field(None, description="Filter tree (logicalOperator + conditions)")
    search_term: str | None = None


@dataclass
class EnrollmentResult:
    enrolled_count: int
    requested_count: int

    @property
    def skipped_count(self) -> int:
        """Contacts that were already enrolled."""
        return self.requested_count - self.enrolled_count

    def to_dict(self) -> dict:
        return {
            "enrolled_count": self.enrolled_count,
            "requested_count": self.requested_count,
            "skipped_count": self.skipped_count,
        }


class EnrollmentService:
    """Creates ``pending_schedule`` states for a resolved set of contacts.

    Every bound is checked before any state is written, so a rejected request
    leaves no partial enrollment behind.

    Args:
        workflows: Workflow repository
        states: Contact state repository
        contacts: Record store
        max_contacts: Upper bound per request (defaults to settings)
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        states: ContactStateRepository,
        contacts: ContactStore,
        max_contacts: int | None = None,
    ):
        if max_contacts is None:
            from dripline.config import get_settings

            max_contacts = get_settings().enrollment_max_contacts
        self.workflows = workflows
        self.states = states
        self.contacts = contacts
        self.max_contacts = max_contacts

    def enroll(self, request: EnrollmentRequest, now: datetime | None = None) -> EnrollmentResult:
        """Enroll the contacts a request resolves to.

        Raises:
            NotFoundError: Workflow missing, or no contacts resolved
            LimitExceeded: More contacts than ``max_contacts``
            ValidationError: Neither contact ids nor select-all given, or bad filters
        """
        now = now or utcnow()
        workflow = self.workflows.require(request.workflow_id, request.organization_id)
        if not workflow.active:
            logger.warning(f"Enrolling into inactive workflow {workflow.id}")

        if request.contact_ids:
            contact_ids = self._resolve_explicit(request)
        elif request.select_all_matching and request.filters is not None:
            contact_ids = self._resolve_matching(request)
        else:
            raise ValidationError("No contacts selected")

        enrolled = self.states.create_if_absent(
            workflow.id, request.organization_id, contact_ids, now=now
        )
        logger.info(
            f"Enrolled {enrolled}/{len(contact_ids)} contacts into workflow {workflow.id}",
            extra={"workflow_id": workflow.id, "organization_id": request.organization_id},
        )
        return EnrollmentResult(enrolled_count=enrolled, requested_count=len(contact_ids))

    def _resolve_explicit(self, request: EnrollmentRequest) -> list[str]:
        unique_ids = list(dict.fromkeys(request.contact_ids))
        if len(unique_ids) > self.max_contacts:
            raise LimitExceeded(
                f"Cannot enroll more than {self.max_contacts} contacts at once",
                limit=self.max_contacts,
                requested=len(unique_ids),
            )
        owned = self.contacts.existing_ids(unique_ids, request.organization_id)
        dropped = len(unique_ids) - len(owned)
        if dropped:
            logger.debug(f"Dropped {dropped} contact ids outside the organization")
        if not owned:
            raise NotFoundError("No valid contacts found", resource="contact")
        return owned

    def _resolve_matching(self, request: EnrollmentRequest) -> list[str]:
        tree = FilterTree.from_dict(request.filters)
        # One past the bound is enough to know the request must be refused
        matched = self.contacts.list_matching(
            request.organization_id, tree, request.search_term, limit=self.max_contacts + 1
        )
        if len(matched) > self.max_contacts:
            total = self.contacts.count_matching(
                request.organization_id, tree, request.search_term
            )
            raise LimitExceeded(
                f"Cannot enroll more than {self.max_contacts} contacts at once. "
                f"Found {total} matching contacts.",
                limit=self.max_contacts,
                requested=total,
            )
        if not matched:
            raise NotFoundError("No contacts match the filters", resource="contact")
        return [contact.id for contact in matched]
