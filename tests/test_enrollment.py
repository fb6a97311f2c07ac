"""Tests for the enrollment service."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import ANY, MagicMock

import pytest

from dripline.enrollment import EnrollmentRequest, EnrollmentService
from dripline.errors import LimitExceeded, NotFoundError, ValidationError
from dripline.workflow.models import ContactStatus, SendMessageStep

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
EVERYONE = {"logicalOperator": "AND", "conditions": []}


@pytest.fixture
def service(workflows, states, contacts, make_workflow):
    make_workflow([SendMessageStep(template_id="tpl-1")])
    return EnrollmentService(workflows, states, contacts, max_contacts=1000)


def _request(**fields) -> EnrollmentRequest:
    return EnrollmentRequest(workflow_id="wf-1", organization_id="org-1", **fields)


class TestExplicitIds:
    def test_enrolls_owned_contacts(self, service, states, make_contact) -> None:
        make_contact("c1")
        make_contact("c2")
        make_contact("c3", "org-2")

        result = service.enroll(_request(contact_ids=["c1", "c2", "c3"]), now=T0)

        assert result.enrolled_count == 2
        assert result.requested_count == 2
        state = states.get_for_contact("wf-1", "c1")
        assert state.status == ContactStatus.PENDING_SCHEDULE
        assert state.next_eligible_at == T0
        assert states.get_for_contact("wf-1", "c3") is None

    def test_repeat_enrollment_is_skipped(self, service, states, make_contact) -> None:
        make_contact("c1")
        make_contact("c2")
        service.enroll(_request(contact_ids=["c1"]))

        result = service.enroll(_request(contact_ids=["c1", "c2"]))

        assert result.to_dict() == {
            "enrolled_count": 1,
            "requested_count": 2,
            "skipped_count": 1,
        }
        assert states.count_for_workflow("wf-1") == 2

    def test_over_limit_writes_nothing(self, service, states, make_contact) -> None:
        make_contact("c1")
        ids = [f"c{i}" for i in range(1, 1501)]

        with pytest.raises(LimitExceeded) as exc_info:
            service.enroll(_request(contact_ids=ids))

        assert exc_info.value.details == {"limit": 1000, "requested": 1500}
        assert states.count_for_workflow("wf-1") == 0

    def test_duplicates_count_once_toward_limit(
        self, service, workflows, states, contacts, make_contact
    ) -> None:
        make_contact("c1")
        small = EnrollmentService(workflows, states, contacts, max_contacts=1)

        result = small.enroll(_request(contact_ids=["c1", "c1"]))

        assert result.enrolled_count == 1
        assert result.requested_count == 1

    def test_no_valid_contacts(self, service) -> None:
        with pytest.raises(NotFoundError, match="No valid contacts"):
            service.enroll(_request(contact_ids=["ghost"]))


class TestSelectAll:
    def test_enrolls_matching(self, service, states, make_contact) -> None:
        make_contact("c1", lead_status="trial")
        make_contact("c2", lead_status="customer")
        make_contact("c3", lead_status="trial", first_name="Ada")

        filters = {
            "logicalOperator": "AND",
            "conditions": [{"field": "leadStatus", "operator": "equals", "value": "trial"}],
        }
        result = service.enroll(_request(select_all_matching=True, filters=filters))
        assert result.enrolled_count == 2

        result = service.enroll(
            _request(select_all_matching=True, filters=EVERYONE, search_term="ada")
        )
        assert result.enrolled_count == 0
        assert result.skipped_count == 1

    def test_over_limit(self, workflows, states, contacts, make_workflow, make_contact) -> None:
        make_workflow([SendMessageStep(template_id="tpl-1")])
        for i in range(3):
            make_contact(f"c{i}")
        small = EnrollmentService(workflows, states, contacts, max_contacts=2)

        with pytest.raises(LimitExceeded, match="Found 3 matching"):
            small.enroll(_request(select_all_matching=True, filters=EVERYONE))
        assert states.count_for_workflow("wf-1") == 0

    def test_nothing_matches(self, service) -> None:
        with pytest.raises(NotFoundError, match="No contacts match"):
            service.enroll(_request(select_all_matching=True, filters=EVERYONE))

    def test_resolves_in_one_bounded_pass(
        self, workflows, states, contacts, make_workflow, make_contact
    ) -> None:
        make_workflow([SendMessageStep(template_id="tpl-1")])
        for i in range(5):
            make_contact(f"c{i}")
        store = MagicMock(wraps=contacts)
        small = EnrollmentService(workflows, states, store, max_contacts=10)

        result = small.enroll(_request(select_all_matching=True, filters=EVERYONE))

        assert result.enrolled_count == 5
        store.list_matching.assert_called_once_with("org-1", ANY, None, limit=11)
        store.count_matching.assert_not_called()

    def test_bad_filters(self, service, make_contact) -> None:
        make_contact("c1")
        filters = {"conditions": [{"field": "shoe_size", "operator": "equals", "value": 9}]}
        with pytest.raises(ValidationError, match="Unknown filter field"):
            service.enroll(_request(select_all_matching=True, filters=filters))


class TestRequestShape:
    def test_nothing_selected(self, service) -> None:
        with pytest.raises(ValidationError, match="No contacts selected"):
            service.enroll(_request())

    def test_select_all_requires_filters(self, service, states, make_contact) -> None:
        make_contact("c1")
        with pytest.raises(ValidationError, match="No contacts selected"):
            service.enroll(_request(select_all_matching=True, search_term="c"))
        assert states.count_for_workflow("wf-1") == 0

    def test_unknown_workflow(self, service) -> None:
        request = EnrollmentRequest(
            workflow_id="missing", organization_id="org-1", contact_ids=["c1"]
        )
        with pytest.raises(NotFoundError):
            service.enroll(request)

    def test_workflow_of_other_organization(self, service) -> None:
        request = EnrollmentRequest(
            workflow_id="wf-1", organization_id="org-2", contact_ids=["c1"]
        )
        with pytest.raises(NotFoundError):
            service.enroll(request)
