"""Shared mutable state for API modules.

The lifespan (in api.py) populates these names; route modules import this
*module* so they see the populated values:

    from dripline import api_state as state
    state.workflows.require(workflow_id, organization_id)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dripline.enrollment import EnrollmentService
    from dripline.scheduler import SchedulerDriver
    from dripline.state import DatabaseBackend
    from dripline.store import (
        ContactStateRepository,
        ContactStore,
        DailyCapCounter,
        WorkflowRepository,
    )

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Components (initialized in lifespan)
# ---------------------------------------------------------------------------
backend: DatabaseBackend | None = None
workflows: WorkflowRepository | None = None
states: ContactStateRepository | None = None
contacts: ContactStore | None = None
caps: DailyCapCounter | None = None
enrollment: EnrollmentService | None = None
driver: SchedulerDriver | None = None

# ---------------------------------------------------------------------------
# Application lifecycle state
# ---------------------------------------------------------------------------
_app_state: dict = {
    "ready": False,
    "shutting_down": False,
    "start_time": None,
}


def initialize(database: DatabaseBackend, settings=None, run_scheduler: bool = False) -> None:
    """Create every component on one database backend."""
    global backend, workflows, states, contacts, caps, enrollment, driver

    from dripline.enrollment import EnrollmentService
    from dripline.scheduler import SchedulerDriver

    driver = SchedulerDriver.from_settings(settings, backend=database)
    backend = database
    workflows = driver.workflows
    states = driver.states
    contacts = driver.contacts
    caps = driver.caps
    enrollment = EnrollmentService(
        workflows,
        states,
        contacts,
        max_contacts=settings.enrollment_max_contacts if settings else None,
    )
    if run_scheduler:
        driver.start()

    _app_state["ready"] = True
    _app_state["start_time"] = datetime.now()
    logger.info("API components initialized")


def shutdown() -> None:
    """Stop the background scheduler and mark the app as not ready."""
    _app_state["shutting_down"] = True
    _app_state["ready"] = False
    if driver is not None:
        driver.shutdown()
