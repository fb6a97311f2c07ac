"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dripline.config import get_settings  # noqa: E402
from dripline.state import SQLiteBackend, reset_database  # noqa: E402
from dripline.store import (  # noqa: E402
    ContactStateRepository,
    DailyCapCounter,
    SQLContactStore,
    WorkflowRepository,
)
from dripline.workflow.models import Contact, WorkflowDefinition  # noqa: E402


@pytest.fixture
def backend(tmp_path):
    """Create a temporary SQLite backend."""
    backend = SQLiteBackend(db_path=str(tmp_path / "dripline.db"))
    yield backend
    backend.close()


@pytest.fixture
def contacts(backend):
    return SQLContactStore(backend)


@pytest.fixture
def workflows(backend):
    return WorkflowRepository(backend)


@pytest.fixture
def states(backend):
    return ContactStateRepository(backend)


@pytest.fixture
def caps(backend):
    return DailyCapCounter(backend)


@pytest.fixture
def make_contact(contacts):
    """Insert a contact and return it."""

    def _make(contact_id: str = "c1", organization_id: str = "org-1", **fields) -> Contact:
        return contacts.upsert(
            Contact(id=contact_id, organization_id=organization_id, **fields)
        )

    return _make


@pytest.fixture
def make_workflow(workflows):
    """Store a workflow definition and return it."""

    def _make(
        steps,
        workflow_id: str = "wf-1",
        organization_id: str = "org-1",
        name: str = "Test workflow",
        **fields,
    ) -> WorkflowDefinition:
        return workflows.save(
            WorkflowDefinition(
                id=workflow_id,
                organization_id=organization_id,
                name=name,
                steps=list(steps),
                **fields,
            )
        )

    return _make


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Point settings and the shared database at a temporary directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DRIPLINE_DATABASE_URL", f"sqlite:///{tmp_path}/dripline-test.db")
    monkeypatch.setenv("DRIPLINE_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("DRIPLINE_WORKFLOWS_DIR", str(tmp_path / "workflows"))
    get_settings.cache_clear()
    reset_database()
    yield tmp_path
    get_settings.cache_clear()
    reset_database()
