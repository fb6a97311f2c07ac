"""Record store collaborator: contact lookup, filtered counts and mutations."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator

from dripline.errors import NotFoundError
from dripline.state import DatabaseBackend, get_database
from dripline.workflow.filters import FilterTree, evaluate, matches_search
from dripline.workflow.models import (
    Contact,
    FieldMutation,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

# Bound on the number of parameters in one IN (...) clause
_ID_CHUNK = 500


class ContactStore(ABC):
    """What the engine needs from the record store."""

    @abstractmethod
    def get(self, contact_id: str, organization_id: str) -> Contact | None:
        """Point lookup scoped to an organization."""

    @abstractmethod
    def existing_ids(self, contact_ids: Iterable[str], organization_id: str) -> list[str]:
        """Return the subset of ids that belong to the organization, in input order."""

    @abstractmethod
    def list_matching(
        self,
        organization_id: str,
        tree: FilterTree | None = None,
        search_term: str | None = None,
        limit: int | None = None,
    ) -> list[Contact]:
        """Contacts passing the filter tree and search term."""

    def count_matching(
        self,
        organization_id: str,
        tree: FilterTree | None = None,
        search_term: str | None = None,
    ) -> int:
        return len(self.list_matching(organization_id, tree, search_term))

    @abstractmethod
    def apply_mutation(
        self, contact_id: str, organization_id: str, mutation: FieldMutation
    ) -> Contact:
        """Apply a field-path mutation to the contact's attribute bag."""

    @abstractmethod
    def upsert(self, contact: Contact) -> Contact:
        """Insert or replace a contact."""


class SQLContactStore(ContactStore):
    """Contact store on the shared database backend.

    Filtering runs the Python evaluator over the organization's rows so that
    enrollment sizing and step gating share exactly one implementation.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS contacts (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            email TEXT,
            title TEXT,
            company_name TEXT,
            lead_status TEXT,
            city TEXT,
            state TEXT,
            country TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            attributes TEXT NOT NULL DEFAULT '{}',
            engaged_until TEXT,
            last_activity_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_contacts_org ON contacts(organization_id);
    """

    _COLUMNS = (
        "id",
        "organization_id",
        "first_name",
        "last_name",
        "email",
        "title",
        "company_name",
        "lead_status",
        "city",
        "state",
        "country",
        "tags",
        "attributes",
        "engaged_until",
        "last_activity_at",
        "created_at",
        "updated_at",
    )

    def __init__(self, backend: DatabaseBackend | None = None):
        self.backend = backend or get_database()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.backend.executescript(self.SCHEMA)

    @staticmethod
    def _row_to_contact(row: dict) -> Contact:
        return Contact(
            id=row["id"],
            organization_id=row["organization_id"],
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            email=row.get("email"),
            title=row.get("title"),
            company_name=row.get("company_name"),
            lead_status=row.get("lead_status"),
            city=row.get("city"),
            state=row.get("state"),
            country=row.get("country"),
            tags=json.loads(row["tags"]) if row.get("tags") else [],
            attributes=json.loads(row["attributes"]) if row.get("attributes") else {},
            engaged_until=parse_timestamp(row.get("engaged_until")),
            last_activity_at=parse_timestamp(row.get("last_activity_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def get(self, contact_id: str, organization_id: str) -> Contact | None:
        row = self.backend.fetchone(
            "SELECT * FROM contacts WHERE id = ? AND organization_id = ?",
            (contact_id, organization_id),
        )
        return self._row_to_contact(row) if row else None

    def require(self, contact_id: str, organization_id: str) -> Contact:
        contact = self.get(contact_id, organization_id)
        if contact is None:
            raise NotFoundError(
                f"Contact {contact_id} not found", resource="contact", resource_id=contact_id
            )
        return contact

    def existing_ids(self, contact_ids: Iterable[str], organization_id: str) -> list[str]:
        wanted = list(dict.fromkeys(contact_ids))
        found: set[str] = set()
        for start in range(0, len(wanted), _ID_CHUNK):
            chunk = wanted[start : start + _ID_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self.backend.fetchall(
                f"SELECT id FROM contacts WHERE organization_id = ? AND id IN ({placeholders})",
                (organization_id, *chunk),
            )
            found.update(row["id"] for row in rows)
        return [cid for cid in wanted if cid in found]

    def _iter_organization(self, organization_id: str) -> Iterator[Contact]:
        rows = self.backend.fetchall(
            "SELECT * FROM contacts WHERE organization_id = ? ORDER BY created_at, id",
            (organization_id,),
        )
        for row in rows:
            yield self._row_to_contact(row)

    def list_matching(
        self,
        organization_id: str,
        tree: FilterTree | None = None,
        search_term: str | None = None,
        limit: int | None = None,
    ) -> list[Contact]:
        matched = []
        for contact in self._iter_organization(organization_id):
            record = contact.to_record()
            if not matches_search(record, search_term):
                continue
            if not evaluate(tree, record).passed:
                continue
            matched.append(contact)
            if limit is not None and len(matched) >= limit:
                break
        return matched

    def count_matching(
        self,
        organization_id: str,
        tree: FilterTree | None = None,
        search_term: str | None = None,
    ) -> int:
        count = 0
        for contact in self._iter_organization(organization_id):
            record = contact.to_record()
            if matches_search(record, search_term) and evaluate(tree, record).passed:
                count += 1
        return count

    def apply_mutation(
        self, contact_id: str, organization_id: str, mutation: FieldMutation
    ) -> Contact:
        contact = self.require(contact_id, organization_id)
        contact.attributes = mutation.apply(contact.attributes)
        contact.updated_at = utcnow()
        with self.backend.transaction():
            self.backend.execute(
                "UPDATE contacts SET attributes = ?, updated_at = ? "
                "WHERE id = ? AND organization_id = ?",
                (
                    json.dumps(contact.attributes),
                    format_timestamp(contact.updated_at),
                    contact_id,
                    organization_id,
                ),
            )
        logger.debug(
            f"{'Cleared' if mutation.clear else 'Set'} {mutation.path} on contact {contact_id}"
        )
        return contact

    def upsert(self, contact: Contact) -> Contact:
        values = (
            contact.id,
            contact.organization_id,
            contact.first_name,
            contact.last_name,
            contact.email,
            contact.title,
            contact.company_name,
            contact.lead_status,
            contact.city,
            contact.state,
            contact.country,
            json.dumps(list(contact.tags)),
            json.dumps(contact.attributes),
            format_timestamp(contact.engaged_until),
            format_timestamp(contact.last_activity_at),
            format_timestamp(contact.created_at),
            format_timestamp(contact.updated_at),
        )
        columns = ", ".join(self._COLUMNS)
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in self._COLUMNS if c != "id")
        with self.backend.transaction():
            self.backend.execute(
                f"INSERT INTO contacts ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT (id) DO UPDATE SET {updates}",
                values,
            )
        return contact
