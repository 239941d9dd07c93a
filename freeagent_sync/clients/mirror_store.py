"""SQLite tables mirroring FreeAgent contacts, projects and invoices."""

from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from freeagent_sync.models.mirror import (
    CLOSED_STATUSES,
    SETTLED_STATUSES,
    Contact,
    Invoice,
    InvoiceFilters,
    MirrorRecord,
    Project,
)
from freeagent_sync.models.principal import DirectoryPrincipal, InvoiceScope

RecordT = TypeVar("RecordT", bound=MirrorRecord)

_CONTACT_TABLE = "freeagent_contacts"
_PROJECT_TABLE = "freeagent_projects"
_INVOICE_TABLE = "freeagent_invoices"

_SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS {_CONTACT_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        remote_id TEXT NOT NULL UNIQUE,
        organisation_name TEXT,
        first_name TEXT,
        last_name TEXT,
        email TEXT,
        phone TEXT,
        type TEXT NOT NULL,
        is_active INTEGER NOT NULL,
        raw_payload TEXT NOT NULL,
        synced_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {_PROJECT_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        remote_id TEXT NOT NULL UNIQUE,
        contact_ref TEXT,
        name TEXT NOT NULL,
        status TEXT,
        description TEXT,
        starts_on TEXT,
        ends_on TEXT,
        budget TEXT,
        budget_units TEXT,
        is_ir35 INTEGER NOT NULL,
        raw_payload TEXT NOT NULL,
        synced_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {_INVOICE_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        remote_id TEXT NOT NULL UNIQUE,
        contact_ref TEXT,
        project_ref TEXT,
        reference TEXT,
        status TEXT NOT NULL,
        dated_on TEXT NOT NULL,
        due_on TEXT,
        net_value TEXT NOT NULL,
        tax_value TEXT NOT NULL,
        total_value TEXT NOT NULL,
        currency TEXT NOT NULL,
        pdf_url TEXT,
        raw_payload TEXT NOT NULL,
        synced_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS freeagent_invoices_contact
    ON {_INVOICE_TABLE} (contact_ref)
    """,
    """
    CREATE TABLE IF NOT EXISTS freeagent_principals (
        principal_id TEXT PRIMARY KEY,
        is_admin INTEGER NOT NULL DEFAULT 0,
        contact_remote_id TEXT
    )
    """,
)


def _not_in(column: str, values: Tuple[str, ...]) -> str:
    return f"{column} NOT IN ({', '.join('?' for _ in values)})"


class MirrorStore:
    """
    Local copies of remote records, upserted by ``remote_id``.

    Only the sync engine writes contacts, projects and invoices. Foreign
    references are resolved against rows already mirrored and stored as
    ``None`` when the referenced record has not been synced.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # Upserts

    def upsert_contact(self, payload: Dict[str, Any]) -> Tuple[Contact, bool]:
        contact = Contact.from_api(payload)
        return self._upsert(_CONTACT_TABLE, contact)

    def upsert_project(self, payload: Dict[str, Any]) -> Tuple[Project, bool]:
        project = Project.from_api(
            payload, contact_ref=self._resolve(_CONTACT_TABLE, payload.get("contact"))
        )
        return self._upsert(_PROJECT_TABLE, project)

    def upsert_invoice(self, payload: Dict[str, Any]) -> Tuple[Invoice, bool]:
        invoice = Invoice.from_api(
            payload,
            contact_ref=self._resolve(_CONTACT_TABLE, payload.get("contact")),
            project_ref=self._resolve(_PROJECT_TABLE, payload.get("project")),
        )
        return self._upsert(_INVOICE_TABLE, invoice)

    def _resolve(self, table: str, remote_id: Optional[str]) -> Optional[str]:
        if not remote_id:
            return None
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {table} WHERE remote_id = ?", (remote_id,)
            ).fetchone()
        return remote_id if row else None

    def _upsert(self, table: str, record: RecordT) -> Tuple[RecordT, bool]:
        row = self._to_row(record)
        columns = list(row.keys())
        with self._connect() as conn:
            existing = conn.execute(
                f"SELECT id FROM {table} WHERE remote_id = ?", (record.remote_id,)
            ).fetchone()
            if existing:
                assignments = ", ".join(f"{column} = ?" for column in columns)
                conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    (*row.values(), existing["id"]),
                )
                record_id, created = existing["id"], False
            else:
                placeholders = ", ".join("?" for _ in columns)
                cursor = conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
                record_id, created = cursor.lastrowid, True
        return record.model_copy(update={"id": record_id}), created

    @staticmethod
    def _to_row(record: MirrorRecord) -> Dict[str, Any]:
        row = record.model_dump(mode="json", exclude={"id"})
        row["raw_payload"] = json.dumps(record.raw_payload)
        for key, value in row.items():
            if isinstance(value, bool):
                row[key] = int(value)
        return row

    @staticmethod
    def _from_row(model: Type[RecordT], row: sqlite3.Row) -> RecordT:
        data = dict(row)
        data["raw_payload"] = json.loads(data["raw_payload"])
        return model.model_validate(data)

    # Reads

    def get_contact(self, remote_id: str) -> Optional[Contact]:
        return self._get(_CONTACT_TABLE, Contact, "remote_id", remote_id)

    def get_project(self, remote_id: str) -> Optional[Project]:
        return self._get(_PROJECT_TABLE, Project, "remote_id", remote_id)

    def get_invoice(self, remote_id: str) -> Optional[Invoice]:
        return self._get(_INVOICE_TABLE, Invoice, "remote_id", remote_id)

    def get_invoice_by_id(self, invoice_id: int) -> Optional[Invoice]:
        return self._get(_INVOICE_TABLE, Invoice, "id", invoice_id)

    def _get(
        self, table: str, model: Type[RecordT], column: str, value: Any
    ) -> Optional[RecordT]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {table} WHERE {column} = ?", (value,)
            ).fetchone()
        if not row:
            return None
        return self._from_row(model, row)

    def list_contacts(self, *, active_only: bool = False) -> List[Contact]:
        query = f"SELECT * FROM {_CONTACT_TABLE}"
        if active_only:
            query += " WHERE is_active = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id").fetchall()
        return [self._from_row(Contact, row) for row in rows]

    def list_projects(self, *, contact_ref: Optional[str] = None) -> List[Project]:
        query = f"SELECT * FROM {_PROJECT_TABLE}"
        params: tuple = ()
        if contact_ref is not None:
            query += " WHERE contact_ref = ?"
            params = (contact_ref,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [self._from_row(Project, row) for row in rows]

    def list_invoices(
        self,
        scope: InvoiceScope,
        filters: Optional[InvoiceFilters] = None,
        *,
        today: Optional[date] = None,
    ) -> List[Invoice]:
        """
        Return invoices visible under ``scope``, newest first.

        ``filters`` narrows the result further. Status comparisons ignore case;
        ``unpaid`` drops paid, cancelled and written off invoices, ``overdue``
        keeps open invoices whose due date is before ``today`` and the date
        range is inclusive on ``dated_on``.
        """
        if scope.kind == "none":
            return []
        filters = filters or InvoiceFilters()
        clauses: List[str] = []
        params: List[Any] = []

        if scope.kind == "contact":
            clauses.append("contact_ref = ?")
            params.append(scope.contact_ref)
        if filters.statuses:
            clauses.append(
                f"lower(status) IN ({', '.join('?' for _ in filters.statuses)})"
            )
            params.extend(status.lower() for status in filters.statuses)
        if filters.paid:
            clauses.append("lower(status) = ?")
            params.append("paid")
        if filters.unpaid:
            clauses.append(_not_in("lower(status)", SETTLED_STATUSES))
            params.extend(SETTLED_STATUSES)
        if filters.overdue:
            clauses.append(_not_in("lower(status)", CLOSED_STATUSES))
            params.extend(CLOSED_STATUSES)
            clauses.append("due_on IS NOT NULL AND due_on < ?")
            today = today or datetime.now(timezone.utc).date()
            params.append(today.isoformat())
        if filters.from_date is not None:
            clauses.append("dated_on >= ?")
            params.append(filters.from_date.isoformat())
        if filters.to_date is not None:
            clauses.append("dated_on <= ?")
            params.append(filters.to_date.isoformat())

        query = f"SELECT * FROM {_INVOICE_TABLE}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._connect() as conn:
            rows = conn.execute(
                query + " ORDER BY dated_on DESC, id DESC", params
            ).fetchall()
        return [self._from_row(Invoice, row) for row in rows]

    def count(self, kind: str) -> int:
        table = {
            "contacts": _CONTACT_TABLE,
            "projects": _PROJECT_TABLE,
            "invoices": _INVOICE_TABLE,
        }[kind]
        with self._connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS total FROM {table}").fetchone()
        return int(row["total"])

    # Principal directory

    def save_principal(self, principal: DirectoryPrincipal) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO freeagent_principals (principal_id, is_admin, contact_remote_id)
                VALUES (?, ?, ?)
                ON CONFLICT(principal_id) DO UPDATE SET
                    is_admin = excluded.is_admin,
                    contact_remote_id = excluded.contact_remote_id
                """,
                (
                    principal.principal_id,
                    int(principal.is_admin),
                    principal.contact_remote_id,
                ),
            )

    def get_principal(self, principal_id: str) -> Optional[DirectoryPrincipal]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM freeagent_principals WHERE principal_id = ?",
                (principal_id,),
            ).fetchone()
        if not row:
            return None
        return DirectoryPrincipal(
            principal_id=row["principal_id"],
            is_admin=bool(row["is_admin"]),
            contact_remote_id=row["contact_remote_id"],
        )

    def link_contact(self, principal_id: str, contact_remote_id: Optional[str]) -> None:
        """Link a principal to one contact, or unlink it with ``None``."""
        existing = self.get_principal(principal_id)
        self.save_principal(
            DirectoryPrincipal(
                principal_id=principal_id,
                is_admin=existing.is_admin if existing else False,
                contact_remote_id=contact_remote_id,
            )
        )


__all__ = ["MirrorStore"]
