"""
devpool-orchestrator — project document store

File: src/devpool_orchestrator/persistence/project_store.py
Last updated: 2026-10-19

Purpose
- Persist one JSON document per registered project (registration record plus
  worker slot tables) in SQLite, keyed by slug.

What is included in this file
- Checksummed, idempotent schema migrations.
- Bounded busy retries and WAL mode so status reads never block the heartbeat.
- ``editing(slug)``: load -> mutate -> store as one immediate transaction.
- ``checkpointing(slug)``: the same, with mid-block commits so work already
  acted on outside the store survives a later failure.
- Transparent one-time upgrade of older project documents on load.

Non-functional requirements
- Deterministic serialization (sorted keys, compact separators).
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

from devpool_orchestrator.capacity.migration import migrate_project_document
from devpool_orchestrator.capacity.projects import Project
from devpool_orchestrator.constants import PROJECT_DOCUMENT_VERSION, PROJECT_STORE_SCHEMA_VERSION

SQLValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    """
    CREATE TABLE IF NOT EXISTS projects (
        slug TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        document_version INTEGER NOT NULL CHECK (document_version > 0),
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_projects_updated ON projects(updated_at DESC)",
)

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
    )
    if isinstance(code, int)
)
_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

logger = structlog.get_logger(__name__)


class ProjectStoreError(RuntimeError):
    """Base class for project store failures."""


class ProjectNotFoundError(ProjectStoreError):
    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f"project {slug!r} is not registered")


class ProjectStoreMigrationError(ProjectStoreError):
    """Schema migrations cannot be applied safely."""


class ProjectStoreBusyError(ProjectStoreError):
    """Bounded busy retries were exhausted."""


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str


def _migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{version}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="project_documents",
        statements=_MIGRATION_0001_STATEMENTS,
        checksum=_migration_checksum(1, "project_documents", _MIGRATION_0001_STATEMENTS),
    ),
)


@dataclass(slots=True)
class ProjectCheckpoint:
    """A project open for editing whose progress can be committed mid-block."""

    project: Project
    _commit: Callable[[], None]
    commits: int = 0

    def commit(self) -> None:
        """Persist the project as it is now; a later failure rolls back to here."""

        self._commit()
        self.commits += 1


class ProjectStore:
    """SQLite keyed-document store for :class:`Project` records."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------ schema

    def migrate(self) -> int:
        """Apply migrations idempotently and return the current schema version."""

        with self._connection() as conn:
            self._execute(conn, _SCHEMA_VERSIONS_TABLE_SQL, (), operation="create schema_versions")
            rows = self._execute(
                conn,
                "SELECT version, checksum FROM schema_versions ORDER BY version ASC",
                (),
                operation="load schema_versions",
            ).fetchall()
            applied = {int(row["version"]): str(row["checksum"]) for row in rows}
            current = max(applied, default=0)
            if current > PROJECT_STORE_SCHEMA_VERSION:
                raise ProjectStoreMigrationError(
                    "database schema is newer than supported by this release "
                    f"(db={current}, code={PROJECT_STORE_SCHEMA_VERSION})"
                )
            for migration in _MIGRATIONS:
                if migration.version > PROJECT_STORE_SCHEMA_VERSION:
                    continue
                recorded = applied.get(migration.version)
                if recorded is not None:
                    if recorded != migration.checksum:
                        raise ProjectStoreMigrationError(
                            f"migration checksum mismatch for version {migration.version}: "
                            f"db={recorded} code={migration.checksum}"
                        )
                    continue
                with self._transaction(conn):
                    for statement in migration.statements:
                        self._execute(
                            conn, statement, (), operation=f"apply migration {migration.version}"
                        )
                    self._execute(
                        conn,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (migration.version, migration.name, migration.checksum, _utc_now_iso()),
                        operation=f"record migration {migration.version}",
                    )
                logger.info(
                    "project_store_migrated", version=migration.version, path=str(self._path)
                )
            version_row = self._execute(
                conn,
                "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions",
                (),
                operation="read schema version",
            ).fetchone()
        self._migrated = True
        return int(version_row["version"]) if version_row is not None else 0

    # --------------------------------------------------------------- documents

    def register(self, project: Project) -> Project:
        """Insert a new project; registering an existing slug is an error."""

        now = _utc_now_iso()
        with self._connection() as conn, self._transaction(conn):
            existing = self._execute(
                conn, "SELECT 1 FROM projects WHERE slug = ?", (project.slug,), operation="lookup"
            ).fetchone()
            if existing is not None:
                raise ProjectStoreError(f"project {project.slug!r} is already registered")
            document = project.to_dict()
            self._execute(
                conn,
                "INSERT INTO projects (slug, name, document_version, payload_json, created_at, "
                "updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    project.slug,
                    project.name,
                    PROJECT_DOCUMENT_VERSION,
                    canonical_json(document),
                    now,
                    now,
                ),
                operation="register project",
            )
        logger.info("project_registered", project=project.slug)
        return project

    def deregister(self, slug: str) -> bool:
        with self._connection() as conn, self._transaction(conn):
            cursor = self._execute(
                conn, "DELETE FROM projects WHERE slug = ?", (slug,), operation="deregister"
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("project_deregistered", project=slug)
        return removed

    def list_slugs(self) -> tuple[str, ...]:
        with self._connection() as conn:
            rows = self._execute(
                conn, "SELECT slug FROM projects ORDER BY slug ASC", (), operation="list projects"
            ).fetchall()
        return tuple(str(row["slug"]) for row in rows)

    def load(self, slug: str) -> Project:
        with self._connection() as conn, self._transaction(conn):
            return self._load_in(conn, slug)

    def save(self, project: Project) -> None:
        with self._connection() as conn, self._transaction(conn):
            self._save_in(conn, project)

    @contextmanager
    def editing(self, slug: str) -> Iterator[Project]:
        """Load ``slug`` and persist whatever the block leaves in it, atomically.

        An exception inside the block rolls back and nothing is written.
        """

        with self._connection() as conn, self._transaction(conn):
            project = self._load_in(conn, slug)
            yield project
            self._save_in(conn, project)

    @contextmanager
    def checkpointing(self, slug: str) -> Iterator[ProjectCheckpoint]:
        """Like :meth:`editing`, with ``commit()`` to persist progress inside the block.

        An exception rolls back to the last commit, not to the start of the block.
        """

        with self._connection() as conn, self._transaction(conn):
            project = self._load_in(conn, slug)
            yield ProjectCheckpoint(project, lambda: self._commit_in(conn, project))
            self._save_in(conn, project)

    # ----------------------------------------------------------------- helpers

    def _load_in(self, conn: sqlite3.Connection, slug: str) -> Project:
        row = self._execute(
            conn, "SELECT payload_json FROM projects WHERE slug = ?", (slug,), operation="load"
        ).fetchone()
        if row is None:
            raise ProjectNotFoundError(slug)
        try:
            document = json.loads(str(row["payload_json"]))
        except json.JSONDecodeError as exc:
            raise ProjectStoreError(f"project {slug!r} document is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise ProjectStoreError(f"project {slug!r} document must be a JSON object")

        current, changed = migrate_project_document(document, slug=slug)
        try:
            project = Project.from_dict(current)
        except ValueError as exc:
            raise ProjectStoreError(f"project {slug!r} document is invalid: {exc}") from exc
        if changed:
            self._save_in(conn, project)
            logger.info("project_document_migrated", project=slug)
        return project

    def _commit_in(self, conn: sqlite3.Connection, project: Project) -> None:
        self._save_in(conn, project)
        self._execute(conn, "COMMIT", (), operation="commit checkpoint")
        self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")

    def _save_in(self, conn: sqlite3.Connection, project: Project) -> None:
        document = project.to_dict()
        cursor = self._execute(
            conn,
            "UPDATE projects SET name = ?, document_version = ?, payload_json = ?, updated_at = ? "
            "WHERE slug = ?",
            (
                project.name,
                PROJECT_DOCUMENT_VERSION,
                canonical_json(document),
                _utc_now_iso(),
                project.slug,
            ),
            operation="save project",
        )
        if cursor.rowcount == 0:
            raise ProjectNotFoundError(project.slug)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if not self._migrated:
            self._migrated = True
            try:
                self.migrate()
            except BaseException:
                self._migrated = False
                raise
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        else:
            self._execute(conn, "COMMIT", (), operation="commit transaction")

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: Sequence[SQLValue],
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if _is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                if _is_busy_error(exc):
                    raise ProjectStoreBusyError(
                        f"{operation} hit SQLITE_BUSY for {self._path} after "
                        f"{self._busy_retry_limit + 1} attempt(s): {exc}"
                    ) from exc
                raise ProjectStoreError(f"{operation} failed for {self._path}: {exc}") from exc
        raise ProjectStoreBusyError(f"{operation} exhausted retries unexpectedly")


def _is_busy_error(exc: sqlite3.Error) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persisted documents."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "ProjectCheckpoint",
    "ProjectNotFoundError",
    "ProjectStore",
    "ProjectStoreBusyError",
    "ProjectStoreError",
    "ProjectStoreMigrationError",
    "canonical_json",
]
