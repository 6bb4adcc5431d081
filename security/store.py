"""
security/store.py -- SQLAlchemy Core persistence layer for the security core.

Pattern: Repository + Data Mapper. SecurityStore implements the
SecurityRepository protocol; _row_to_user / _row_to_session / _row_to_entry
are the mappers. Components never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  Every method runs inside engine.begin(), so multi-statement methods commit
  or roll back as a unit. The two race-sensitive writes are single
  conditional statements whose rowcount decides the outcome:
    lock_if_threshold_reached -- UPDATE ... WHERE failed_login_attempts >= :t
    consume_backup_code       -- DELETE ... WHERE user_id = :u AND code = :c
  A second concurrent caller finds nothing left to match and gets False.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so string comparison in SQL orders them chronologically.

Errors:
  Every sqlalchemy.exc.SQLAlchemyError is re-raised as
  core.errors.RepositoryError with the original chained as __cause__.

Layer rule: imports core/ only. Components import security/repository.py,
never this module.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import RepositoryError
from core.models import AuditAction, AuditLogEntry, Session, UserSecurityRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255)),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("two_factor_secret", Text),  # NULL iff two_factor_enabled = 0
    Column("two_factor_enabled_at", String(32)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_backup_codes = Table(
    "backup_codes",
    _metadata,
    Column("user_id", String(64), primary_key=True),
    Column("code", String(16), primary_key=True),  # stored upper-cased
    Column("position", Integer, nullable=False),  # preserves issue order
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("session_token", String(255), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("location", String(255)),
    Column("browser", String(100)),
    Column("os", String(100)),
    Column("device", String(20)),
    Column("last_active", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("terminated", Integer, nullable=False, server_default="0"),
    Index("ix_sessions_user_id", "user_id"),
    Index("ix_sessions_token", "session_token"),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64)),  # NULL for pre-authentication events
    Column("session_id", String(255)),
    Column("action", String(40), nullable=False),
    Column("success", Integer, nullable=False),
    Column("details", Text),  # JSON object
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("location", String(255)),
    Column("timestamp", String(32), nullable=False),
    Index("ix_audit_log_user_ts", "user_id", "timestamp"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime | None) -> str | None:
    """Serialize to UTC ISO 8601 with fixed precision. Naive input is taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SecurityStore:
    """Repository for user security fields, backup codes, sessions and audit entries.

    Usage:
        store = SecurityStore("sqlite:///:memory:")
        store.create_user(UserSecurityRecord(id="u1", email="alice@example.com"))
        user = store.get_user("u1")
        store.close()
    """

    # Columns distinct_audit_values() may read -- validated before building the
    # query so a caller-supplied name never reaches SQL unchecked.
    _DISTINCT_COLUMNS: set = {"ip_address", "location"}

    # Fields update_user() accepts. Two-factor columns are not among them.
    _USER_FIELDS: set = {
        "email",
        "email_verified",
        "failed_login_attempts",
        "locked_until",
        "last_login_at",
    }

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Could not initialize schema: {exc}") from exc

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction; translate storage errors."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise RepositoryError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: UserSecurityRecord) -> str:
        """Insert a user security record. Provisioning hook for the identity system.

        Backup codes on the record are inserted only when two-factor is
        enabled, keeping the "codes only while enabled" invariant.
        """
        with self._begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    email_verified=1 if user.email_verified else 0,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    two_factor_secret=user.two_factor_secret if user.two_factor_enabled else None,
                    two_factor_enabled_at=_iso(user.two_factor_enabled_at),
                    failed_login_attempts=user.failed_login_attempts,
                    locked_until=_iso(user.locked_until),
                    last_login_at=_iso(user.last_login_at),
                    created_at=_now_iso(),
                )
            )
            if user.two_factor_enabled:
                _insert_codes(conn, user.id, user.backup_codes)
        return user.id

    def update_user(self, user_id: str, **fields) -> bool:
        """Update identity-owned fields (email, email_verified, counters, timestamps).

        Two-factor fields are deliberately not accepted here -- they change
        only through enable_two_factor() / disable_two_factor().
        Unknown keys raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values: dict = {}
        for key, value in fields.items():
            if key == "email_verified":
                values[key] = 1 if value else 0
            elif key in ("locked_until", "last_login_at"):
                values[key] = _iso(value)
            else:
                values[key] = value
        if not values:
            return False
        with self._begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def get_user(self, user_id: str) -> UserSecurityRecord | None:
        with self._begin() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            codes = conn.execute(
                select(_backup_codes.c.code)
                .where(_backup_codes.c.user_id == user_id)
                .order_by(_backup_codes.c.position)
            ).scalars().all()
        return _row_to_user(row, list(codes))

    def increment_failed_attempts(self, user_id: str) -> int:
        """Atomically add one to the counter and return the new value.

        The UPDATE takes the row's write lock before the SELECT reads it back,
        so the value returned is the one this transaction produced.
        """
        with self._begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=_users.c.failed_login_attempts + 1)
            )
            if result.rowcount == 0:
                return 0
            count = conn.execute(
                select(_users.c.failed_login_attempts).where(_users.c.id == user_id)
            ).scalar_one()
        return int(count)

    def lock_if_threshold_reached(self, user_id: str, threshold: int, locked_until: datetime) -> bool:
        with self._begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.failed_login_attempts >= threshold))
                .values(locked_until=_iso(locked_until), failed_login_attempts=0)
            )
        return result.rowcount > 0

    def reset_failed_attempts(self, user_id: str, last_login_at: datetime) -> None:
        """Zero the counter and stamp last_login_at. locked_until is left alone."""
        with self._begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=0, last_login_at=_iso(last_login_at))
            )

    def clear_lock(self, user_id: str) -> None:
        with self._begin() as conn:
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(locked_until=None, failed_login_attempts=0)
            )

    def enable_two_factor(self, user_id: str, secret: str, backup_codes: Sequence[str], enabled_at: datetime) -> bool:
        """Enable two-factor iff it is currently disabled.

        The conditional UPDATE is the guard: a second concurrent enable
        matches zero rows and returns False without touching the codes.
        """
        with self._begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.two_factor_enabled == 0))
                .values(two_factor_enabled=1, two_factor_secret=secret, two_factor_enabled_at=_iso(enabled_at))
            )
            if result.rowcount == 0:
                return False
            conn.execute(_backup_codes.delete().where(_backup_codes.c.user_id == user_id))
            _insert_codes(conn, user_id, backup_codes)
        return True

    def disable_two_factor(self, user_id: str) -> None:
        with self._begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(two_factor_enabled=0, two_factor_secret=None, two_factor_enabled_at=None)
            )
            conn.execute(_backup_codes.delete().where(_backup_codes.c.user_id == user_id))

    def consume_backup_code(self, user_id: str, code: str) -> bool:
        with self._begin() as conn:
            result = conn.execute(
                _backup_codes.delete().where((_backup_codes.c.user_id == user_id) & (_backup_codes.c.code == code))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        """Insert a session and return its id (generated when session.id is None)."""
        session_id = session.id or uuid.uuid4().hex
        created = _iso(session.created_at) or _now_iso()
        with self._begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=session.user_id,
                    session_token=session.session_token,
                    expires_at=_iso(session.expires_at),
                    ip_address=session.ip_address,
                    location=session.location,
                    browser=session.browser,
                    os=session.os,
                    device=session.device,
                    last_active=_iso(session.last_active) or created,
                    created_at=created,
                    terminated=1 if session.terminated else 0,
                )
            )
        return session_id

    def get_session(self, session_id: str) -> Session | None:
        with self._begin() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_by_token(self, session_token: str, now: datetime) -> Session | None:
        with self._begin() as conn:
            row = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.session_token == session_token)
                    & (_sessions.c.terminated == 0)
                    & (_sessions.c.expires_at > _iso(now))
                )
                .order_by(_sessions.c.last_active.desc())
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_active_sessions(self, user_id: str, now: datetime) -> list[Session]:
        with self._begin() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.terminated == 0)
                    & (_sessions.c.expires_at > _iso(now))
                )
                .order_by(_sessions.c.last_active.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def terminate_session(self, session_id: str, user_id: str) -> bool:
        """Set terminated on a session. user_id is checked to prevent IDOR.

        Returns True only if this call changed the row; an already-terminated
        session or a wrong owner both yield False.
        """
        with self._begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.user_id == user_id) & (_sessions.c.terminated == 0))
                .values(terminated=1)
            )
        return result.rowcount > 0

    def terminate_user_sessions(self, user_id: str, now: datetime, except_token: str | None = None) -> int:
        condition = (
            (_sessions.c.user_id == user_id) & (_sessions.c.terminated == 0) & (_sessions.c.expires_at > _iso(now))
        )
        if except_token:
            condition = condition & (_sessions.c.session_token != except_token)
        with self._begin() as conn:
            result = conn.execute(_sessions.update().where(condition).values(terminated=1))
        return result.rowcount

    def touch_sessions(self, session_token: str, now: datetime) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.session_token == session_token).values(last_active=_iso(now))
            )
        return result.rowcount

    def terminate_expired_sessions(self, now: datetime) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.terminated == 0) & (_sessions.c.expires_at <= _iso(now)))
                .values(terminated=1)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit log (append-only: no update or delete methods exist)
    # ------------------------------------------------------------------

    def add_audit_entry(self, entry: AuditLogEntry) -> int:
        with self._begin() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    user_id=entry.user_id,
                    session_id=entry.session_id,
                    action=AuditAction(entry.action).value,
                    success=1 if entry.success else 0,
                    details=json.dumps(entry.details, default=str) if entry.details else None,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    location=entry.location,
                    timestamp=_iso(entry.timestamp),
                )
            )
        return result.inserted_primary_key[0]

    def query_audit_entries(
        self,
        user_id: str,
        *,
        action: AuditAction | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditLogEntry], int]:
        condition = _audit_condition(user_id, [action] if action else None, success, since)
        with self._begin() as conn:
            total = conn.execute(select(func.count()).select_from(_audit_log).where(condition)).scalar_one()
            rows = conn.execute(
                _audit_log.select()
                .where(condition)
                .order_by(_audit_log.c.timestamp.desc(), _audit_log.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_entry(r) for r in rows], int(total)

    def count_audit_entries(
        self,
        user_id: str,
        *,
        actions: Iterable[AuditAction] | None = None,
        success: bool | None = None,
        since: datetime | None = None,
    ) -> int:
        condition = _audit_condition(user_id, actions, success, since)
        with self._begin() as conn:
            total = conn.execute(select(func.count()).select_from(_audit_log).where(condition)).scalar_one()
        return int(total)

    def distinct_audit_values(
        self,
        user_id: str,
        column: str,
        *,
        actions: Iterable[AuditAction] | None = None,
        success: bool | None = None,
        since: datetime | None = None,
    ) -> set[str]:
        if column not in self._DISTINCT_COLUMNS:
            raise ValueError(f"Unsupported audit column: {column!r}")
        col = _audit_log.c[column]
        condition = _audit_condition(user_id, actions, success, since) & col.is_not(None)
        with self._begin() as conn:
            values = conn.execute(select(col).where(condition).distinct()).scalars().all()
        return set(values)

    def audit_timestamps(self, user_id: str, since: datetime) -> list[datetime]:
        condition = _audit_condition(user_id, None, None, since)
        with self._begin() as conn:
            values = conn.execute(select(_audit_log.c.timestamp).where(condition)).scalars().all()
        return [_parse(v) for v in values]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def _insert_codes(conn: Connection, user_id: str, codes: Sequence[str]) -> None:
    if not codes:
        return
    conn.execute(
        _backup_codes.insert(),
        [{"user_id": user_id, "code": code.upper(), "position": i} for i, code in enumerate(codes)],
    )


def _audit_condition(
    user_id: str,
    actions: Iterable[AuditAction] | None,
    success: bool | None,
    since: datetime | None,
):
    condition = _audit_log.c.user_id == user_id
    if actions is not None:
        condition = condition & _audit_log.c.action.in_([AuditAction(a).value for a in actions])
    if success is not None:
        condition = condition & (_audit_log.c.success == (1 if success else 0))
    if since is not None:
        condition = condition & (_audit_log.c.timestamp >= _iso(since))
    return condition


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, backup_codes: list[str]) -> UserSecurityRecord:
    return UserSecurityRecord(
        id=row.id,
        email=row.email,
        email_verified=bool(row.email_verified),
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        two_factor_enabled_at=_parse(row.two_factor_enabled_at),
        backup_codes=backup_codes,
        failed_login_attempts=row.failed_login_attempts,
        locked_until=_parse(row.locked_until),
        last_login_at=_parse(row.last_login_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        session_token=row.session_token,
        expires_at=_parse(row.expires_at),
        ip_address=row.ip_address,
        location=row.location,
        browser=row.browser,
        os=row.os,
        device=row.device,
        last_active=_parse(row.last_active),
        created_at=_parse(row.created_at),
        terminated=bool(row.terminated),
    )


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        action=AuditAction(row.action),
        success=bool(row.success),
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        location=row.location,
        timestamp=_parse(row.timestamp),
    )
