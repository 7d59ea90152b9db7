"""
auth/store.py -- SQLAlchemy Core persistence layer for users (the user directory).

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Service and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Passwords are hashed here, at the directory boundary (create_user with a
  plaintext password, set_password); compare_password() is the only way to
  check one, and it runs bcrypt even when the record has no hash [C1].

Consistency:
  UNIQUE(email) is enforced by the schema. create_user() lets IntegrityError
  propagate so callers can translate it (a concurrent activation of the same
  email is the expected case). Every update is a single UPDATE statement, so
  per-record writes are atomic.

Availability:
  _engine_options() bounds the driver connect, each statement, and pool
  checkout by DB_TIMEOUT_SECONDS. OperationalError (database
  locked, unreachable, timed out) is translated to UpstreamUnavailable so the
  API answers 503 instead of hanging or leaking a driver error.
  connect_with_retry() is the only retry in the subsystem: it runs once at
  process startup with a fixed backoff.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import UpstreamUnavailable
from auth.models import ROLE_USER, User
from auth.passwords import burn_comparison, hash_password, verify_password

logger = logging.getLogger("coursegate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text),  # NULL for social-only users
    Column("avatar", Text),  # opaque reference owned by object storage
    Column("role", String(30), nullable=False, server_default=ROLE_USER),
    Column("courses", Text, nullable=False, server_default="[]"),  # JSON list of course ids
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns update_user() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset({"name", "avatar", "role", "hashed_password", "courses"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _engine_options(db_url: str, timeout_seconds: float) -> tuple[dict, dict]:
    """Return (connect_args, engine kwargs) bounding connect and statement time.

    SQLite: the driver's busy timeout. PostgreSQL (libpq drivers): connect_timeout
    plus a server-side statement_timeout. MySQL/MariaDB: connect, read and write
    timeouts. Server databases also bound pool checkout and pre-ping.
    """
    url = make_url(db_url)
    backend = url.get_backend_name()
    whole_seconds = max(1, math.ceil(timeout_seconds))
    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": timeout_seconds}, {}

    connect_args: dict = {}
    if backend == "postgresql":
        connect_args["connect_timeout"] = whole_seconds
        connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
    elif backend in ("mysql", "mariadb"):
        connect_args["connect_timeout"] = whole_seconds
        connect_args["read_timeout"] = whole_seconds
        connect_args["write_timeout"] = whole_seconds
    else:
        logger.warning("No driver timeouts known for %s; only pool checkout is bounded", backend)
    return connect_args, {"pool_timeout": timeout_seconds, "pool_pre_ping": True}


@contextmanager
def _upstream_guard() -> Iterator[None]:
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("User directory unavailable: %s", exc)
        raise UpstreamUnavailable() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///users.db")
        user = store.create_user(User(email="a@x.com", name="A"), password="secret")
        same = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        connect_args, engine_kwargs = _engine_options(db_url, timeout_seconds)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        with _upstream_guard():
            _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the directory answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, PoolTimeoutError):
            return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        with _upstream_guard(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with _upstream_guard(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return every user, newest first. Admin-only operation."""
        with _upstream_guard(), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str | None = None) -> User:
        """Insert a new user and return the stored record.

        password, when given, is hashed here; otherwise user.hashed_password
        is stored as-is (None for social-only accounts, or a hash computed
        earlier at registration).

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        hashed = hash_password(password) if password is not None else user.hashed_password
        now = _now_iso()
        user_id = user.id or uuid.uuid4().hex
        with _upstream_guard(), self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    name=user.name,
                    hashed_password=hashed,
                    avatar=user.avatar,
                    role=user.role,
                    courses=json.dumps(list(user.courses)),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        logger.info("Created user %s", user_id)
        return self.find_by_id(user_id)

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields on an existing user in one statement.

        Accepted fields: name, avatar, role, hashed_password, courses.
        Returns the updated record, or None if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "courses" in fields:
            fields["courses"] = json.dumps(list(fields["courses"]))
        fields["updated_at"] = _now_iso()
        with _upstream_guard(), self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.find_by_id(user_id)

    def set_password(self, user_id: str, password: str) -> User | None:
        return self.update_user(user_id, hashed_password=hash_password(password))

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with _upstream_guard(), self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @staticmethod
    def compare_password(user: User | None, plain: str) -> bool:
        """Check plain against the record's hash in constant-ish time [C1].

        Always runs bcrypt: against the real hash when there is one, against
        the dummy hash when the user is unknown or has no local password.
        """
        if user is None or not user.hashed_password:
            burn_comparison(plain)
            return False
        return verify_password(plain, user.hashed_password)

    def close(self) -> None:
        self.engine.dispose()


def connect_with_retry(
    db_url: str,
    *,
    timeout_seconds: float = 5.0,
    attempts: int = 5,
    backoff_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> UserStore:
    """Open the user directory, retrying with a fixed backoff.

    Startup-only. Raises UpstreamUnavailable once every attempt has failed so
    the process exits instead of serving requests without a directory.
    """
    for attempt in range(1, attempts + 1):
        try:
            store = UserStore(db_url, timeout_seconds=timeout_seconds)
        except UpstreamUnavailable:
            logger.warning("User directory connection failed (attempt %d/%d)", attempt, attempts)
        else:
            if store.ping():
                return store
            store.close()
            logger.warning("User directory did not answer ping (attempt %d/%d)", attempt, attempts)
        if attempt < attempts:
            sleep(backoff_seconds)
    raise UpstreamUnavailable(f"User directory unreachable after {attempts} attempts.")


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    try:
        courses = tuple(json.loads(row.courses or "[]"))
    except ValueError:
        courses = ()
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        avatar=row.avatar,
        role=row.role,
        courses=courses,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
