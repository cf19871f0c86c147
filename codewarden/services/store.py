"""
Quota store adapters.

Supports:
- SQL via SQLAlchemy (SQLite for local development, any URL in deployment)
- In-memory (tests, single-process tools)

This is the only layer that touches durable storage. Counter deltas are
applied by the store itself, never as read-modify-write by callers.
Every fault surfaces as StoreUnavailableError.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    case,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from codewarden.core.config import Settings, get_settings
from codewarden.core.errors import StoreUnavailableError
from codewarden.core.logging import get_logger
from codewarden.core.timeutil import ensure_utc
from codewarden.domain.usage import Feature, UsageRecord, zero_usage

logger = get_logger("store")

# Monotonic deadline of the store call in flight; inherited by worker threads.
_deadline: ContextVar[Optional[float]] = ContextVar("store_deadline", default=None)


@contextmanager
def store_deadline(timeout: float) -> Iterator[None]:
    """Give store work started inside the block timeout seconds to finish."""
    token = _deadline.set(time.monotonic() + timeout)
    try:
        yield
    finally:
        _deadline.reset(token)


def check_deadline(operation: str) -> None:
    """Raise StoreUnavailableError once the current deadline has passed."""
    deadline = _deadline.get()
    if deadline is not None and time.monotonic() > deadline:
        raise StoreUnavailableError(
            f"Quota store {operation} exceeded its deadline",
            operation=operation,
        )


# ==============================================
# Stored tier variants
# ==============================================

@dataclass(frozen=True)
class FlagTier:
    """Current format: boolean pro flag."""
    is_pro: bool


@dataclass(frozen=True)
class LegacyPlanTier:
    """Old format: string plan name ("free" / "pro")."""
    plan: str


StoredTier = Union[FlagTier, LegacyPlanTier]


def read_stored_tier(is_pro: Optional[bool], plan: Optional[str]) -> StoredTier:
    """Classify the raw tier fields of a stored row."""
    if is_pro is True or plan is None:
        return FlagTier(bool(is_pro))
    return LegacyPlanTier(plan)


def normalize_tier(tier: StoredTier) -> bool:
    """Fold either stored format into the boolean the rest of the system uses."""
    if isinstance(tier, LegacyPlanTier):
        return tier.plan == "pro"
    return tier.is_pro


# ==============================================
# Store contract
# ==============================================

class QuotaStore(ABC):
    """Abstract base class for quota stores. All operations are coroutines."""

    @abstractmethod
    async def load(self, user_id: str) -> Optional[UsageRecord]:
        """Load a user's record, or None if never initialized."""
        pass

    @abstractmethod
    async def save(self, user_id: str, record: UsageRecord) -> None:
        """Full upsert of a user's record."""
        pass

    @abstractmethod
    async def create_if_absent(self, user_id: str, record: UsageRecord) -> UsageRecord:
        """Insert record unless one exists; return whichever record is stored."""
        pass

    @abstractmethod
    async def atomic_increment(self, user_id: str, feature: Feature) -> None:
        """Add one to a counter in a single store-level operation."""
        pass

    @abstractmethod
    async def atomic_decrement(self, user_id: str, feature: Feature) -> None:
        """Subtract one from a counter, clamped at zero."""
        pass

    @abstractmethod
    async def set_tier(self, user_id: str, is_pro: bool) -> None:
        """Write the boolean tier and drop any legacy plan field."""
        pass

    @abstractmethod
    async def reset_window(
        self,
        user_id: str,
        window_start: datetime,
        keep: Iterable[Feature] = (),
    ) -> None:
        """
        Zero every counter not in keep and move the window to window_start.

        No-op unless the stored window is older than window_start.
        """
        pass

    @abstractmethod
    async def conditional_increment(
        self,
        user_id: str,
        feature: Feature,
        ceiling: int,
    ) -> Optional[int]:
        """Increment only if the result stays <= ceiling. Return new count or None."""
        pass


# ==============================================
# In-memory store
# ==============================================

@dataclass
class _MemoryRow:
    is_pro: Optional[bool]
    plan: Optional[str]
    usage: dict[Feature, int]
    window_start: datetime
    created_at: datetime

    def to_record(self) -> UsageRecord:
        return UsageRecord(
            is_pro=normalize_tier(read_stored_tier(self.is_pro, self.plan)),
            usage=dict(self.usage),
            window_start=self.window_start,
            created_at=self.created_at,
        )

    @classmethod
    def from_record(cls, record: UsageRecord) -> "_MemoryRow":
        usage = zero_usage()
        usage.update(record.usage)
        return cls(
            is_pro=record.is_pro,
            plan=None,
            usage=usage,
            window_start=ensure_utc(record.window_start),
            created_at=ensure_utc(record.created_at),
        )


class InMemoryQuotaStore(QuotaStore):
    """
    Dict-backed store guarded by an asyncio lock.

    `available` and `latency` let tests simulate outages and slow calls.
    """

    def __init__(self, latency: float = 0.0):
        self._rows: dict[str, _MemoryRow] = {}
        self._lock = asyncio.Lock()
        self.latency = latency
        self.available = True

    async def _enter(self, operation: str) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        check_deadline(operation)
        if not self.available:
            raise StoreUnavailableError(
                "In-memory quota store marked unavailable",
                operation=operation,
            )

    def put_legacy(
        self,
        user_id: str,
        plan: str,
        usage: dict[Feature, int],
        window_start: datetime,
        created_at: datetime,
    ) -> None:
        """Seed a row in the old string-plan format."""
        row_usage = zero_usage()
        row_usage.update(usage)
        self._rows[user_id] = _MemoryRow(
            is_pro=None,
            plan=plan,
            usage=row_usage,
            window_start=ensure_utc(window_start),
            created_at=ensure_utc(created_at),
        )

    async def load(self, user_id: str) -> Optional[UsageRecord]:
        await self._enter("load")
        row = self._rows.get(user_id)
        return row.to_record() if row else None

    async def save(self, user_id: str, record: UsageRecord) -> None:
        await self._enter("save")
        async with self._lock:
            self._rows[user_id] = _MemoryRow.from_record(record)

    async def create_if_absent(self, user_id: str, record: UsageRecord) -> UsageRecord:
        await self._enter("create_if_absent")
        async with self._lock:
            if user_id not in self._rows:
                self._rows[user_id] = _MemoryRow.from_record(record)
            return self._rows[user_id].to_record()

    async def atomic_increment(self, user_id: str, feature: Feature) -> None:
        await self._enter("atomic_increment")
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                logger.warning(f"Increment for unknown user {user_id} ignored")
                return
            row.usage[feature] = row.usage.get(feature, 0) + 1

    async def atomic_decrement(self, user_id: str, feature: Feature) -> None:
        await self._enter("atomic_decrement")
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                return
            row.usage[feature] = max(0, row.usage.get(feature, 0) - 1)

    async def set_tier(self, user_id: str, is_pro: bool) -> None:
        await self._enter("set_tier")
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                logger.warning(f"Tier change for unknown user {user_id} ignored")
                return
            row.is_pro = is_pro
            row.plan = None

    async def reset_window(
        self,
        user_id: str,
        window_start: datetime,
        keep: Iterable[Feature] = (),
    ) -> None:
        await self._enter("reset_window")
        window_start = ensure_utc(window_start)
        keep = set(keep)
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None or row.window_start >= window_start:
                return
            for feature in Feature:
                if feature not in keep:
                    row.usage[feature] = 0
            row.window_start = window_start

    async def conditional_increment(
        self,
        user_id: str,
        feature: Feature,
        ceiling: int,
    ) -> Optional[int]:
        await self._enter("conditional_increment")
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                return None
            current = row.usage.get(feature, 0)
            if current + 1 > ceiling:
                return None
            row.usage[feature] = current + 1
            return current + 1


# ==============================================
# SQL store
# ==============================================

Base = declarative_base()

FEATURE_COLUMNS = {
    Feature.PROJECTS: "code_police_projects",
    Feature.PUSH_ANALYSES: "push_analyses",
    Feature.FIX_WITH_PR: "fix_with_pr",
}


class UsageRow(Base):
    """Database model for per-user usage records."""

    __tablename__ = "usage_records"

    user_id = Column(String(128), primary_key=True)
    is_pro = Column(Boolean, nullable=True)
    plan = Column(String(16), nullable=True)  # legacy tier field
    code_police_projects = Column(Integer, nullable=False, default=0)
    push_analyses = Column(Integer, nullable=False, default=0)
    fix_with_pr = Column(Integer, nullable=False, default=0)
    usage_reset_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)


def _to_db(dt: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    return ensure_utc(dt).replace(tzinfo=None)


def _column(feature: Feature):
    return getattr(UsageRow, FEATURE_COLUMNS[feature])


def _row_to_record(row: UsageRow) -> UsageRecord:
    return UsageRecord(
        is_pro=normalize_tier(read_stored_tier(row.is_pro, row.plan)),
        usage={f: getattr(row, col) or 0 for f, col in FEATURE_COLUMNS.items()},
        window_start=ensure_utc(row.usage_reset_at),
        created_at=ensure_utc(row.created_at),
    )


def _record_values(record: UsageRecord) -> dict:
    values = {col: record.count(f) for f, col in FEATURE_COLUMNS.items()}
    values.update(
        is_pro=record.is_pro,
        plan=None,
        usage_reset_at=_to_db(record.window_start),
        created_at=_to_db(record.created_at),
    )
    return values


class SQLQuotaStore(QuotaStore):
    """
    SQLAlchemy-backed quota store.

    Blocking database calls run in a worker thread. Counter deltas are
    single UPDATE statements (col = col + 1), so concurrent increments
    for the same user are serialized by the database. Writes check the
    caller's store_deadline before committing and roll back once it has
    passed.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.database_url = database_url or settings.database_url

        # Ensure data directory exists
        if self.database_url.startswith("sqlite:///"):
            db_path = Path(self.database_url.replace("sqlite:///", ""))
            db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.engine = create_engine(self.database_url)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize quota store: {e}")
            raise StoreUnavailableError(
                f"Quota store unreachable: {e}",
                operation="connect",
                cause=e,
            ) from e
        self.Session = sessionmaker(bind=self.engine)

        logger.info(f"Initialized SQL quota store: {self.engine.url.render_as_string(hide_password=True)}")

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as e:
            logger.error(f"Quota store {operation} failed: {e}")
            raise StoreUnavailableError(
                f"Quota store {operation} failed",
                operation=operation,
                cause=e,
            ) from e

    # ---- sync implementations ----

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _load_sync(self, user_id: str) -> Optional[UsageRecord]:
        session = self.Session()
        try:
            row = session.get(UsageRow, user_id)
            return _row_to_record(row) if row else None
        finally:
            session.close()

    def _save_sync(self, user_id: str, record: UsageRecord) -> None:
        session = self.Session()
        try:
            row = session.get(UsageRow, user_id)
            values = _record_values(record)
            if row:
                for key, value in values.items():
                    setattr(row, key, value)
            else:
                session.add(UsageRow(user_id=user_id, **values))
            check_deadline("save")
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _create_if_absent_sync(self, user_id: str, record: UsageRecord) -> UsageRecord:
        session = self.Session()
        try:
            session.add(UsageRow(user_id=user_id, **_record_values(record)))
            check_deadline("create_if_absent")
            session.commit()
            logger.debug(f"Created usage record for {user_id}")
        except IntegrityError:
            # Another writer created it first; keep theirs.
            session.rollback()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        stored = self._load_sync(user_id)
        return stored if stored is not None else record

    def _execute_sync(self, statement):
        session = self.Session()
        try:
            result = session.execute(statement)
            check_deadline("commit")
            session.commit()
            return result.rowcount
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _conditional_increment_sync(
        self,
        user_id: str,
        feature: Feature,
        ceiling: int,
    ) -> Optional[int]:
        col = _column(feature)
        session = self.Session()
        try:
            result = session.execute(
                update(UsageRow)
                .where(UsageRow.user_id == user_id, col + 1 <= ceiling)
                .values({col: col + 1})
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            count = session.execute(
                select(col).where(UsageRow.user_id == user_id)
            ).scalar_one()
            check_deadline("conditional_increment")
            session.commit()
            return count
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ---- async contract ----

    async def load(self, user_id: str) -> Optional[UsageRecord]:
        return await self._run("load", self._load_sync, user_id)

    async def save(self, user_id: str, record: UsageRecord) -> None:
        await self._run("save", self._save_sync, user_id, record)

    async def create_if_absent(self, user_id: str, record: UsageRecord) -> UsageRecord:
        return await self._run("create_if_absent", self._create_if_absent_sync, user_id, record)

    async def atomic_increment(self, user_id: str, feature: Feature) -> None:
        col = _column(feature)
        statement = (
            update(UsageRow)
            .where(UsageRow.user_id == user_id)
            .values({col: col + 1})
        )
        await self._run("atomic_increment", self._execute_sync, statement)

    async def atomic_decrement(self, user_id: str, feature: Feature) -> None:
        col = _column(feature)
        statement = (
            update(UsageRow)
            .where(UsageRow.user_id == user_id)
            .values({col: case((col > 0, col - 1), else_=0)})
        )
        await self._run("atomic_decrement", self._execute_sync, statement)

    async def set_tier(self, user_id: str, is_pro: bool) -> None:
        statement = (
            update(UsageRow)
            .where(UsageRow.user_id == user_id)
            .values(is_pro=is_pro, plan=None)
        )
        await self._run("set_tier", self._execute_sync, statement)

    async def reset_window(
        self,
        user_id: str,
        window_start: datetime,
        keep: Iterable[Feature] = (),
    ) -> None:
        keep = set(keep)
        values = {
            FEATURE_COLUMNS[f]: 0 for f in Feature if f not in keep
        }
        values["usage_reset_at"] = _to_db(window_start)
        statement = (
            update(UsageRow)
            .where(
                UsageRow.user_id == user_id,
                UsageRow.usage_reset_at < _to_db(window_start),
            )
            .values(**values)
        )
        await self._run("reset_window", self._execute_sync, statement)

    async def conditional_increment(
        self,
        user_id: str,
        feature: Feature,
        ceiling: int,
    ) -> Optional[int]:
        return await self._run(
            "conditional_increment",
            self._conditional_increment_sync,
            user_id,
            feature,
            ceiling,
        )

    def close(self) -> None:
        self.engine.dispose()


# ==============================================
# Unconfigured store
# ==============================================

class UnconfiguredQuotaStore(QuotaStore):
    """Stand-in used when no database is configured. Every call fails."""

    def _fail(self, operation: str):
        raise StoreUnavailableError("Quota store not configured", operation=operation)

    async def load(self, user_id: str) -> Optional[UsageRecord]:
        self._fail("load")

    async def save(self, user_id: str, record: UsageRecord) -> None:
        self._fail("save")

    async def create_if_absent(self, user_id: str, record: UsageRecord) -> UsageRecord:
        self._fail("create_if_absent")

    async def atomic_increment(self, user_id: str, feature: Feature) -> None:
        self._fail("atomic_increment")

    async def atomic_decrement(self, user_id: str, feature: Feature) -> None:
        self._fail("atomic_decrement")

    async def set_tier(self, user_id: str, is_pro: bool) -> None:
        self._fail("set_tier")

    async def reset_window(
        self,
        user_id: str,
        window_start: datetime,
        keep: Iterable[Feature] = (),
    ) -> None:
        self._fail("reset_window")

    async def conditional_increment(
        self,
        user_id: str,
        feature: Feature,
        ceiling: int,
    ) -> Optional[int]:
        self._fail("conditional_increment")


def create_quota_store(settings: Optional[Settings] = None) -> QuotaStore:
    """
    Create quota store based on settings.

    Returns the in-memory store for quota_store=memory, the SQL store when a
    database URL is configured, and the unconfigured stand-in otherwise.
    """
    settings = settings or get_settings()

    if settings.quota_store == "memory":
        logger.warning("Using in-memory quota store; usage will not survive restarts")
        return InMemoryQuotaStore()

    if not settings.database_url:
        logger.error("No database_url configured for quota store")
        return UnconfiguredQuotaStore()

    return SQLQuotaStore(settings=settings)
