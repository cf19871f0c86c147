"""Tests for quota stores."""

import asyncio
import time
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from codewarden.core.errors import StoreUnavailableError
from codewarden.domain.usage import DURABLE_FEATURES, Feature, UsageRecord, zero_usage
from codewarden.metering.ledger import UsageLedger
from codewarden.services.store import (
    FlagTier,
    InMemoryQuotaStore,
    LegacyPlanTier,
    SQLQuotaStore,
    UnconfiguredQuotaStore,
    UsageRow,
    create_quota_store,
    normalize_tier,
    read_stored_tier,
)

USER = "user_abc"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def make_record(**usage) -> UsageRecord:
    counts = zero_usage()
    for name, value in usage.items():
        counts[Feature(name)] = value
    return UsageRecord(
        is_pro=False,
        usage=counts,
        window_start=utc(2024, 1, 1),
        created_at=utc(2024, 1, 5, 12, 0),
    )


@pytest.fixture
def sql_store(tmp_path):
    store = SQLQuotaStore(
        database_url=f"sqlite:///{tmp_path / 'quota.db'}",
        settings=Mock(),
    )
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Run the contract tests against both stores."""
    if request.param == "memory":
        yield InMemoryQuotaStore()
        return
    sql = SQLQuotaStore(database_url=f"sqlite:///{tmp_path / 'contract.db'}", settings=Mock())
    yield sql
    sql.close()


class TestStoredTier:
    """Tests for legacy/current tier normalization."""

    def test_flag_format(self):
        assert read_stored_tier(True, None) == FlagTier(True)
        assert read_stored_tier(False, None) == FlagTier(False)
        assert read_stored_tier(None, None) == FlagTier(False)

    def test_legacy_format(self):
        assert read_stored_tier(None, "pro") == LegacyPlanTier("pro")
        assert normalize_tier(LegacyPlanTier("pro")) is True
        assert normalize_tier(LegacyPlanTier("free")) is False

    def test_legacy_plan_must_match_exactly(self):
        """Only the exact stored value "pro" grants pro."""
        assert normalize_tier(LegacyPlanTier("Pro")) is False
        assert normalize_tier(LegacyPlanTier(" pro")) is False
        assert normalize_tier(LegacyPlanTier("PRO")) is False

    def test_flag_wins_when_true(self):
        """isPro=True is pro regardless of any leftover plan."""
        assert normalize_tier(read_stored_tier(True, "free")) is True

    def test_legacy_pro_with_false_flag(self):
        """A leftover plan='pro' still grants pro."""
        assert normalize_tier(read_stored_tier(False, "pro")) is True

    def test_in_memory_legacy_row(self):
        store = InMemoryQuotaStore()
        store.put_legacy(
            USER,
            plan="pro",
            usage={Feature.PUSH_ANALYSES: 7},
            window_start=utc(2024, 1, 1),
            created_at=utc(2023, 12, 1),
        )

        assert run(store.load(USER)).is_pro is True
        run(store.set_tier(USER, False))
        assert run(store.load(USER)).is_pro is False


class TestStoreContract:
    """Behaviour every quota store must share."""

    def test_load_absent(self, store):
        assert run(store.load(USER)) is None

    def test_save_and_load(self, store):
        run(store.save(USER, make_record(pushAnalyses=2)))

        record = run(store.load(USER))

        assert record.count(Feature.PUSH_ANALYSES) == 2
        assert record.window_start == utc(2024, 1, 1)
        assert record.created_at == utc(2024, 1, 5, 12, 0)
        assert record.is_pro is False

    def test_create_if_absent_keeps_existing(self, store):
        run(store.save(USER, make_record(codePoliceProjects=1)))

        stored = run(store.create_if_absent(USER, make_record()))

        assert stored.count(Feature.PROJECTS) == 1

    def test_create_if_absent_inserts(self, store):
        stored = run(store.create_if_absent(USER, make_record(fixWithPr=1)))

        assert stored.count(Feature.FIX_WITH_PR) == 1
        assert run(store.load(USER)).count(Feature.FIX_WITH_PR) == 1

    def test_increment_and_decrement(self, store):
        run(store.save(USER, make_record()))

        run(store.atomic_increment(USER, Feature.PUSH_ANALYSES))
        run(store.atomic_increment(USER, Feature.PUSH_ANALYSES))
        run(store.atomic_decrement(USER, Feature.PUSH_ANALYSES))

        assert run(store.load(USER)).count(Feature.PUSH_ANALYSES) == 1

    def test_decrement_clamps_at_zero(self, store):
        run(store.save(USER, make_record()))

        run(store.atomic_decrement(USER, Feature.PROJECTS))

        assert run(store.load(USER)).count(Feature.PROJECTS) == 0

    def test_set_tier(self, store):
        run(store.save(USER, make_record()))

        run(store.set_tier(USER, True))
        assert run(store.load(USER)).is_pro is True

        run(store.set_tier(USER, False))
        assert run(store.load(USER)).is_pro is False

    def test_reset_window_keeps_durable(self, store):
        run(store.save(USER, make_record(codePoliceProjects=1, pushAnalyses=2, fixWithPr=1)))

        run(store.reset_window(USER, utc(2024, 2, 1), keep=DURABLE_FEATURES))

        record = run(store.load(USER))
        assert record.count(Feature.PROJECTS) == 1
        assert record.count(Feature.PUSH_ANALYSES) == 0
        assert record.count(Feature.FIX_WITH_PR) == 0
        assert record.window_start == utc(2024, 2, 1)

    def test_reset_window_only_moves_forward(self, store):
        run(store.save(USER, make_record(pushAnalyses=2)))
        run(store.reset_window(USER, utc(2024, 3, 1)))
        run(store.atomic_increment(USER, Feature.PUSH_ANALYSES))

        run(store.reset_window(USER, utc(2024, 2, 1)))
        run(store.reset_window(USER, utc(2024, 3, 1)))

        record = run(store.load(USER))
        assert record.window_start == utc(2024, 3, 1)
        assert record.count(Feature.PUSH_ANALYSES) == 1

    def test_conditional_increment(self, store):
        run(store.save(USER, make_record(fixWithPr=1)))

        assert run(store.conditional_increment(USER, Feature.FIX_WITH_PR, 2)) == 2
        assert run(store.conditional_increment(USER, Feature.FIX_WITH_PR, 2)) is None
        assert run(store.load(USER)).count(Feature.FIX_WITH_PR) == 2

    def test_mutations_on_absent_user_are_noops(self, store):
        run(store.atomic_increment(USER, Feature.PROJECTS))
        run(store.atomic_decrement(USER, Feature.PROJECTS))
        run(store.set_tier(USER, True))

        assert run(store.load(USER)) is None


class TestSQLQuotaStore:
    """SQL-specific behaviour."""

    def test_legacy_plan_row_normalized(self, sql_store):
        session = sql_store.Session()
        session.add(UsageRow(
            user_id=USER,
            is_pro=None,
            plan="pro",
            code_police_projects=1,
            push_analyses=0,
            fix_with_pr=0,
            usage_reset_at=datetime(2024, 1, 1),
            created_at=datetime(2023, 11, 2),
        ))
        session.commit()
        session.close()

        record = run(sql_store.load(USER))

        assert record.is_pro is True
        assert record.window_start == utc(2024, 1, 1)

    def test_set_tier_drops_legacy_plan(self, sql_store):
        session = sql_store.Session()
        session.add(UsageRow(
            user_id=USER,
            plan="pro",
            usage_reset_at=datetime(2024, 1, 1),
            created_at=datetime(2024, 1, 1),
        ))
        session.commit()
        session.close()

        run(sql_store.set_tier(USER, False))

        session = sql_store.Session()
        row = session.get(UsageRow, USER)
        assert row.plan is None
        assert row.is_pro is False
        session.close()
        assert run(sql_store.load(USER)).is_pro is False

    def test_concurrent_increments_are_not_lost(self, sql_store):
        run(sql_store.save(USER, make_record()))

        async def burst():
            await asyncio.gather(
                *(sql_store.atomic_increment(USER, Feature.PUSH_ANALYSES) for _ in range(10))
            )

        run(burst())

        assert run(sql_store.load(USER)).count(Feature.PUSH_ANALYSES) == 10

    def test_ledger_scenario_on_sql(self, sql_store):
        clock = lambda: utc(2024, 1, 20)
        ledger = UsageLedger(sql_store, clock=clock)

        results = [run(ledger.try_increment(USER, Feature.PUSH_ANALYSES)) for _ in range(3)]

        assert [r.success for r in results] == [True, True, False]
        assert run(sql_store.load(USER)).count(Feature.PUSH_ANALYSES) == 2

    def test_write_past_deadline_is_rolled_back(self, sql_store):
        """A write still running when the ledger gives up is never committed."""
        ledger = UsageLedger(sql_store, clock=lambda: utc(2024, 1, 20), timeout=0.1)
        run(ledger.get_or_initialize(USER))
        execute = sql_store._execute_sync

        def slow_execute(statement):
            time.sleep(0.3)
            return execute(statement)

        with patch.object(sql_store, "_execute_sync", side_effect=slow_execute):
            with pytest.raises(StoreUnavailableError):
                run(ledger.try_increment(USER, Feature.PUSH_ANALYSES))

        assert run(sql_store.load(USER)).count(Feature.PUSH_ANALYSES) == 0

    def test_unreachable_database(self, tmp_path):
        """A path that cannot be opened as a database fails at startup."""
        with pytest.raises(StoreUnavailableError):
            SQLQuotaStore(database_url=f"sqlite:///{tmp_path}", settings=Mock())


class TestUnconfiguredStore:
    """Every call to the unconfigured store fails as retryable."""

    def test_all_operations_fail(self):
        store = UnconfiguredQuotaStore()
        calls = [
            store.load(USER),
            store.save(USER, make_record()),
            store.create_if_absent(USER, make_record()),
            store.atomic_increment(USER, Feature.PROJECTS),
            store.atomic_decrement(USER, Feature.PROJECTS),
            store.set_tier(USER, True),
            store.reset_window(USER, utc(2024, 2, 1)),
            store.conditional_increment(USER, Feature.PROJECTS, 1),
        ]
        for call in calls:
            with pytest.raises(StoreUnavailableError):
                run(call)


class TestCreateQuotaStore:
    """Tests for create_quota_store."""

    def test_memory(self):
        settings = Mock(quota_store="memory")
        assert isinstance(create_quota_store(settings), InMemoryQuotaStore)

    def test_unconfigured(self):
        settings = Mock(quota_store="sql", database_url="")
        assert isinstance(create_quota_store(settings), UnconfiguredQuotaStore)

    def test_sql(self, tmp_path):
        settings = Mock(quota_store="sql", database_url=f"sqlite:///{tmp_path / 'db' / 'q.db'}")
        store = create_quota_store(settings)
        assert isinstance(store, SQLQuotaStore)
        assert (tmp_path / "db").is_dir()
        store.close()
