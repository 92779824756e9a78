"""
Unit tests for storage layer.

Tests schema creation, usage accumulation and budget configuration.
"""

import os
import sqlite3
import tempfile
import threading
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

import usage_meter.storage.repository as repository_module
from usage_meter.core.errors import StorageUnavailableError, TenantNotFoundError
from usage_meter.storage.db import get_connection
from usage_meter.storage.models import ProviderBudget, UsageEvent
from usage_meter.storage.repository import (
    UsageRepository,
    get_repository,
    initialize_schema,
)


def make_event(tenant_id=1, provider_id="openai", day=date(2024, 1, 1),
               prompt=100, completion=50, requests=1, cost="0.75"):
    return UsageEvent(
        tenant_id=tenant_id,
        provider_id=provider_id,
        date=day,
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        request_count=requests,
        estimated_cost=Decimal(cost)
    )


@pytest.fixture
def repository():
    """Repository backed by a fresh temporary database."""
    with tempfile.TemporaryDirectory() as temp_dir:
        repo = UsageRepository(os.path.join(temp_dir, "test.db"))
        repo.initialize_schema()
        yield repo


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name IN ('usage_tenant', 'usage_event', 'tenant_provider')
                    ORDER BY name
                """)
                tables = [row[0] for row in cursor.fetchall()]
                assert tables == ["tenant_provider", "usage_event", "usage_tenant"]

                cursor = conn.execute("PRAGMA table_info(usage_event)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'tenant_id', 'provider_id', 'date',
                    'prompt_tokens', 'completion_tokens', 'total_tokens',
                    'request_count', 'estimated_cost', 'created_at', 'updated_at'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        """Running initialization twice keeps existing data."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "test.db"))
            repo.initialize_schema()
            repo.record_usage(make_event())
            repo.initialize_schema()

            assert len(repo.fetch_usage_rows(1)) == 1


class TestUsageEventModel:
    """Test validation of usage events."""

    def test_total_tokens_must_match(self):
        with pytest.raises(ValueError, match="total_tokens"):
            UsageEvent(
                tenant_id=1, provider_id="openai", date=date(2024, 1, 1),
                prompt_tokens=10, completion_tokens=5, total_tokens=20,
                request_count=1, estimated_cost=Decimal("0.1")
            )

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError, match="request_count cannot be negative"):
            make_event(requests=-1)

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError, match="estimated_cost cannot be negative"):
            make_event(cost="-0.01")

    @pytest.mark.parametrize("cost", ["Infinity", "-Infinity", "NaN"])
    def test_non_finite_cost_rejected(self, cost):
        with pytest.raises(ValueError, match="estimated_cost must be a finite number"):
            make_event(cost=cost)

    def test_float_cost_converted_to_decimal(self):
        event = UsageEvent(
            tenant_id=1, provider_id="openai", date=date(2024, 1, 1),
            prompt_tokens=1, completion_tokens=1, total_tokens=2,
            request_count=1, estimated_cost=0.1
        )
        assert event.estimated_cost == Decimal("0.1")


class TestUsageAccumulation:
    """Test that writes for the same key accumulate."""

    def test_first_write_creates_row(self, repository):
        repository.record_usage(make_event())

        rows = repository.fetch_usage_rows(1)
        assert len(rows) == 1
        event = rows[0].event
        assert event.prompt_tokens == 100
        assert event.completion_tokens == 50
        assert event.total_tokens == 150
        assert event.request_count == 1
        assert event.estimated_cost == Decimal("0.75")

    def test_repeated_writes_accumulate(self, repository):
        repository.record_usage(make_event(cost="0.1"))
        repository.record_usage(make_event(prompt=10, completion=5, requests=2, cost="0.2"))

        rows = repository.fetch_usage_rows(1)
        assert len(rows) == 1
        event = rows[0].event
        assert event.prompt_tokens == 110
        assert event.completion_tokens == 55
        assert event.total_tokens == 165
        assert event.request_count == 3
        # Exact decimal arithmetic, no float drift
        assert event.estimated_cost == Decimal("0.3")

    def test_different_days_are_separate_rows(self, repository):
        repository.record_usage(make_event(day=date(2024, 1, 1)))
        repository.record_usage(make_event(day=date(2024, 1, 2)))

        rows = repository.fetch_usage_rows(1)
        assert [r.event.date for r in rows] == [date(2024, 1, 2), date(2024, 1, 1)]

    def test_batch_is_atomic(self, repository):
        """A failing batch leaves no partial writes behind."""
        repository.record_usage(make_event(cost="1"))
        real_accumulate = repository_module._accumulate
        applied = []

        def fail_on_second(conn, event):
            if applied:
                raise sqlite3.OperationalError("disk I/O error")
            applied.append(event)
            real_accumulate(conn, event)

        with patch.object(repository_module, "_accumulate", side_effect=fail_on_second):
            with pytest.raises(StorageUnavailableError):
                repository.record_usage_events([make_event(), make_event()])

        rows = repository.fetch_usage_rows(1)
        assert rows[0].event.request_count == 1
        assert rows[0].event.estimated_cost == Decimal("1")

    def test_empty_batch_is_noop(self, repository):
        repository.record_usage_events([])
        assert not repository.tenant_exists(1)

    def test_concurrent_writes_to_same_key(self, repository):
        """Concurrent writers never lose an increment."""
        workers = 8
        writes_per_worker = 10
        errors = []

        def write():
            try:
                for _ in range(writes_per_worker):
                    repository.record_usage(make_event(prompt=3, completion=2, cost="0.01"))
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=write) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        event = repository.fetch_usage_rows(1)[0].event
        total_writes = workers * writes_per_worker
        assert event.request_count == total_writes
        assert event.total_tokens == 5 * total_writes
        assert event.estimated_cost == Decimal("0.01") * total_writes


class TestUsageRetrieval:
    """Test reading usage rows."""

    def test_unknown_tenant_raises(self, repository):
        with pytest.raises(TenantNotFoundError) as excinfo:
            repository.fetch_usage_rows(42)
        assert excinfo.value.tenant_id == 42

    def test_registered_tenant_without_usage_is_empty(self, repository):
        repository.register_tenant(7)

        assert repository.tenant_exists(7)
        assert repository.fetch_usage_rows(7) == []

    def test_bounds_are_inclusive(self, repository):
        for day in (1, 2, 3, 4):
            repository.record_usage(make_event(day=date(2024, 1, day)))

        rows = repository.fetch_usage_rows(1, date(2024, 1, 2), date(2024, 1, 3))
        assert [r.event.date for r in rows] == [date(2024, 1, 3), date(2024, 1, 2)]

    def test_tenants_are_isolated(self, repository):
        repository.record_usage(make_event(tenant_id=1))
        repository.record_usage(make_event(tenant_id=2, provider_id="anthropic"))

        rows = repository.fetch_usage_rows(2)
        assert len(rows) == 1
        assert rows[0].event.provider_id == "anthropic"

    def test_rows_ordered_by_date_then_provider(self, repository):
        repository.record_usage(make_event(provider_id="openai", day=date(2024, 1, 1)))
        repository.record_usage(make_event(provider_id="anthropic", day=date(2024, 1, 1)))
        repository.record_usage(make_event(provider_id="gemini", day=date(2024, 1, 2)))

        rows = repository.fetch_usage_rows(1)
        assert [(r.event.date.day, r.event.provider_id) for r in rows] == [
            (2, "gemini"), (1, "anthropic"), (1, "openai")
        ]

    def test_provider_name_from_configuration(self, repository):
        repository.record_usage(make_event())
        repository.set_provider_budget(ProviderBudget(1, "openai", display_name="ChatGPT"))

        rows = repository.fetch_usage_rows(1)
        assert rows[0].provider_name == "ChatGPT"

    def test_provider_name_defaults_to_id(self, repository):
        repository.record_usage(make_event())
        assert repository.fetch_usage_rows(1)[0].provider_name == "openai"

    def test_unreadable_database_raises_storage_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "missing", "test.db"))
            with pytest.raises(StorageUnavailableError):
                repo.fetch_usage_rows(1)

    def test_missing_schema_raises_storage_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "test.db"))
            with pytest.raises(StorageUnavailableError):
                repo.fetch_usage_rows(1)


class TestProviderBudgets:
    """Test budget configuration storage."""

    def test_set_and_get_budget(self, repository):
        repository.set_provider_budget(ProviderBudget(1, "openai", Decimal("100"), 75))

        budgets = repository.get_provider_budgets(1)
        assert budgets == [ProviderBudget(1, "openai", Decimal("100"), 75)]

    def test_update_replaces_limit_and_keeps_name(self, repository):
        repository.set_provider_budget(ProviderBudget(1, "openai", Decimal("100"), display_name="GPT"))
        repository.set_provider_budget(ProviderBudget(1, "openai", None, 90))

        budget = repository.get_provider_budgets(1)[0]
        assert budget.budget_limit is None
        assert budget.warning_threshold_percent == 90
        assert budget.display_name == "GPT"

    def test_limited_only_skips_unlimited(self, repository):
        repository.set_provider_budget(ProviderBudget(1, "openai", Decimal("10")))
        repository.set_provider_budget(ProviderBudget(1, "anthropic", None))

        budgets = repository.get_provider_budgets(1, limited_only=True)
        assert [b.provider_id for b in budgets] == ["openai"]

    def test_budgets_ordered_by_provider(self, repository):
        for provider in ("openai", "anthropic", "gemini"):
            repository.set_provider_budget(ProviderBudget(1, provider, Decimal("1")))

        assert [b.provider_id for b in repository.get_provider_budgets(1)] == [
            "anthropic", "gemini", "openai"
        ]

    def test_unknown_tenant_has_no_budgets(self, repository):
        assert repository.get_provider_budgets(99) == []

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError, match="between 1 and 100"):
            ProviderBudget(1, "openai", Decimal("10"), 0)

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError, match="budget_limit cannot be negative"):
            ProviderBudget(1, "openai", Decimal("-1"))

    @pytest.mark.parametrize("limit", ["Infinity", "NaN"])
    def test_non_finite_limit_rejected(self, limit):
        with pytest.raises(ValueError, match="budget_limit must be a finite number"):
            ProviderBudget(1, "openai", Decimal(limit))


class TestRepositoryAccess:
    """Test the shared repository accessor."""

    def test_get_repository_reuses_instance(self):
        assert get_repository("a.db") is get_repository("a.db")

    def test_get_repository_switches_path(self):
        assert get_repository("b.db").db_path == "b.db"

    def test_no_delete_operations_exposed(self):
        """The event store exposes no way to remove or rewrite usage."""
        public = [name for name in dir(UsageRepository) if not name.startswith("_")]
        for name in public:
            assert "delete" not in name.lower()
            assert "remove" not in name.lower()
            assert "purge" not in name.lower()
