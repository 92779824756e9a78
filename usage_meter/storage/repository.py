"""
Repository pattern for data access.

Handles the usage event store and tenant provider configuration.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from usage_meter.core.errors import StorageUnavailableError, TenantNotFoundError
from .db import DEFAULT_DB_PATH, get_connection
from .models import ProviderBudget, UsageEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRow:
    """A stored usage counter joined with its provider display name."""
    event: UsageEvent
    provider_name: str


_USAGE_ROW_QUERY = """
    SELECT ue.tenant_id, ue.provider_id, ue.date, ue.prompt_tokens,
           ue.completion_tokens, ue.total_tokens, ue.request_count,
           ue.estimated_cost, COALESCE(tp.display_name, ue.provider_id)
    FROM usage_event ue
    LEFT JOIN tenant_provider tp
        ON tp.tenant_id = ue.tenant_id AND tp.provider_id = ue.provider_id
    WHERE ue.tenant_id = ?
"""

_UPSERT_USAGE = """
    INSERT INTO usage_event
    (tenant_id, provider_id, date, prompt_tokens, completion_tokens,
     total_tokens, request_count, estimated_cost)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(tenant_id, provider_id, date) DO UPDATE SET
        prompt_tokens = prompt_tokens + excluded.prompt_tokens,
        completion_tokens = completion_tokens + excluded.completion_tokens,
        total_tokens = total_tokens + excluded.total_tokens,
        request_count = request_count + excluded.request_count,
        estimated_cost = ?,
        updated_at = CURRENT_TIMESTAMP
"""


class UsageRepository:
    """Repository for the per-day usage counters of every tenant.

    Each call opens its own connection, so one instance can be shared by
    concurrent report requests.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the usage tables if they don't exist."""
        initialize_schema(self.db_path)

    def register_tenant(self, tenant_id: int) -> None:
        """Create an empty usage partition for a tenant."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR IGNORE INTO usage_tenant (tenant_id) VALUES (?)",
                (tenant_id,)
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to register tenant {tenant_id}: {e}") from e
        finally:
            conn.close()

    def tenant_exists(self, tenant_id: int) -> bool:
        """Check whether a tenant has a usage partition."""
        conn = get_connection(self.db_path)
        try:
            return _tenant_exists(conn, tenant_id)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to look up tenant {tenant_id}: {e}") from e
        finally:
            conn.close()

    def record_usage(self, event: UsageEvent) -> None:
        """Accumulate one usage event into its (tenant, provider, date) counter.

        The read of the stored cost and the upsert run inside one
        ``BEGIN IMMEDIATE`` transaction, so concurrent writers to the same
        key are serialized and a reader never sees a partial increment.

        Args:
            event: The usage to add

        Raises:
            StorageUnavailableError: If the write fails
        """
        self.record_usage_events([event])

    def record_usage_events(self, events: List[UsageEvent]) -> None:
        """Accumulate several usage events in a single transaction.

        Args:
            events: Usage events to add

        Raises:
            StorageUnavailableError: If the write fails; nothing is applied
        """
        if not events:
            return

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            for event in events:
                _accumulate(conn, event)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailableError(f"Failed to record usage: {e}") from e
        finally:
            conn.close()
        logger.debug("Recorded %d usage event(s)", len(events))

    def fetch_usage_rows(
        self,
        tenant_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[UsageRow]:
        """Fetch a tenant's usage counters, optionally bounded by date.

        Without bounds the query carries no date predicate at all.

        Args:
            tenant_id: Tenant to read
            start: Optional first day to include
            end: Optional last day to include

        Returns:
            Rows ordered by date (newest first), then provider_id

        Raises:
            TenantNotFoundError: If the tenant has no usage partition
            StorageUnavailableError: If the read fails
        """
        conn = get_connection(self.db_path)
        try:
            if not _tenant_exists(conn, tenant_id):
                raise TenantNotFoundError(tenant_id)

            query = _USAGE_ROW_QUERY
            params = [tenant_id]
            conditions = []

            if start is not None:
                conditions.append("ue.date >= ?")
                params.append(start.isoformat())
            if end is not None:
                conditions.append("ue.date <= ?")
                params.append(end.isoformat())

            if conditions:
                query += " AND " + " AND ".join(conditions)

            query += " ORDER BY ue.date DESC, ue.provider_id ASC"

            cursor = conn.execute(query, params)
            rows = []
            for row in cursor.fetchall():
                rows.append(UsageRow(
                    event=UsageEvent(
                        tenant_id=row[0],
                        provider_id=row[1],
                        date=date.fromisoformat(row[2]),
                        prompt_tokens=row[3],
                        completion_tokens=row[4],
                        total_tokens=row[5],
                        request_count=row[6],
                        estimated_cost=Decimal(row[7])
                    ),
                    provider_name=row[8]
                ))
            logger.debug(
                "Fetched %d usage rows for tenant %s (%s..%s)",
                len(rows), tenant_id, start or "*", end or "*"
            )
            return rows
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to read usage for tenant {tenant_id}: {e}") from e
        finally:
            conn.close()

    def set_provider_budget(self, budget: ProviderBudget) -> None:
        """Insert or replace a tenant's budget configuration for a provider.

        A display name of None keeps any name already stored.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "INSERT OR IGNORE INTO usage_tenant (tenant_id) VALUES (?)",
                (budget.tenant_id,)
            )
            conn.execute("""
                INSERT INTO tenant_provider
                (tenant_id, provider_id, display_name, budget_limit, warning_threshold_percent)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, provider_id) DO UPDATE SET
                    display_name = COALESCE(excluded.display_name, tenant_provider.display_name),
                    budget_limit = excluded.budget_limit,
                    warning_threshold_percent = excluded.warning_threshold_percent,
                    updated_at = CURRENT_TIMESTAMP
            """, (
                budget.tenant_id,
                budget.provider_id,
                budget.display_name,
                None if budget.budget_limit is None else str(budget.budget_limit),
                budget.warning_threshold_percent
            ))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailableError(f"Failed to update budget: {e}") from e
        finally:
            conn.close()
        logger.info(
            "Budget for tenant %s provider %s set to %s (warn at %d%%)",
            budget.tenant_id, budget.provider_id,
            budget.budget_limit if budget.budget_limit is not None else "unlimited",
            budget.warning_threshold_percent
        )

    def get_provider_budgets(
        self,
        tenant_id: int,
        limited_only: bool = False
    ) -> List[ProviderBudget]:
        """List a tenant's provider configuration ordered by provider_id.

        Args:
            tenant_id: Tenant to read
            limited_only: Skip providers without a budget limit

        Returns:
            Provider budgets (empty for unknown tenants)
        """
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT tenant_id, provider_id, budget_limit,
                       warning_threshold_percent, display_name
                FROM tenant_provider
                WHERE tenant_id = ?
            """
            if limited_only:
                query += " AND budget_limit IS NOT NULL"
            query += " ORDER BY provider_id ASC"

            cursor = conn.execute(query, (tenant_id,))
            return [
                ProviderBudget(
                    tenant_id=row[0],
                    provider_id=row[1],
                    budget_limit=None if row[2] is None else Decimal(row[2]),
                    warning_threshold_percent=row[3],
                    display_name=row[4]
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Failed to read budgets for tenant {tenant_id}: {e}") from e
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[UsageRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> UsageRepository:
    """Get a repository instance.

    Reuses the cached instance while the path is unchanged.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of UsageRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = UsageRepository(db_path)
    return _default_repository


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage tables if they don't exist.

    usage_tenant holds one row per tenant partition, usage_event one
    counter row per (tenant, provider, day) and tenant_provider the
    budget configuration. Costs are stored as decimal text.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_tenant (
                tenant_id INTEGER PRIMARY KEY,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                provider_id TEXT NOT NULL,
                date TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL DEFAULT 0,
                completion_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                request_count INTEGER NOT NULL DEFAULT 0,
                estimated_cost TEXT NOT NULL DEFAULT '0',
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (tenant_id) REFERENCES usage_tenant(tenant_id) ON DELETE CASCADE,
                UNIQUE (tenant_id, provider_id, date)
            );

            CREATE INDEX IF NOT EXISTS idx_usage_event_tenant_date
                ON usage_event(tenant_id, date);

            CREATE TABLE IF NOT EXISTS tenant_provider (
                tenant_id INTEGER NOT NULL,
                provider_id TEXT NOT NULL,
                display_name TEXT,
                budget_limit TEXT,
                warning_threshold_percent INTEGER NOT NULL DEFAULT 80,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (tenant_id, provider_id),
                FOREIGN KEY (tenant_id) REFERENCES usage_tenant(tenant_id) ON DELETE CASCADE
            );
        """)
        conn.commit()
    except sqlite3.Error as e:
        raise StorageUnavailableError(f"Failed to initialize schema: {e}") from e
    finally:
        conn.close()


def _tenant_exists(conn: sqlite3.Connection, tenant_id: int) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM usage_tenant WHERE tenant_id = ?",
        (tenant_id,)
    )
    return cursor.fetchone() is not None


def _accumulate(conn: sqlite3.Connection, event: UsageEvent) -> None:
    """Add one event to its counter row. Caller holds the write transaction."""
    conn.execute(
        "INSERT OR IGNORE INTO usage_tenant (tenant_id) VALUES (?)",
        (event.tenant_id,)
    )
    cursor = conn.execute("""
        SELECT estimated_cost FROM usage_event
        WHERE tenant_id = ? AND provider_id = ? AND date = ?
    """, (event.tenant_id, event.provider_id, event.date.isoformat()))
    row = cursor.fetchone()
    stored_cost = Decimal(row[0]) if row else Decimal("0")

    conn.execute(_UPSERT_USAGE, (
        event.tenant_id,
        event.provider_id,
        event.date.isoformat(),
        event.prompt_tokens,
        event.completion_tokens,
        event.total_tokens,
        event.request_count,
        str(event.estimated_cost),
        str(stored_cost + event.estimated_cost)
    ))
