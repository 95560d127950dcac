"""Tests for adding data sources through the lifecycle manager."""

import asyncio

from duckattach.exceptions import (
    CredentialsRequiredError,
    EngineError,
    MaxRetriesExceededError,
    ValidationError,
    VerificationTimeoutError,
)
from duckattach.models import (
    ConnectionState,
    MySQLConfig,
    PostgresConfig,
    UrlRemoteConfig,
)
from duckattach.vault.base import SecretPayload

CREDENTIALS = {"user": "analyst", "password": "s3cret"}


def sales_config(**changes):
    params = {"host": "db.example.com", "database": "sales"}
    params.update(changes)
    return PostgresConfig(**params)


class TestAddSuccess:
    """Test the happy path."""

    def test_add_postgres(self, manager, scripted_pool, vault, registry):
        """Secret, attach and verification lead to a connected record."""
        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert result.success
        assert result.message == "Connected to 'sales'"
        record = result.record
        assert record.connection_state is ConnectionState.CONNECTED
        assert record.attached_at is not None
        assert record.connection_error is None
        assert registry.get(record.id) == record

        assert "sales" in scripted_pool.databases
        assert scripted_pool.secrets == {record.engine_secret_name}
        [attach] = scripted_pool.statements_starting("ATTACH")
        assert attach.endswith(
            f"AS sales (TYPE POSTGRES, SECRET {record.engine_secret_name}, READ_ONLY)"
        )

    def test_credentials_go_to_the_vault(self, manager, vault):
        """Inline credentials are stored and referenced, never kept on the record."""
        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        ref = result.record.credentials_ref
        assert ref.startswith("sec_")
        assert result.record.config.secret_id == ref
        stored = asyncio.run(vault.get(ref))
        assert stored.data == CREDENTIALS
        assert stored.label == "PostgreSQL: db.example.com/sales"
        assert "s3cret" not in str(result.record.to_dict())

    def test_metadata_is_refreshed(self, manager, scripted_pool):
        """Connected sources get their columns cached."""
        scripted_pool.columns = [("sales", "public", "orders", "id", "INTEGER")]

        asyncio.run(manager.add(sales_config(), CREDENTIALS))

        cached = manager.metadata_cache.get("sales")
        assert cached.table("public", "orders") is not None

    def test_public_remote_file_needs_no_secret(self, manager, scripted_pool):
        """Public https files attach without credentials."""
        config = UrlRemoteConfig(
            database_name="taxi", url="https://data.example.com/taxi.duckdb"
        )
        result = asyncio.run(manager.add(config))

        assert result.success
        assert scripted_pool.secrets == set()
        assert result.record.credentials_ref is None

    def test_re_adding_reuses_the_record(self, manager, registry, scripted_pool):
        """Adding an equivalent source again confirms the existing record."""
        first = asyncio.run(manager.add(sales_config(), CREDENTIALS))
        second = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert second.success
        assert second.message == "'sales' is already connected"
        assert second.record.id == first.record.id
        assert len(registry) == 1
        assert len(scripted_pool.statements_starting("ATTACH")) == 2

    def test_shared_vault_secret(self, manager, vault):
        """A config may reference a stored secret instead of inline credentials."""
        asyncio.run(vault.put("sec_shared", SecretPayload("shared", CREDENTIALS)))
        result = asyncio.run(manager.add(sales_config(secret_id="sec_shared")))

        assert result.success
        assert result.record.credentials_ref == "sec_shared"


class TestAddRetries:
    """Test transient failures during attach."""

    def test_transient_errors_are_retried(self, manager, scripted_pool, fake_sleep):
        """Timeouts are retried with exponential backoff."""
        scripted_pool.fail_on(
            "ATTACH", EngineError("IO Error: Connection timed out"), times=2
        )

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert result.success
        assert fake_sleep.delays == [2.0, 4.0]
        assert len(scripted_pool.statements_starting("ATTACH")) == 3

    def test_duplicate_on_retry_counts_as_attached(
        self, manager, scripted_pool, fake_sleep
    ):
        """An attach that landed before timing out is not attached twice."""
        scripted_pool.fail_on(
            "ATTACH",
            EngineError("IO Error: Connection timed out"),
            times=1,
            after_effect=True,
        )

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert result.success
        assert fake_sleep.delays == [2.0]
        assert result.record.connection_state is ConnectionState.CONNECTED

    def test_exhausted_retries_roll_back(self, manager, scripted_pool, vault):
        """After the last attempt the record is in error and nothing is left over."""
        scripted_pool.fail_on("ATTACH", EngineError("IO Error: Connection timed out"))

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert not result.success
        assert isinstance(result.error, MaxRetriesExceededError)
        assert "3 attempt(s) failed" in result.message
        record = result.record
        assert record.connection_state is ConnectionState.ERROR
        assert record.connection_error == result.message
        assert record.credentials_ref is None
        assert scripted_pool.secrets == set()
        assert asyncio.run(vault.list()) == []

    def test_auth_failure_requires_credentials(self, manager, scripted_pool, vault):
        """Rejected credentials move the record to credentials-required."""
        scripted_pool.fail_on("ATTACH", EngineError("IO Error: HTTP 401 Unauthorized"))

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert not result.success
        assert result.record.connection_state is ConnectionState.CREDENTIALS_REQUIRED
        assert result.record.connection_error is None
        assert len(scripted_pool.statements_starting("ATTACH")) == 1
        assert asyncio.run(vault.list()) == []

    def test_verification_timeout_detaches(self, manager, scripted_pool, fake_sleep):
        """A source that never shows up in the catalog is detached again."""
        scripted_pool.invisible = {"sales"}

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert not result.success
        assert isinstance(result.error, VerificationTimeoutError)
        assert fake_sleep.delays == [0.5, 0.5]
        assert result.record.connection_state is ConnectionState.ERROR
        assert "sales" not in scripted_pool.databases
        assert scripted_pool.statements_starting("DETACH DATABASE IF EXISTS sales")


class TestAddRejections:
    """Test requests rejected before anything is attached."""

    def test_invalid_config(self, manager, scripted_pool, registry):
        result = asyncio.run(manager.add(sales_config(host=" "), CREDENTIALS))

        assert not result.success
        assert isinstance(result.error, ValidationError)
        assert result.record is None
        assert scripted_pool.statements == []
        assert len(registry) == 0

    def test_name_held_by_another_source(self, manager):
        """A name cannot be reused for a different configuration."""
        asyncio.run(manager.add(sales_config(), CREDENTIALS))
        result = asyncio.run(
            manager.add(sales_config(host="replica.example.com"), CREDENTIALS)
        )

        assert not result.success
        assert "already exists" in result.message

    def test_name_in_use_in_catalog(self, manager, scripted_pool):
        """Names taken by something not managed here are rejected."""
        scripted_pool.databases.add("Sales")

        result = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        assert not result.success
        assert "already in use in the catalog" in result.message

    def test_reserved_name(self, manager):
        result = asyncio.run(manager.add(sales_config(database="memory"), CREDENTIALS))
        assert "is a reserved name" in result.message

    def test_missing_credentials(self, manager, registry):
        result = asyncio.run(manager.add(sales_config()))

        assert isinstance(result.error, CredentialsRequiredError)
        assert result.message == "Missing credentials: user, password"
        assert len(registry) == 0

    def test_missing_vault_secret(self, manager):
        result = asyncio.run(manager.add(sales_config(secret_id="sec_gone")))
        assert "Stored credentials are missing" in result.message

    def test_concurrent_add_is_rejected(self, manager, registry):
        """A second add for the same source while one runs returns None."""

        async def scenario():
            return await asyncio.gather(
                manager.add(sales_config(), CREDENTIALS),
                manager.add(sales_config(), CREDENTIALS),
            )

        first, second = asyncio.run(scenario())

        assert first.success
        assert second is None
        assert len(registry) == 1

    def test_concurrent_add_of_another_kind_is_rejected(
        self, manager, registry, scripted_pool
    ):
        """Two kinds racing for one catalog name never both get connected."""
        mysql = MySQLConfig(host="mysql.example.com", database="Sales")

        async def scenario():
            return await asyncio.gather(
                manager.add(sales_config(), CREDENTIALS),
                manager.add(mysql, CREDENTIALS),
            )

        first, second = asyncio.run(scenario())

        assert first.success
        assert second is None
        assert [r.kind for r in registry.list()] == [first.record.kind]
        assert len(scripted_pool.statements_starting("ATTACH")) == 1

    def test_reconnect_while_adding_the_same_name(self, manager, registry):
        """A reconnect waits its turn while an add holds the name."""
        added = asyncio.run(manager.add(sales_config(), CREDENTIALS))

        async def scenario():
            return await asyncio.gather(
                manager.add(sales_config(), CREDENTIALS),
                manager.reconnect(added.record.id),
            )

        readd, reconnect = asyncio.run(scenario())

        assert readd.success
        assert reconnect is None
        assert len(registry) == 1
