"""Connection lifecycle manager.

Runs the attach pipeline for every data source kind:

    race guard -> validate -> credentials -> CREATE SECRET -> ATTACH
    -> verify in catalog -> connected -> registry + metadata

Any failure after the first side effect rolls back what was created
(detach, engine secret, private vault secret) and moves the record to
``error`` or ``credentials-required``. The public entry points never raise
taxonomy errors; they return :class:`AttachResult` /
:class:`ConnectionTestResult` with a sanitized message.
"""

import asyncio
import dataclasses
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from duckattach.clients.gsheet import (
    GoogleSheetsClient,
    extract_spreadsheet_id,
    make_view_name,
)
from duckattach.drivers import get_driver
from duckattach.drivers.base import AttachContext, AttachmentDriver, Credentials
from duckattach.drivers.gsheet import ACCESS_MODES
from duckattach.drivers.motherduck import LIST_DATABASES_QUERY
from duckattach.engine.pool import EngineConnectionPool
from duckattach.exceptions import (
    AttachmentError,
    CredentialsRequiredError,
    RegistryError,
    ValidationError,
)
from duckattach.lifecycle.classify import (
    ErrorKind,
    classify_exception,
    is_auth_error,
    sanitize_error_message,
    user_message,
)
from duckattach.lifecycle.cleanup import CleanupCoordinator, PartialAttachState
from duckattach.lifecycle.metadata import (
    CatalogMetadataRefresher,
    MetadataCache,
    MetadataRefresher,
)
from duckattach.lifecycle.profiles import (
    Operation,
    get_retry_policy,
    get_verification_policy,
)
from duckattach.lifecycle.race_guard import RaceGuard
from duckattach.lifecycle.registry import ConnectionRegistryService, catalog_namespace
from duckattach.lifecycle.resilience import RetryExecutor
from duckattach.lifecycle.state_machine import ConnectionStateMachine
from duckattach.lifecycle.verification import VerificationPoller
from duckattach.logging import get_logger
from duckattach.models import (
    AttachResult,
    ConnectionState,
    ConnectionTestResult,
    DataSourceConfig,
    DataSourceKind,
    DataSourceRecord,
    GSheetConfig,
    with_secret_id,
)
from duckattach.utils.sql import SQLIdentifierValidator
from duckattach.vault.base import SecretPayload, SecretVault, make_secret_id

logger = get_logger(__name__)

SheetsClientFactory = Callable[..., GoogleSheetsClient]


@dataclass
class GSheetWorkbookParams:
    """Request to add every sheet (or a subset) of one workbook."""

    sheet_ref: str
    connection_name: str = ""
    access_mode: str = "public"
    access_token: Optional[str] = None
    sheet_names: Optional[List[str]] = None


class ConnectionLifecycleManager:
    """Attaches, verifies, tests, reconnects and detaches data sources."""

    def __init__(
        self,
        pool: EngineConnectionPool,
        vault: SecretVault,
        registry: Optional[ConnectionRegistryService] = None,
        metadata_refresher: Optional[MetadataRefresher] = None,
        metadata_cache: Optional[MetadataCache] = None,
        drivers: Optional[Dict[DataSourceKind, AttachmentDriver]] = None,
        sheets_client_factory: Optional[SheetsClientFactory] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self.vault = vault
        self.registry = registry or ConnectionRegistryService()
        self.executor = RetryExecutor(pool, sleep=sleep)
        self.poller = VerificationPoller(pool, sleep=sleep)
        self.cleanup = CleanupCoordinator(pool, vault)
        self.state_machine = ConnectionStateMachine()
        self.race_guard = RaceGuard()
        self.metadata_refresher = metadata_refresher or CatalogMetadataRefresher(pool)
        self.metadata_cache = metadata_cache or MetadataCache()
        self.sheets_client_factory = sheets_client_factory or GoogleSheetsClient

        self.drivers: Dict[DataSourceKind, AttachmentDriver] = {
            kind: get_driver(kind) for kind in DataSourceKind
        }
        if drivers:
            self.drivers.update(drivers)

    def driver(self, kind: DataSourceKind) -> AttachmentDriver:
        return self.drivers[kind]

    # Public operations

    async def test_connection(
        self, config: DataSourceConfig, credentials: Optional[Credentials] = None
    ) -> Optional[ConnectionTestResult]:
        """Attach under a temporary alias, verify, and undo everything.

        Returns:
            The test result, or None if a test for the same source is
            already running
        """
        slot = f"test:{config.kind.value}:{config.name}"
        if not self.race_guard.try_acquire(slot):
            return None
        try:
            return await self._test_connection(config, credentials)
        finally:
            self.race_guard.release(slot)

    async def add(
        self, config: DataSourceConfig, credentials: Optional[Credentials] = None
    ) -> Optional[AttachResult]:
        """Create a record for ``config`` and attach it.

        Re-adding a name whose record has an equivalent configuration reuses
        that record instead of creating a second one.

        Returns:
            The attach result, or None if another add or reconnect for the
            same catalog name is already running
        """
        slot = self._name_slot(self.driver(config.kind), config.name)
        if not self.race_guard.try_acquire(slot):
            return None
        try:
            return await self._add(config, credentials)
        finally:
            self.race_guard.release(slot)

    async def reconnect(
        self, record_id: str, credentials: Optional[Credentials] = None
    ) -> Optional[AttachResult]:
        """Re-run the attach pipeline for an existing record.

        Connected records are disconnected first. New inline ``credentials``
        replace the record's stored secret once the attach succeeds.
        Returns None while another operation holds the record's name.
        """
        record = self.registry.get(record_id)
        if record is None:
            error = RegistryError(f"Unknown data source id '{record_id}'")
            return AttachResult(False, user_message(error), error=error)

        slot = self._name_slot(self.driver(record.kind), record.config.name)
        if not self.race_guard.try_acquire(slot):
            return None
        try:
            return await self._reconnect_record(
                record, credentials, Operation.RECONNECT
            )
        finally:
            self.race_guard.release(slot)

    async def reconnect_all(self) -> List[AttachResult]:
        """Reconnect every disconnected record, one at a time."""
        results = []
        for record in self.registry.list():
            if record.connection_state is not ConnectionState.DISCONNECTED:
                continue
            result = await self.reconnect(record.id)
            if result is not None:
                results.append(result)
        return results

    async def disconnect(self, record_id: str) -> DataSourceRecord:
        """Detach a source and drop its engine secret.

        The record always ends up ``disconnected`` when it was connected,
        even if the detach statement failed.

        Raises:
            RegistryError: If ``record_id`` is unknown
        """
        record = self.registry.require(record_id)
        await self._detach_from_engine(record)

        if record.connection_state is ConnectionState.CONNECTED:
            record = self.state_machine.mark_disconnected(record)
        record = dataclasses.replace(record, engine_secret_name=None)
        await self.registry.upsert(record)
        self.metadata_cache.drop(record.config.name)
        return record

    async def remove(self, record_id: str) -> DataSourceRecord:
        """Detach a source and delete its record and private vault secret.

        Raises:
            RegistryError: If ``record_id`` is unknown
        """
        record = self.registry.require(record_id)
        await self._detach_from_engine(record)
        await self.registry.remove(record.id)
        if record.credentials_ref:
            await self._delete_vault_secret_if_unused(record.credentials_ref)
        self.metadata_cache.drop(record.config.name)
        logger.info("Removed data source '%s' (%s)", record.display_name, record.id)
        return record

    async def restore(self) -> List[DataSourceRecord]:
        """Load the persisted registry after a process start.

        Nothing is attached in a fresh engine, so records persisted as
        ``connecting`` or ``connected`` are marked ``disconnected``.
        """
        loaded = await self.registry.start()
        recovered = [self.state_machine.recover(record) for record in loaded]
        changed = [
            new for new, old in zip(recovered, loaded) if new is not old
        ]
        await self.registry.upsert_many(changed)
        if changed:
            logger.info("Marked %d data source(s) as disconnected", len(changed))
        return self.registry.list()

    async def add_gsheet_workbook(
        self, params: GSheetWorkbookParams
    ) -> Optional[AttachResult]:
        """Add one view per sheet of a Google Sheets workbook.

        All sheets share one vault secret and one engine secret. Either every
        sheet is attached or nothing is left behind.
        """
        slot = f"add:{DataSourceKind.GSHEET.value}:{params.sheet_ref}"
        if not self.race_guard.try_acquire(slot):
            return None
        view_slots: List[str] = []
        try:
            return await self._add_gsheet_workbook(params, view_slots)
        finally:
            for view_slot in view_slots:
                self.race_guard.release(view_slot)
            self.race_guard.release(slot)

    async def list_motherduck_databases(self) -> List[str]:
        rows = await self.pool.query(LIST_DATABASES_QUERY)
        return [row[0] for row in rows]

    def list_records(
        self, kind: Optional[DataSourceKind] = None
    ) -> List[DataSourceRecord]:
        return self.registry.list(kind)

    def get_record(self, record_id: str) -> Optional[DataSourceRecord]:
        return self.registry.get(record_id)

    async def close(self) -> None:
        await self.registry.close()

    # Pipelines

    async def _test_connection(
        self, config: DataSourceConfig, credentials: Optional[Credentials]
    ) -> ConnectionTestResult:
        driver = self.driver(config.kind)
        try:
            driver.validate(config)
            creds = await self._resolve_test_credentials(driver, config, credentials)
        except AttachmentError as e:
            return ConnectionTestResult(False, user_message(e), error=e)

        policy = get_retry_policy(config.kind, Operation.TEST)
        verification = get_verification_policy(config.kind, Operation.TEST)
        alias = driver.test_alias(config)
        partial = PartialAttachState()
        context = AttachContext(
            config=config,
            name=alias,
            pool=self.pool,
            executor=self.executor,
            policy=policy,
            credentials=creds,
            for_test=True,
        )

        try:
            # A name that is already attached must stay attached after the test
            detach = not (
                alias == config.name and await self._catalog_has(driver, alias)
            )
            await driver.prepare(context)

            secret_name = None
            if driver.needs_secret(config, creds):
                secret_name = driver.make_secret_name(alias)
                statement = driver.build_secret_statement(config, secret_name, creds)
                if statement is None:
                    secret_name = None
                else:
                    partial.detach_statements = driver.build_test_cleanup_statements(
                        alias, secret_name, detach=False
                    )
                    await self.executor.execute(statement, policy, config.name)
            context.secret_name = secret_name

            # From here on cleanup also covers the alias, even if ATTACH fails
            partial.detach_statements = driver.build_test_cleanup_statements(
                alias, secret_name, detach=detach
            )
            await self._run_attach(driver, context)
            await driver.after_attach(context)
            await self.poller.verify_with_policy(
                driver.build_verification_query(alias),
                verification,
                name=alias,
                source_name=config.name,
            )
        except Exception as e:
            logger.info(
                "Connection test for '%s' failed: %s",
                config.name,
                sanitize_error_message(str(e)),
            )
            return ConnectionTestResult(False, user_message(e), error=e)
        finally:
            await self.cleanup.rollback(partial)

        logger.info("Connection test for '%s' succeeded", config.name)
        return ConnectionTestResult(True, f"Connected to '{config.name}'")

    async def _add(
        self, config: DataSourceConfig, credentials: Optional[Credentials]
    ) -> AttachResult:
        driver = self.driver(config.kind)
        try:
            driver.validate(config)
            if credentials:
                driver.check_credentials(config, credentials)
            existing = await self._check_name(driver, config)
        except Exception as e:
            return self._early_failure(config, e)

        if existing is not None:
            logger.info(
                "'%s' matches existing data source %s; reusing it",
                config.name,
                existing.id,
            )
            if existing.connection_state is ConnectionState.CONNECTED:
                return await self._confirm_connected(existing)
            return await self._reconnect_record(existing, credentials, Operation.ADD)

        new_ref = None
        try:
            if credentials:
                new_ref = await self._store_credentials(driver, config, credentials)
                config = with_secret_id(config, new_ref)
                creds = dict(credentials)
            else:
                creds = await self._load_credentials(driver, config, config.secret_id)
        except Exception as e:
            if new_ref:
                await self.cleanup.rollback(PartialAttachState(vault_ref=new_ref))
            return self._early_failure(config, e)

        record = DataSourceRecord.new(config, credentials_ref=config.secret_id)
        await self.registry.upsert(record)
        return await self._connect(
            record, driver, creds, Operation.ADD, new_vault_ref=new_ref
        )

    async def _reconnect_record(
        self,
        record: DataSourceRecord,
        credentials: Optional[Credentials],
        operation: Operation,
    ) -> AttachResult:
        driver = self.driver(record.kind)
        if record.connection_state is ConnectionState.CONNECTED:
            await self._detach_from_engine(record)
            record = self.state_machine.mark_disconnected(record)
            record = dataclasses.replace(record, engine_secret_name=None)
            self.metadata_cache.drop(record.config.name)

        record = self.state_machine.begin_connect(record)
        await self.registry.upsert(record)
        await self._release_replaced(driver, record)

        previous_ref = record.credentials_ref
        new_ref = None
        try:
            if credentials:
                driver.check_credentials(record.config, credentials)
                new_ref = await self._store_credentials(
                    driver, record.config, credentials
                )
                record = dataclasses.replace(
                    record,
                    config=with_secret_id(record.config, new_ref),
                    credentials_ref=new_ref,
                )
                creds = dict(credentials)
            else:
                creds = await self._load_credentials(
                    driver, record.config, previous_ref
                )
        except Exception as e:
            return await self._fail(
                record, e, PartialAttachState(vault_ref=new_ref), previous_ref
            )

        result = await self._connect(
            record,
            driver,
            creds,
            operation,
            new_vault_ref=new_ref,
            previous_ref=previous_ref,
        )
        if result.success and new_ref and previous_ref and previous_ref != new_ref:
            await self._delete_vault_secret_if_unused(previous_ref)
        return result

    async def _connect(
        self,
        record: DataSourceRecord,
        driver: AttachmentDriver,
        credentials: Credentials,
        operation: Operation,
        new_vault_ref: Optional[str] = None,
        previous_ref: Optional[str] = None,
    ) -> AttachResult:
        """Secret, attach, verify; then ``connected`` or roll back."""
        config = record.config
        name = config.name
        policy = get_retry_policy(record.kind, operation)
        verification = get_verification_policy(record.kind, operation)
        partial = PartialAttachState(vault_ref=new_vault_ref)
        context = AttachContext(
            config=config,
            name=name,
            pool=self.pool,
            executor=self.executor,
            policy=policy,
            credentials=credentials,
        )

        try:
            await driver.prepare(context)

            if driver.needs_secret(config, credentials):
                secret_name = driver.make_secret_name(name)
                statement = driver.build_secret_statement(
                    config, secret_name, credentials
                )
                if statement:
                    partial.secret_name = secret_name
                    await self.executor.execute(statement, policy, name)
                    context.secret_name = secret_name

            await self._run_attach(driver, context)
            partial.detach_statements = [driver.build_detach_statement(name)]
            await driver.after_attach(context)
            await self.poller.verify_with_policy(
                driver.build_verification_query(name),
                verification,
                name=name,
                source_name=record.display_name,
            )
        except Exception as e:
            return await self._fail(record, e, partial, previous_ref)

        record = dataclasses.replace(record, engine_secret_name=context.secret_name)
        record = self.state_machine.mark_connected(record)
        await self.registry.upsert(record)
        await self._refresh_metadata([name])
        return AttachResult(
            True, f"Connected to '{record.display_name}'", record=record
        )

    async def _run_attach(
        self, driver: AttachmentDriver, context: AttachContext
    ) -> None:
        statement = driver.build_attach_statement(
            context.config, context.name, context.secret_name
        )
        try:
            await self.executor.execute(
                statement, context.policy, context.source_name
            )
        except Exception as e:
            if not driver.is_duplicate_attach_error(e):
                raise
            logger.info(
                "'%s' is already attached; treating the attach as done",
                context.name,
            )

    async def _confirm_connected(self, record: DataSourceRecord) -> AttachResult:
        """Re-issue the attach for a connected record and check the catalog.

        If the source has disappeared from the catalog the record moves to
        ``disconnected``, since it can no longer claim to be connected.
        """
        driver = self.driver(record.kind)
        name = record.config.name
        context = AttachContext(
            config=record.config,
            name=name,
            pool=self.pool,
            executor=self.executor,
            policy=get_retry_policy(record.kind, Operation.ADD),
            secret_name=record.engine_secret_name,
        )
        try:
            await self._run_attach(driver, context)
            await self.poller.verify_with_policy(
                driver.build_verification_query(name),
                get_verification_policy(record.kind, Operation.ADD),
                name=name,
                source_name=record.display_name,
            )
        except Exception as e:
            logger.warning(
                "Connected source '%s' could not be confirmed: %s",
                record.display_name,
                sanitize_error_message(str(e)),
            )
            record = self.state_machine.mark_disconnected(record)
            record = dataclasses.replace(record, engine_secret_name=None)
            await self.registry.upsert(record)
            self.metadata_cache.drop(name)
            return AttachResult(False, user_message(e), record=record, error=e)

        return AttachResult(
            True, f"'{record.display_name}' is already connected", record=record
        )

    async def _fail(
        self,
        record: DataSourceRecord,
        error: Exception,
        partial: PartialAttachState,
        previous_ref: Optional[str] = None,
    ) -> AttachResult:
        """Roll back, move the record to its failure state and report."""
        logger.error(
            "Attaching '%s' failed: %s",
            record.display_name,
            sanitize_error_message(str(error)),
        )
        await self.cleanup.rollback(partial)

        if partial.vault_ref:
            record = dataclasses.replace(
                record,
                config=with_secret_id(record.config, previous_ref),
                credentials_ref=previous_ref,
            )

        message = user_message(error)
        if isinstance(error, CredentialsRequiredError) or is_auth_error(error):
            record = self.state_machine.mark_credentials_required(record)
        else:
            record = self.state_machine.mark_error(record, message)
        await self.registry.upsert(record)
        return AttachResult(False, message, record=record, error=error)

    def _early_failure(
        self, config: DataSourceConfig, error: Exception
    ) -> AttachResult:
        """Failure before a record exists: nothing to roll back or persist."""
        logger.warning(
            "Rejected data source '%s': %s",
            config.name,
            sanitize_error_message(str(error)),
        )
        return AttachResult(False, user_message(error), error=error)

    async def _add_gsheet_workbook(
        self, params: GSheetWorkbookParams, view_slots: List[str]
    ) -> AttachResult:
        driver = self.driver(DataSourceKind.GSHEET)
        spreadsheet_id = extract_spreadsheet_id(params.sheet_ref)
        name = (params.connection_name or "").strip()
        try:
            if spreadsheet_id is None:
                raise ValidationError(
                    "Enter a Google Sheets URL or spreadsheet id",
                    source_name=name or "gsheet",
                    field="sheet_ref",
                )
            name = name or f"gsheet_{spreadsheet_id[:8]}"
            if params.access_mode not in ACCESS_MODES:
                raise ValidationError(
                    f"Invalid access_mode '{params.access_mode}'",
                    source_name=name,
                    field="access_mode",
                )
            authorized = params.access_mode == "authorized"
            if authorized and not params.access_token:
                raise CredentialsRequiredError(
                    "An access token is required for private spreadsheets",
                    source_name=name,
                )
            sheet_names = params.sheet_names or await self._discover_sheets(
                spreadsheet_id, params.access_token if authorized else None, name
            )
            if not sheet_names:
                raise ValidationError("The spreadsheet has no sheets", source_name=name)
        except Exception as e:
            logger.warning(
                "Google Sheet '%s' rejected: %s",
                params.sheet_ref,
                sanitize_error_message(str(e)),
            )
            return AttachResult(False, user_message(e), error=e)

        group_id = uuid.uuid4().hex
        policy = get_retry_policy(DataSourceKind.GSHEET, Operation.ADD)
        verification = get_verification_policy(DataSourceKind.GSHEET, Operation.ADD)
        reserved = {
            record.config.name
            for record in self.registry.list()
            if catalog_namespace(record.kind) == driver.catalog_namespace
        }
        partial = PartialAttachState()
        records: List[DataSourceRecord] = []
        vault_ref = None
        secret_name = None

        try:
            if authorized:
                credentials = {"access_token": params.access_token}
                vault_ref = make_secret_id()
                await self.vault.put(
                    vault_ref,
                    SecretPayload(label=f"Google Sheet: {name}", data=credentials),
                )
                partial.vault_ref = vault_ref

                secret_name = driver.make_secret_name(name)
                probe = GSheetConfig(
                    view_name=name,
                    spreadsheet_id=spreadsheet_id,
                    sheet_name=sheet_names[0],
                    access_mode=params.access_mode,
                )
                partial.secret_name = secret_name
                await self.executor.execute(
                    driver.build_secret_statement(probe, secret_name, credentials),
                    policy,
                    name,
                )

            for sheet_name in sheet_names:
                view_name = await self._claim_view_name(
                    driver, sheet_name, reserved, view_slots
                )

                config = GSheetConfig(
                    view_name=view_name,
                    spreadsheet_id=spreadsheet_id,
                    sheet_name=sheet_name,
                    access_mode=params.access_mode,
                    group_id=group_id,
                    spreadsheet_name=name,
                    secret_id=vault_ref,
                )
                driver.validate(config)
                record = DataSourceRecord.new(
                    config,
                    display_name=f"{name}: {sheet_name}",
                    credentials_ref=vault_ref,
                )

                await self.executor.execute(
                    driver.build_attach_statement(config, view_name, secret_name),
                    policy,
                    name,
                )
                partial.detach_statements.append(
                    driver.build_detach_statement(view_name)
                )
                await self.poller.verify_with_policy(
                    driver.build_verification_query(view_name),
                    verification,
                    name=view_name,
                    source_name=name,
                )
                record = dataclasses.replace(record, engine_secret_name=secret_name)
                records.append(self.state_machine.mark_connected(record))
        except Exception as e:
            logger.error(
                "Adding Google Sheet '%s' failed: %s",
                name,
                sanitize_error_message(str(e)),
            )
            await self.cleanup.rollback(partial)
            return AttachResult(False, user_message(e), error=e)

        await self.registry.upsert_many(records)
        await self._refresh_metadata([record.config.name for record in records])
        logger.info("Added %d sheet(s) from Google Sheet '%s'", len(records), name)
        return AttachResult(
            True,
            f"Added {len(records)} sheet(s) from '{name}'",
            record=records[0],
            records=records,
        )

    async def _claim_view_name(
        self,
        driver: AttachmentDriver,
        sheet_name: str,
        reserved: Set[str],
        view_slots: List[str],
    ) -> str:
        """Pick a free view name for ``sheet_name`` and hold its name slot.

        Names held by a running add or taken in the catalog are skipped.
        """
        while True:
            view_name = make_view_name(sheet_name, reserved)
            reserved.add(view_name)
            slot = self._name_slot(driver, view_name)
            if not self.race_guard.try_acquire(slot):
                continue
            if await self._catalog_has(driver, view_name):
                self.race_guard.release(slot)
                continue
            view_slots.append(slot)
            return view_name

    async def _discover_sheets(
        self, spreadsheet_id: str, access_token: Optional[str], name: str
    ) -> List[str]:
        client = self.sheets_client_factory(access_token=access_token)
        try:
            return await self.executor.run(
                lambda: asyncio.to_thread(client.list_sheet_names, spreadsheet_id),
                get_retry_policy(DataSourceKind.GSHEET, Operation.ADD),
                source_name=name,
            )
        finally:
            client.close()

    # Names and credentials

    @staticmethod
    def _name_slot(driver: AttachmentDriver, name: str) -> str:
        """Race guard slot owning ``name`` in the driver's catalog namespace."""
        key = (name or "").lower()
        return f"name:{driver.catalog_namespace}:{key}"

    async def _check_name(
        self, driver: AttachmentDriver, config: DataSourceConfig
    ) -> Optional[DataSourceRecord]:
        """Enforce name uniqueness before anything is attached.

        Returns:
            An existing record with an equivalent configuration, or None

        Raises:
            ValidationError: If the name is reserved, held by a different
                configuration, or already taken in the engine catalog
        """
        name = config.name
        if SQLIdentifierValidator.is_name_reserved_or_in_use(name, ()):
            raise ValidationError(
                f"'{name}' is a reserved name", source_name=name, field="name"
            )

        matches = self.registry.find_by_name(name, driver.catalog_namespace)
        for record in matches:
            if record.kind is config.kind and driver.is_equivalent(
                record.config, config
            ):
                return record

        for record in matches:
            if record.kind is not config.kind or not driver.replaces_on_conflict(
                record.config, config
            ):
                raise ValidationError(
                    f"A data source named '{name}' already exists "
                    "with a different configuration",
                    source_name=name,
                    field="name",
                )
        await self._release_replaced(driver, config)

        if await self._catalog_has(driver, name):
            raise ValidationError(
                f"'{name}' is already in use in the catalog",
                source_name=name,
                field="name",
            )
        return None

    async def _release_replaced(self, driver: AttachmentDriver, target: Any) -> None:
        """Detach connected records that ``target`` takes the name over from."""
        if isinstance(target, DataSourceRecord):
            config, own_id = target.config, target.id
        else:
            config, own_id = target, None
        for record in self.registry.find_by_name(
            config.name, driver.catalog_namespace
        ):
            if record.id == own_id or record.kind is not config.kind:
                continue
            if record.connection_state is not ConnectionState.CONNECTED:
                continue
            if not driver.replaces_on_conflict(record.config, config):
                continue
            logger.info(
                "Switching '%s' away from data source %s", config.name, record.id
            )
            await self.disconnect(record.id)

    async def _catalog_has(self, driver: AttachmentDriver, name: str) -> bool:
        rows = await self.pool.query(driver.build_catalog_lookup_query(name))
        return bool(rows)

    async def _store_credentials(
        self,
        driver: AttachmentDriver,
        config: DataSourceConfig,
        credentials: Credentials,
    ) -> str:
        secret_id = make_secret_id()
        await self.vault.put(
            secret_id,
            SecretPayload(label=driver.secret_label(config), data=dict(credentials)),
        )
        return secret_id

    async def _load_credentials(
        self,
        driver: AttachmentDriver,
        config: DataSourceConfig,
        secret_id: Optional[str],
    ) -> Credentials:
        """Credentials stored under ``secret_id``.

        Raises:
            CredentialsRequiredError: If the secret is missing, unreadable or
                lacks a required key
        """
        credentials: Credentials = {}
        if secret_id:
            payload = await self.vault.get(secret_id)
            if payload is None:
                raise CredentialsRequiredError(
                    "Stored credentials are missing or unreadable; enter them again",
                    source_name=config.name,
                )
            credentials = dict(payload.data)
        driver.check_credentials(config, credentials)
        return credentials

    async def _resolve_test_credentials(
        self,
        driver: AttachmentDriver,
        config: DataSourceConfig,
        credentials: Optional[Credentials],
    ) -> Credentials:
        if credentials:
            driver.check_credentials(config, credentials)
            return dict(credentials)
        return await self._load_credentials(driver, config, config.secret_id)

    async def _delete_vault_secret_if_unused(self, secret_id: str) -> None:
        if self.registry.find_by_credentials(secret_id):
            logger.debug("Vault secret %s is still referenced; keeping it", secret_id)
            return
        try:
            await self.vault.delete(secret_id)
        except Exception as e:
            logger.error("Failed to delete vault secret %s: %s", secret_id, e)

    # Engine side effects

    async def _detach_from_engine(self, record: DataSourceRecord) -> None:
        """Detach ``record`` and drop its engine secret; failures are logged."""
        driver = self.driver(record.kind)
        name = record.config.name
        try:
            await self.pool.query(driver.build_detach_statement(name, if_exists=False))
            logger.info("Detached '%s'", name)
        except Exception as e:
            if classify_exception(e) is ErrorKind.NOT_FOUND:
                logger.debug("'%s' was not attached", name)
            else:
                logger.warning(
                    "Detaching '%s' failed: %s", name, sanitize_error_message(str(e))
                )

        secret_name = record.engine_secret_name
        if not secret_name:
            return
        shared = [
            other
            for other in self.registry.list()
            if other.id != record.id
            and other.engine_secret_name == secret_name
            and other.connection_state is ConnectionState.CONNECTED
        ]
        if shared:
            logger.debug("Engine secret %s is still in use", secret_name)
            return
        try:
            await self.pool.query(driver.build_drop_secret_statement(secret_name))
        except Exception as e:
            logger.warning(
                "Dropping secret %s failed: %s",
                secret_name,
                sanitize_error_message(str(e)),
            )

    async def _refresh_metadata(self, names: List[str]) -> None:
        try:
            entries = await self.metadata_refresher.refresh(names)
        except Exception as e:
            logger.warning(
                "Metadata refresh for %s failed: %s",
                ", ".join(names),
                sanitize_error_message(str(e)),
            )
            return
        self.metadata_cache.merge(entries)
