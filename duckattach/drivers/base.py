"""Attachment driver contract.

One driver per :class:`DataSourceKind` knows how to turn a validated config
into the engine statements that attach it: an optional ``CREATE SECRET``, the
attach (or view) statement, the statements that undo them, and the catalog
query that confirms the attach. Drivers build statements; the lifecycle
manager runs them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from secrets import token_hex
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple

from duckattach.engine.pool import EngineConnectionPool
from duckattach.exceptions import CredentialsRequiredError, ValidationError
from duckattach.lifecycle.classify import is_duplicate_error
from duckattach.lifecycle.resilience import RetryExecutor, RetryPolicy
from duckattach.models import (
    CONFIG_TYPES,
    DataSourceConfig,
    DataSourceKind,
    config_to_dict,
)
from duckattach.utils.sql import (
    SQLIdentifierValidator,
    make_secret_name,
    quote_identifier,
    quote_literal,
)

Credentials = Dict[str, str]

# Fields that never change what a config connects to
NON_IDENTITY_FIELDS = frozenset({"secret_id"})


@dataclass
class AttachContext:
    """Everything a driver hook needs while one attach pipeline runs."""

    config: Any
    name: str
    pool: EngineConnectionPool
    executor: RetryExecutor
    policy: RetryPolicy
    credentials: Credentials = field(default_factory=dict)
    secret_name: Optional[str] = None
    for_test: bool = False

    @property
    def source_name(self) -> str:
        return self.config.name


def secret_statement(
    secret_name: str, secret_type: str, options: Sequence[Tuple[str, Any]]
) -> str:
    """Build ``CREATE OR REPLACE SECRET``; options with a None value are skipped.

    String values are emitted as literals, ints as numbers, and values
    already rendered (``RawSQL``) as-is.
    """
    parts = [f"TYPE {secret_type}"]
    for key, value in options:
        if value is None or value == "":
            continue
        parts.append(f"{key} {render_value(value)}")
    return (
        f"CREATE OR REPLACE SECRET {quote_identifier(secret_name)} "
        f"({', '.join(parts)})"
    )


class RawSQL(str):
    """A value already rendered as SQL."""


def render_value(value: Any) -> str:
    if isinstance(value, RawSQL):
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return quote_literal(value)


class AttachmentDriver(ABC):
    """Builds engine statements for one data source kind."""

    kind: ClassVar[DataSourceKind]
    secret_prefix: ClassVar[str] = "secret"

    # Name space the source occupies in the engine catalog
    catalog_namespace: ClassVar[str] = "database"

    # Whether a connection test may attach under a temporary alias
    supports_test_alias: ClassVar[bool] = True

    def validate(self, config: DataSourceConfig) -> None:
        """Check a config before any engine or network call.

        Raises:
            ValidationError: On missing or malformed fields
        """
        if not isinstance(config, self.config_type()):
            raise ValidationError(
                f"Expected a {self.kind.value} configuration",
                source_name=getattr(config, "name", "unknown"),
            )
        self._validate(config)
        name = config.name
        if not SQLIdentifierValidator.is_valid_database_name(name):
            raise ValidationError(
                f"Invalid name '{name}': use letters, numbers, underscores or hyphens",
                source_name=name or "unknown",
                field="name",
            )

    @abstractmethod
    def _validate(self, config: Any) -> None:
        """Kind-specific checks."""

    def config_type(self) -> type:
        return CONFIG_TYPES[self.kind]

    def required_credentials(self, config: Any) -> Tuple[str, ...]:
        """Credential keys that must be present to attach ``config``."""
        return ()

    def check_credentials(self, config: Any, credentials: Credentials) -> None:
        """Raise :class:`CredentialsRequiredError` if required keys are missing."""
        missing = [
            key for key in self.required_credentials(config) if not credentials.get(key)
        ]
        if missing:
            raise CredentialsRequiredError(
                f"Missing credentials: {', '.join(missing)}", source_name=config.name
            )

    def needs_secret(self, config: Any, credentials: Credentials) -> bool:
        """Whether an engine secret has to be created before attaching."""
        return bool(self.required_credentials(config))

    def make_secret_name(self, name: str) -> str:
        return make_secret_name(self.secret_prefix, name)

    @abstractmethod
    def build_secret_statement(
        self, config: Any, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        """``CREATE SECRET`` statement for the config, or None if not needed."""

    @abstractmethod
    def build_attach_statement(
        self, config: Any, name: str, secret_name: Optional[str] = None
    ) -> str:
        """Statement attaching ``config`` under ``name``."""

    def build_detach_statement(self, name: str, if_exists: bool = True) -> str:
        clause = "IF EXISTS " if if_exists else ""
        return f"DETACH DATABASE {clause}{quote_identifier(name)}"

    def build_drop_secret_statement(self, secret_name: str) -> str:
        return f"DROP SECRET IF EXISTS {quote_identifier(secret_name)}"

    def build_test_cleanup_statements(
        self, name: str, secret_name: Optional[str] = None, detach: bool = True
    ) -> List[str]:
        """Statements undoing a connection test, in execution order."""
        statements = []
        if detach:
            statements.append(self.build_detach_statement(name))
        if secret_name:
            statements.append(self.build_drop_secret_statement(secret_name))
        return statements

    def build_verification_query(self, name: str) -> str:
        return (
            "SELECT database_name FROM duckdb_databases() "
            f"WHERE database_name = {quote_literal(name)}"
        )

    def build_catalog_lookup_query(self, name: str) -> str:
        """Query returning a row when ``name`` is already taken in the catalog."""
        return (
            "SELECT database_name FROM duckdb_databases() "
            f"WHERE lower(database_name) = lower({quote_literal(name)})"
        )

    def is_duplicate_attach_error(self, error: BaseException) -> bool:
        return is_duplicate_error(error)

    def fingerprint(self, config: Any) -> Tuple[Tuple[str, Any], ...]:
        """Identity of what a config connects to; credentials are excluded."""
        data = config_to_dict(config)
        return tuple(
            sorted(
                (key, value)
                for key, value in data.items()
                if key not in self.non_identity_fields()
            )
        )

    def non_identity_fields(self) -> frozenset:
        return NON_IDENTITY_FIELDS

    def is_equivalent(self, left: Any, right: Any) -> bool:
        return self.fingerprint(left) == self.fingerprint(right)

    def replaces_on_conflict(self, existing: Any, requested: Any) -> bool:
        """Whether ``requested`` may take over a name held by ``existing``."""
        return False

    def test_alias(self, config: Any) -> str:
        if not self.supports_test_alias:
            return config.name
        return f"__duckattach_test_{config.name}_{token_hex(3)}"

    def secret_label(self, config: Any) -> str:
        return f"{self.kind.value}: {config.name}"

    async def prepare(self, context: AttachContext) -> None:
        """Hook run before any statement, e.g. a reachability probe."""

    async def after_attach(self, context: AttachContext) -> None:
        """Hook run after the attach statement succeeded."""


def require_fields(config: Any, *field_names: str) -> None:
    """Raise :class:`ValidationError` for the first empty field."""
    for field_name in field_names:
        value = getattr(config, field_name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(
                f"'{field_name}' is required", source_name=config.name, field=field_name
            )


def require_port(config: Any) -> None:
    port = config.port
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ValidationError(
            f"Invalid port '{port}': must be between 1 and 65535",
            source_name=config.name,
            field="port",
        )


def require_choice(config: Any, field_name: str, choices: Sequence[str]) -> None:
    value = getattr(config, field_name)
    if value not in choices:
        raise ValidationError(
            f"Invalid {field_name} '{value}' (expected one of: {', '.join(choices)})",
            source_name=config.name,
            field=field_name,
        )
