"""
SQL quoting utilities for statements sent to DuckDB.

Every name and value interpolated into an ATTACH / SECRET / VIEW statement
goes through this module, so that user supplied aliases, URLs and
credentials cannot break out of their position in the statement.
"""

import re
import secrets
from typing import Iterable, Optional


class SQLIdentifierValidator:
    """Rules for DuckDB identifiers and attach aliases."""

    # Identifiers matching this pattern can be emitted without quotes
    VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    # Names accepted for attached databases and aliases
    DATABASE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

    # Catalog names owned by the engine itself
    SYSTEM_CATALOGS = {"memory", "system", "temp"}

    RESERVED_WORDS = {
        "ALL",
        "ALTER",
        "AND",
        "ANY",
        "AS",
        "ASC",
        "ATTACH",
        "BETWEEN",
        "BY",
        "CASE",
        "CHECK",
        "COLUMN",
        "CREATE",
        "CROSS",
        "DATABASE",
        "DEFAULT",
        "DELETE",
        "DESC",
        "DETACH",
        "DISTINCT",
        "DROP",
        "ELSE",
        "END",
        "EXCEPT",
        "EXISTS",
        "FALSE",
        "FOREIGN",
        "FROM",
        "FULL",
        "GRANT",
        "GROUP",
        "HAVING",
        "IN",
        "INNER",
        "INSERT",
        "INTERSECT",
        "INTO",
        "IS",
        "JOIN",
        "KEY",
        "LEFT",
        "LIKE",
        "LIMIT",
        "NOT",
        "NULL",
        "OFFSET",
        "ON",
        "OR",
        "ORDER",
        "OUTER",
        "PRIMARY",
        "REFERENCES",
        "RIGHT",
        "SCHEMA",
        "SECRET",
        "SELECT",
        "TABLE",
        "THEN",
        "TRUE",
        "UNION",
        "UNIQUE",
        "UPDATE",
        "USING",
        "VIEW",
        "WHEN",
        "WHERE",
        "WITH",
    }

    @classmethod
    def needs_quoting(cls, identifier: str) -> bool:
        """
        Check if an identifier needs to be double-quoted.

        Args:
            identifier: The identifier to check

        Returns:
            True if the identifier is not a plain, non-reserved identifier
        """
        if not cls.VALID_IDENTIFIER_PATTERN.match(identifier):
            return True
        return identifier.upper() in cls.RESERVED_WORDS

    @classmethod
    def is_valid_database_name(cls, name: Optional[str]) -> bool:
        """Check an attach alias / database name against the allowed charset."""
        if not name or not isinstance(name, str):
            return False
        return bool(cls.DATABASE_NAME_PATTERN.match(name))

    @classmethod
    def is_name_reserved_or_in_use(cls, name: str, existing: Iterable[str]) -> bool:
        """Return True when ``name`` collides with a system catalog or ``existing``.

        The comparison is case-insensitive, matching DuckDB catalog lookup.
        """
        lowered = name.lower()
        if lowered in cls.SYSTEM_CATALOGS:
            return True
        return any(lowered == other.lower() for other in existing)


def quote_identifier(identifier: str) -> str:
    """
    Quote a DuckDB identifier only when it needs quoting.

    Args:
        identifier: Table, view, database or secret name

    Returns:
        The bare identifier, or the identifier wrapped in double quotes
        with embedded double quotes doubled

    Raises:
        ValueError: If the identifier is empty
    """
    if not identifier:
        raise ValueError("Identifier must be a non-empty string")
    if not SQLIdentifierValidator.needs_quoting(identifier):
        return identifier
    return '"' + identifier.replace('"', '""') + '"'


def quote_qualified(*parts: str) -> str:
    """Quote and dot-join a catalog.schema.object reference."""
    return ".".join(quote_identifier(part) for part in parts if part)


def quote_literal(value: object) -> str:
    """Render ``value`` as a single-quoted SQL string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def make_secret_name(prefix: str, alias: str) -> str:
    """Build a collision-resistant engine secret name for ``alias``.

    Returns names like ``pg_secret_sales_3f9a1c2b``: a kind prefix, the alias
    reduced to identifier characters, and a random suffix.
    """
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "_", alias).strip("_").lower() or "source"
    return f"{prefix}_{cleaned}_{secrets.token_hex(4)}"


_SECRET_VALUE = re.compile(
    r"\b(PASSWORD|SECRET|TOKEN|BEARER_TOKEN|KEY_ID|CLIENT_SECRET|SESSION_TOKEN"
    r"|CONNECTION_STRING|motherduck_token)(\s*=?\s*)'(?:[^']|'')*'",
    re.IGNORECASE,
)
_AUTH_HEADER = re.compile(
    r"('(?:Authorization|X-API-Key)'\s*:\s*)'(?:[^']|'')*'", re.IGNORECASE
)


def redact_secrets(text: str) -> str:
    """Mask quoted credential values in a statement or engine message."""
    text = _SECRET_VALUE.sub(lambda m: f"{m.group(1)}{m.group(2)}'***'", text)
    return _AUTH_HEADER.sub(lambda m: f"{m.group(1)}'***'", text)
