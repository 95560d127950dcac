"""Remote DuckDB database files over https or object storage."""

from typing import Any, Optional

from duckattach.drivers.base import (
    AttachmentDriver,
    Credentials,
    require_fields,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.exceptions import ValidationError
from duckattach.models import DataSourceKind, UrlRemoteConfig
from duckattach.utils.sql import quote_identifier, quote_literal
from duckattach.utils.urls import (
    remote_display_name,
    sanitize_remote_url,
    url_scheme,
    validate_remote_url,
)

SECRET_TYPES = {
    "s3": "S3",
    "gcs": "GCS",
    "gs": "GCS",
    "azure": "AZURE",
    "az": "AZURE",
}


@register_driver(DataSourceKind.URL_REMOTE)
class UrlRemoteDriver(AttachmentDriver):
    """Attach a ``.duckdb`` file served from https, S3, GCS or Azure."""

    kind = DataSourceKind.URL_REMOTE
    secret_prefix = "remote_secret"

    def _validate(self, config: UrlRemoteConfig) -> None:
        require_fields(config, "database_name", "url")
        is_valid, error = validate_remote_url(config.url)
        if not is_valid:
            raise ValidationError(error, source_name=config.name, field="url")

    def needs_secret(self, config: UrlRemoteConfig, credentials: Credentials) -> bool:
        return bool(credentials) and url_scheme(config.url) in SECRET_TYPES

    def build_secret_statement(
        self, config: UrlRemoteConfig, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        secret_type = SECRET_TYPES.get(url_scheme(config.url))
        if secret_type is None or not credentials:
            return None

        scope = sanitize_remote_url(config.url)
        if secret_type == "S3":
            options = [
                ("KEY_ID", credentials.get("key_id")),
                ("SECRET", credentials.get("secret")),
                ("REGION", credentials.get("region")),
                ("SESSION_TOKEN", credentials.get("session_token")),
                ("ENDPOINT", credentials.get("endpoint")),
            ]
        elif secret_type == "GCS":
            options = [
                ("KEY_ID", credentials.get("key_id")),
                ("SECRET", credentials.get("secret")),
            ]
        else:
            options = [
                ("CONNECTION_STRING", credentials.get("connection_string")),
                ("ACCOUNT_NAME", credentials.get("account_name")),
            ]
        options.append(("SCOPE", scope))
        return secret_statement(secret_name, secret_type, options)

    def check_credentials(self, config: UrlRemoteConfig, credentials: Credentials):
        if not credentials:
            return
        secret_type = SECRET_TYPES.get(url_scheme(config.url))
        if secret_type in ("S3", "GCS"):
            required = ("key_id", "secret")
        elif secret_type == "AZURE":
            required = ("connection_string",)
            if credentials.get("account_name"):
                required = ()
        else:
            required = ()
        missing = [key for key in required if not credentials.get(key)]
        if missing:
            raise ValidationError(
                f"Incomplete {secret_type} credentials: missing {', '.join(missing)}",
                source_name=config.name,
                field="credentials",
            )

    def build_attach_statement(
        self, config: UrlRemoteConfig, name: str, secret_name: Optional[str] = None
    ) -> str:
        options = " (READ_ONLY)" if config.read_only else ""
        url = sanitize_remote_url(config.url)
        return f"ATTACH {quote_literal(url)} AS {quote_identifier(name)}{options}"

    def secret_label(self, config: Any) -> str:
        return f"Remote database: {remote_display_name(config.url)}"
