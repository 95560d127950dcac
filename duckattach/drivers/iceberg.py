"""Iceberg catalogs: REST endpoints, AWS Glue and S3 Tables."""

from typing import Optional, Tuple

from duckattach.drivers.base import (
    AttachmentDriver,
    Credentials,
    require_choice,
    require_fields,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.exceptions import ValidationError
from duckattach.models import DataSourceKind, IcebergConfig
from duckattach.utils.sql import quote_identifier, quote_literal

AUTH_TYPES = ("oauth2", "bearer", "sigv4", "none")
ENDPOINT_TYPES = ("GLUE", "S3_TABLES")

REQUIRED_CREDENTIALS = {
    "oauth2": ("client_id", "client_secret"),
    "bearer": ("token",),
    "sigv4": ("key_id", "secret"),
    "none": (),
}


def default_oauth2_server_uri(endpoint: str) -> str:
    return f"{endpoint.rstrip('/')}/v1/oauth/tokens"


@register_driver(DataSourceKind.ICEBERG)
class IcebergDriver(AttachmentDriver):
    kind = DataSourceKind.ICEBERG
    secret_prefix = "iceberg_secret"

    def _validate(self, config: IcebergConfig) -> None:
        require_fields(config, "alias", "warehouse")
        require_choice(config, "auth_type", AUTH_TYPES)

        if bool(config.endpoint) == bool(config.endpoint_type):
            raise ValidationError(
                "Provide either an endpoint URL or an endpoint_type (GLUE, S3_TABLES)",
                source_name=config.name,
                field="endpoint",
            )
        if config.endpoint_type and config.endpoint_type.upper() not in ENDPOINT_TYPES:
            raise ValidationError(
                f"Invalid endpoint_type '{config.endpoint_type}' "
                f"(expected one of: {', '.join(ENDPOINT_TYPES)})",
                source_name=config.name,
                field="endpoint_type",
            )
        if config.endpoint and not config.endpoint.startswith(("http://", "https://")):
            raise ValidationError(
                "Iceberg endpoint must be an http(s) URL",
                source_name=config.name,
                field="endpoint",
            )
        if config.auth_type == "oauth2" and not (
            config.oauth2_server_uri or config.endpoint
        ):
            raise ValidationError(
                "OAuth2 authentication needs oauth2_server_uri",
                source_name=config.name,
                field="oauth2_server_uri",
            )

    def required_credentials(self, config: IcebergConfig) -> Tuple[str, ...]:
        return REQUIRED_CREDENTIALS[config.auth_type]

    def build_secret_statement(
        self, config: IcebergConfig, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        if config.auth_type == "oauth2":
            return secret_statement(
                secret_name,
                "ICEBERG",
                [
                    ("CLIENT_ID", credentials.get("client_id")),
                    ("CLIENT_SECRET", credentials.get("client_secret")),
                    (
                        "OAUTH2_SERVER_URI",
                        config.oauth2_server_uri
                        or default_oauth2_server_uri(config.endpoint),
                    ),
                    ("OAUTH2_SCOPE", config.oauth2_scope),
                ],
            )
        if config.auth_type == "bearer":
            return secret_statement(
                secret_name, "ICEBERG", [("TOKEN", credentials.get("token"))]
            )
        if config.auth_type == "sigv4":
            return secret_statement(
                secret_name,
                "S3",
                [
                    ("KEY_ID", credentials.get("key_id")),
                    ("SECRET", credentials.get("secret")),
                    ("SESSION_TOKEN", credentials.get("session_token")),
                    ("REGION", config.region or credentials.get("region")),
                ],
            )
        return None

    def build_attach_statement(
        self, config: IcebergConfig, name: str, secret_name: Optional[str] = None
    ) -> str:
        options = ["TYPE ICEBERG"]
        if config.endpoint:
            options.append(f"ENDPOINT {quote_literal(config.endpoint)}")
        else:
            endpoint_type = config.endpoint_type.upper()
            options.append(f"ENDPOINT_TYPE {quote_literal(endpoint_type)}")

        if config.auth_type == "none":
            options.append("AUTHORIZATION_TYPE 'none'")
        elif config.auth_type == "sigv4" and config.endpoint:
            options.append("AUTHORIZATION_TYPE 'sigv4'")
        if secret_name:
            options.append(f"SECRET {quote_identifier(secret_name)}")

        return (
            f"ATTACH {quote_literal(config.warehouse)} AS {quote_identifier(name)} "
            f"({', '.join(options)})"
        )

    def secret_label(self, config: IcebergConfig) -> str:
        return f"Iceberg catalog: {config.alias}"
