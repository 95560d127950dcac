"""Tests for the remote-file, Iceberg and MotherDuck drivers."""

import pytest

from duckattach.drivers.iceberg import IcebergDriver
from duckattach.drivers.motherduck import LIST_DATABASES_QUERY, MotherDuckDriver
from duckattach.drivers.url_remote import UrlRemoteDriver
from duckattach.exceptions import CredentialsRequiredError, ValidationError
from duckattach.models import IcebergConfig, MotherDuckConfig, UrlRemoteConfig


class TestUrlRemoteDriver:
    """Test remote DuckDB file attaches."""

    def test_https_attach_without_secret(self):
        """Public https files need no secret."""
        driver = UrlRemoteDriver()
        config = UrlRemoteConfig(
            database_name="taxi", url="https://data.example.com/taxi.duckdb"
        )
        driver.validate(config)
        assert not driver.needs_secret(config, {})
        assert driver.build_attach_statement(config, "taxi") == (
            "ATTACH 'https://data.example.com/taxi.duckdb' AS taxi (READ_ONLY)"
        )

    def test_invalid_url(self):
        """Invalid URLs fail validation on the url field."""
        with pytest.raises(ValidationError) as exc_info:
            UrlRemoteDriver().validate(
                UrlRemoteConfig(database_name="x", url="file:///etc/passwd")
            )
        assert exc_info.value.field == "url"

    def test_s3_secret_is_scoped_to_url(self):
        """Cloud credentials become a secret scoped to the file."""
        driver = UrlRemoteDriver()
        config = UrlRemoteConfig(database_name="lake", url="s3://bucket/db.duckdb")
        credentials = {"key_id": "AKIA", "secret": "s3cr3t", "region": "eu-west-1"}

        assert driver.needs_secret(config, credentials)
        statement = driver.build_secret_statement(config, "remote_s", credentials)
        assert statement == (
            "CREATE OR REPLACE SECRET remote_s (TYPE S3, KEY_ID 'AKIA', "
            "SECRET 's3cr3t', REGION 'eu-west-1', SCOPE 's3://bucket/db.duckdb')"
        )

    def test_incomplete_cloud_credentials(self):
        """Partial S3 credentials are rejected."""
        config = UrlRemoteConfig(database_name="lake", url="s3://bucket/db.duckdb")
        with pytest.raises(ValidationError, match="missing secret"):
            UrlRemoteDriver().check_credentials(config, {"key_id": "AKIA"})
        UrlRemoteDriver().check_credentials(config, {})

    def test_azure_account_name_is_enough(self):
        """Azure accepts an account name instead of a connection string."""
        config = UrlRemoteConfig(database_name="az", url="az://container/db.duckdb")
        UrlRemoteDriver().check_credentials(config, {"account_name": "acct"})

    def test_label(self):
        """Labels show the host, not the full URL."""
        config = UrlRemoteConfig(database_name="x", url="s3://bucket/a/b.duckdb")
        assert UrlRemoteDriver().secret_label(config) == "Remote database: S3: bucket"


class TestIcebergDriver:
    """Test Iceberg catalog attaches."""

    def test_rest_catalog_with_oauth2(self):
        """REST catalogs use an ICEBERG secret with a derived token URI."""
        driver = IcebergDriver()
        config = IcebergConfig(
            alias="lake", warehouse="wh", endpoint="https://catalog.example.com/"
        )
        driver.validate(config)

        secret = driver.build_secret_statement(
            config, "iceberg_s", {"client_id": "id", "client_secret": "cs"}
        )
        assert "TYPE ICEBERG" in secret
        assert (
            "OAUTH2_SERVER_URI 'https://catalog.example.com/v1/oauth/tokens'" in secret
        )
        assert driver.build_attach_statement(config, "lake", "iceberg_s") == (
            "ATTACH 'wh' AS lake (TYPE ICEBERG, "
            "ENDPOINT 'https://catalog.example.com/', SECRET iceberg_s)"
        )

    def test_glue_with_sigv4(self):
        """Glue catalogs use an S3 secret and an endpoint type."""
        driver = IcebergDriver()
        config = IcebergConfig(
            alias="glue",
            warehouse="123456789012",
            endpoint_type="glue",
            auth_type="sigv4",
            region="us-east-1",
        )
        driver.validate(config)
        assert driver.required_credentials(config) == ("key_id", "secret")
        secret = driver.build_secret_statement(
            config, "s", {"key_id": "AKIA", "secret": "x"}
        )
        assert "TYPE S3" in secret
        assert "REGION 'us-east-1'" in secret
        assert "ENDPOINT_TYPE 'GLUE'" in driver.build_attach_statement(config, "glue")

    def test_no_auth(self):
        """Unauthenticated catalogs need no secret."""
        driver = IcebergDriver()
        config = IcebergConfig(
            alias="open",
            warehouse="wh",
            endpoint="http://localhost:8181",
            auth_type="none",
        )
        assert not driver.needs_secret(config, {})
        assert driver.build_secret_statement(config, "s", {}) is None
        assert "AUTHORIZATION_TYPE 'none'" in driver.build_attach_statement(
            config, "open"
        )

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"endpoint": None}, "endpoint"),
            ({"endpoint_type": "GLUE"}, "endpoint"),
            ({"endpoint": "ftp://x"}, "endpoint"),
            ({"endpoint": None, "endpoint_type": "HIVE"}, "endpoint_type"),
        ],
    )
    def test_endpoint_rules(self, kwargs, field):
        """Exactly one valid endpoint or endpoint type is required."""
        params = {"alias": "lake", "warehouse": "wh", "endpoint": "https://c"}
        params.update(kwargs)
        with pytest.raises(ValidationError) as exc_info:
            IcebergDriver().validate(IcebergConfig(**params))
        assert exc_info.value.field == field

    def test_bearer_credentials(self):
        """Bearer auth needs a token."""
        config = IcebergConfig(
            alias="lake", warehouse="wh", endpoint="https://c", auth_type="bearer"
        )
        with pytest.raises(CredentialsRequiredError, match="token"):
            IcebergDriver().check_credentials(config, {})


class TestMotherDuckDriver:
    """Test MotherDuck attaches."""

    def test_statements(self):
        """The token becomes a MOTHERDUCK secret; attach is idempotent."""
        driver = MotherDuckDriver()
        config = MotherDuckConfig(database="analytics", instance_id="acct1")
        driver.validate(config)

        assert driver.build_secret_statement(config, "md_s", {"token": "t"}) == (
            "CREATE OR REPLACE SECRET md_s (TYPE MOTHERDUCK, TOKEN 't')"
        )
        assert driver.build_attach_statement(config, "analytics") == (
            "ATTACH IF NOT EXISTS 'md:analytics'"
        )
        assert "type = 'motherduck'" in LIST_DATABASES_QUERY

    def test_tests_use_real_name(self):
        """MotherDuck databases cannot be attached under another alias."""
        config = MotherDuckConfig(database="analytics")
        assert MotherDuckDriver().test_alias(config) == "analytics"

    def test_instance_switch_replaces(self):
        """The same database from another instance takes the name over."""
        driver = MotherDuckDriver()
        current = MotherDuckConfig(database="analytics", instance_id="acct1")
        assert driver.replaces_on_conflict(
            current, MotherDuckConfig(database="Analytics", instance_id="acct2")
        )
        assert not driver.replaces_on_conflict(
            current, MotherDuckConfig(database="analytics", instance_id="acct1")
        )
        assert not driver.replaces_on_conflict(
            current, MotherDuckConfig(database="other", instance_id="acct2")
        )
