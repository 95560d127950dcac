"""Attachment drivers, one per data source kind.

Importing this package registers every driver.
"""

from duckattach.drivers.base import AttachContext, AttachmentDriver
from duckattach.drivers.gsheet import GSheetDriver
from duckattach.drivers.httpserver import HttpServerDriver
from duckattach.drivers.iceberg import IcebergDriver
from duckattach.drivers.motherduck import MotherDuckDriver
from duckattach.drivers.registry import (
    driver_for,
    get_driver,
    missing_drivers,
    register_driver,
)
from duckattach.drivers.sql_database import MySQLDriver, PostgresDriver
from duckattach.drivers.url_remote import UrlRemoteDriver

__all__ = [
    "AttachContext",
    "AttachmentDriver",
    "GSheetDriver",
    "HttpServerDriver",
    "IcebergDriver",
    "MotherDuckDriver",
    "MySQLDriver",
    "PostgresDriver",
    "UrlRemoteDriver",
    "driver_for",
    "get_driver",
    "missing_drivers",
    "register_driver",
]
