"""Tests for schema metadata refresh and caching."""

import asyncio

from duckattach.lifecycle.metadata import (
    CatalogMetadataRefresher,
    ColumnMetadata,
    MetadataCache,
    SourceMetadata,
    TableMetadata,
)


class TestCatalogMetadataRefresher:
    """Test reading metadata from duckdb_columns()."""

    def test_groups_columns_by_source_and_table(self, scripted_pool):
        """Rows are grouped under the attached name and table."""
        scripted_pool.columns = [
            ("sales", "public", "orders", "id", "INTEGER"),
            ("sales", "public", "orders", "total", "DOUBLE"),
            ("sales", "public", "customers", "id", "INTEGER"),
            ("memory", "main", "budget", "amount", "DOUBLE"),
            ("memory", "main", "unrelated", "x", "INTEGER"),
        ]

        result = asyncio.run(
            CatalogMetadataRefresher(scripted_pool).refresh(["sales", "budget"])
        )

        sales = result["sales"]
        assert [t.name for t in sales.tables] == ["orders", "customers"]
        assert sales.table("public", "orders").columns == [
            ColumnMetadata("id", "INTEGER"),
            ColumnMetadata("total", "DOUBLE"),
        ]
        assert [t.name for t in result["budget"].tables] == ["budget"]
        assert "unrelated" not in result

    def test_query_quotes_names(self, scripted_pool):
        """Names are passed to the catalog query as literals."""
        asyncio.run(CatalogMetadataRefresher(scripted_pool).refresh(["o'brien"]))
        assert "'o''brien'" in scripted_pool.statements[0]

    def test_no_names_no_query(self, scripted_pool):
        """Nothing to refresh means no query."""
        assert asyncio.run(CatalogMetadataRefresher(scripted_pool).refresh([])) == {}
        assert scripted_pool.statements == []


class TestMetadataCache:
    """Test the copy-on-write cache."""

    def test_merge_and_drop(self):
        """Entries are merged and dropped by name."""
        cache = MetadataCache()
        cache.merge({"sales": SourceMetadata("sales")})
        snapshot = cache.snapshot()

        cache.merge({"hr": SourceMetadata("hr", [TableMetadata("main", "people")])})
        cache.drop("sales")
        cache.drop("missing")

        assert "sales" in snapshot
        assert "sales" not in cache
        assert cache.get("hr").table("main", "people") is not None
        assert cache.get("hr").table("main", "other") is None
