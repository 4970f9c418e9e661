"""Unit tests for SnapshotCatalog."""

from datetime import datetime

from tmbackup.catalog import (
    Area,
    SnapshotCatalog,
    parse_snapshot_name,
    snapshot_name,
)
from tmbackup.destination import Destination


class TestSnapshotNames:
    """Tests for snapshot name formatting and parsing."""

    def test_snapshot_name_format(self):
        assert snapshot_name(datetime(2024, 3, 5, 7, 8, 9)) == "2024-03-05-070809"

    def test_parse_valid(self):
        assert parse_snapshot_name("2024-03-05-070809") == datetime(2024, 3, 5, 7, 8, 9)

    def test_parse_invalid(self):
        assert parse_snapshot_name("2024-13-05-070809") is None
        assert parse_snapshot_name("latest") is None


class TestSnapshotCatalog:
    """Tests for listing snapshots on a local destination."""

    def test_list_newest_first(self, tmp_path):
        for name in ("2024-01-01-100000", "2024-01-01-120000", "2024-01-01-110000"):
            (tmp_path / name).mkdir()
        catalog = SnapshotCatalog(Destination(str(tmp_path)))
        assert catalog.list() == [
            "2024-01-01-120000",
            "2024-01-01-110000",
            "2024-01-01-100000",
        ]
        assert catalog.newest() == "2024-01-01-120000"
        assert catalog.oldest() == "2024-01-01-100000"

    def test_list_ignores_other_entries(self, tmp_path):
        (tmp_path / "2024-01-01-100000").mkdir()
        (tmp_path / "expired").mkdir()
        (tmp_path / "backup.marker").write_text("")
        (tmp_path / "latest").symlink_to("2024-01-01-100000")
        catalog = SnapshotCatalog(Destination(str(tmp_path)))
        assert catalog.list() == ["2024-01-01-100000"]

    def test_empty_destination(self, tmp_path):
        catalog = SnapshotCatalog(Destination(str(tmp_path)))
        assert catalog.list() == []
        assert catalog.newest() is None
        assert catalog.oldest() is None

    def test_missing_expired_area_is_empty(self, tmp_path):
        catalog = SnapshotCatalog(Destination(str(tmp_path)))
        assert catalog.list(Area.EXPIRED) == []

    def test_expired_area(self, tmp_path):
        (tmp_path / "expired" / "2023-01-01-000000").mkdir(parents=True)
        (tmp_path / "2024-01-01-000000").mkdir()
        catalog = SnapshotCatalog(Destination(str(tmp_path)))
        assert catalog.list(Area.EXPIRED) == ["2023-01-01-000000"]
        assert catalog.list() == ["2024-01-01-000000"]

    def test_paths(self):
        catalog = SnapshotCatalog(Destination("/b"))
        assert catalog.path("2024-01-01-000000") == "/b/2024-01-01-000000"
        assert catalog.path("2024-01-01-000000", Area.EXPIRED) == "/b/expired/2024-01-01-000000"
        assert catalog.area_dir(Area.ACTIVE) == "/b"
        assert catalog.expired_dir == "/b/expired"
