"""store モジュールのテスト."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from postgrest.exceptions import APIError

from rankmap.aggregator import aggregate
from rankmap.errors import PersistenceError
from rankmap.grid import generate_grid
from rankmap.models import (
    STATUS_MATCHED,
    STATUS_SKIPPED,
    STATUS_UNMATCHED,
    PointResult,
    ScanRequest,
)
from rankmap.store import (
    build_grid_records,
    build_scan_record,
    clear_grid,
    load_history,
    persist,
)

REQUEST = ScanRequest(
    project_id="project-1",
    keyword_combination="web design in doncaster",
    center_lat=53.5228,
    center_lng=-1.1284,
    grid_size=2,
    radius_km=5.0,
    combination_id="combo-1",
)
SCANNED_AT = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def _summary(positions, statuses=None):
    points = generate_grid(REQUEST.center_lat, REQUEST.center_lng, 2, 5.0)
    if statuses is None:
        statuses = [STATUS_MATCHED if p else STATUS_UNMATCHED for p in positions]
    results = [
        PointResult(point=pt, position=pos, business_count=20, status=st)
        for pt, pos, st in zip(points, positions, statuses)
    ]
    return aggregate(REQUEST, results, scanned_at=SCANNED_AT)


class FakeGridTable:
    """location_ranking_grid の upsert を模した保存先."""

    def __init__(self):
        self.rows = {}

    def upsert(self, records):
        for r in records:
            key = (r["project_id"], r["keyword_combination"], r["grid_x"], r["grid_y"])
            self.rows[key] = r


class TestBuildGridRecords:
    """build_grid_records のテスト."""

    def test_one_row_per_cell(self):
        records = build_grid_records(_summary([1, None, 3, None]))

        assert len(records) == 4
        first = records[0]
        assert first["project_id"] == "project-1"
        assert first["location_keyword_id"] == "combo-1"
        assert (first["grid_x"], first["grid_y"]) == (0, 0)
        assert first["position"] == 1
        assert first["business_count"] == 20
        assert first["grid_size"] == 2
        assert first["search_location"] == f"{first['latitude']:.4f},{first['longitude']:.4f}"

    def test_skipped_cells_not_written(self):
        """未処理の地点は保存しない (古い値を消さない) こと."""
        summary = _summary(
            [1, 2, None, None],
            [STATUS_MATCHED, STATUS_MATCHED, STATUS_SKIPPED, STATUS_SKIPPED],
        )
        records = build_grid_records(summary)
        assert [(r["grid_x"], r["grid_y"]) for r in records] == [(0, 0), (1, 0)]


class TestBuildScanRecord:
    def test_snapshot(self):
        record = build_scan_record(_summary([1, None, 3, None]))

        assert record["average_position"] == 2
        assert record["ranked_count"] == 2
        assert record["not_ranked_count"] == 2
        assert record["scanned_at"] == SCANNED_AT.isoformat()
        assert len(record["grid_data"]) == 4
        assert record["grid_data"][1]["position"] is None
        assert record["weak_locations"][0]["position"] is None
        assert set(record["weak_locations"][0]) == {"name", "position", "lat", "lng"}


class TestPersist:
    """persist のテスト."""

    @patch("rankmap.store.db")
    def test_writes_grid_and_history(self, mock_db):
        summary = _summary([1, None, 3, None])
        persist(summary)

        mock_db.upsert_grid_rows.assert_called_once_with(build_grid_records(summary))
        mock_db.insert_heat_map_scan.assert_called_once_with(build_scan_record(summary))

    @patch("rankmap.store.db")
    def test_rescan_overwrites(self, mock_db):
        """同じ地点を 2 回保存しても 1 行で、最新の順位になること."""
        table = FakeGridTable()
        mock_db.upsert_grid_rows.side_effect = table.upsert

        persist(_summary([1, None, 3, None]))
        persist(_summary([2, 2, 2, 2]))

        assert len(table.rows) == 4
        assert table.rows[("project-1", "web design in doncaster", 0, 0)]["position"] == 2
        assert mock_db.insert_heat_map_scan.call_count == 2

    @patch("rankmap.store.db")
    def test_failure_keeps_summary(self, mock_db):
        """保存失敗は PersistenceError になり、サマリを保持すること."""
        mock_db.upsert_grid_rows.side_effect = APIError({"message": "boom", "code": "500"})
        summary = _summary([1, None, 3, None])

        with pytest.raises(PersistenceError) as exc:
            persist(summary)

        assert exc.value.summary is summary
        assert exc.value.category == "persistence"
        mock_db.insert_heat_map_scan.assert_not_called()


@patch("rankmap.store.db")
class TestHistory:
    """load_history / clear_grid のテスト."""

    def test_grid_and_latest(self, mock_db):
        mock_db.get_heat_map_data.return_value = [{"grid_x": 0, "grid_y": 0, "position": 3}]
        mock_db.get_latest_scan.return_value = {"id": 2, "average_position": 3}

        result = load_history("project-1", "web design in doncaster")

        assert result == {
            "success": True,
            "grid": [{"grid_x": 0, "grid_y": 0, "position": 3}],
            "latest_scan": {"id": 2, "average_position": 3},
        }
        mock_db.get_scan_history.assert_not_called()

    def test_include_scans(self, mock_db):
        """include_scans なら全履歴も返すこと."""
        mock_db.get_heat_map_data.return_value = []
        mock_db.get_latest_scan.return_value = None
        mock_db.get_scan_history.return_value = [{"id": 2}, {"id": 1}]

        result = load_history("project-1", "kw", include_scans=True)

        assert result["latest_scan"] is None
        assert result["scans"] == [{"id": 2}, {"id": 1}]

    def test_read_failure(self, mock_db):
        mock_db.get_heat_map_data.side_effect = APIError({"message": "boom", "code": "500"})

        with pytest.raises(PersistenceError):
            load_history("project-1", "kw")

    def test_clear_grid(self, mock_db):
        clear_grid("project-1", "kw")
        mock_db.delete_heat_map_data.assert_called_once_with("project-1", "kw")

    def test_clear_grid_failure(self, mock_db):
        """削除失敗は PersistenceError になること."""
        mock_db.delete_heat_map_data.side_effect = APIError({"message": "boom", "code": "500"})

        with pytest.raises(PersistenceError) as exc:
            clear_grid("project-1", "kw")
        assert exc.value.category == "persistence"
