"""スキャン結果の保存.

  - location_ranking_grid: 地点ごとの最新値 (project_id, keyword_combination, grid_x, grid_y で upsert)
  - heat_map_scans: スキャンごとの履歴 (追記のみ)
"""

from __future__ import annotations

import logging
from dataclasses import asdict

import httpx
from postgrest.exceptions import APIError

from rankmap import db
from rankmap.errors import PersistenceError
from rankmap.grid import search_location
from rankmap.models import PointResult, ScanSummary

logger = logging.getLogger(__name__)


def _cell(result: PointResult) -> dict:
    return {
        "grid_x": result.point.x,
        "grid_y": result.point.y,
        "latitude": result.point.latitude,
        "longitude": result.point.longitude,
        "position": result.position,
        "business_count": result.business_count,
    }


def build_grid_records(summary: ScanSummary) -> list[dict]:
    """location_ranking_grid 用のレコードを作る.

    未処理 (skipped) の地点は含めない。同一キーが重複した場合は後勝ち。
    """
    records: dict[tuple[int, int], dict] = {}
    for r in summary.grid_data:
        if not r.processed:
            continue
        records[(r.point.x, r.point.y)] = {
            "project_id": summary.project_id,
            "location_keyword_id": summary.combination_id,
            "keyword_combination": summary.keyword_combination,
            **_cell(r),
            "search_location": search_location(r.point),
            "grid_size": summary.grid_size,
            "radius_km": summary.radius_km,
        }
    return list(records.values())


def build_scan_record(summary: ScanSummary) -> dict:
    """heat_map_scans 用のレコード (地点ごとのスナップショット込み)."""
    return {
        "project_id": summary.project_id,
        "keyword_combination": summary.keyword_combination,
        "grid_size": summary.grid_size,
        "radius_km": summary.radius_km,
        "center_lat": summary.center_lat,
        "center_lng": summary.center_lng,
        "average_position": summary.average_position,
        "ranked_count": summary.ranked_count,
        "not_ranked_count": summary.not_ranked_count,
        "checked_count": summary.checked_count,
        "partial": summary.partial,
        "truncated": summary.truncated,
        "weak_locations": [asdict(w) for w in summary.weak_locations],
        "grid_data": [_cell(r) for r in summary.grid_data],
        "scanned_at": summary.scanned_at.isoformat(),
    }


def persist(summary: ScanSummary) -> None:
    """サマリと地点データを保存する.

    同じサマリで再実行しても地点行は重複しない (upsert)。

    Raises:
        PersistenceError: 保存失敗。summary を保持するので再保存だけやり直せる
    """
    try:
        db.upsert_grid_rows(build_grid_records(summary))
        db.insert_heat_map_scan(build_scan_record(summary))
    except (APIError, httpx.HTTPError) as e:
        logger.error("ヒートマップの保存失敗: keyword=%s, error=%s", summary.keyword_combination, e)
        raise PersistenceError("Failed to save heat map data", summary=summary) from e


def load_history(project_id: str, keyword_combination: str, include_scans: bool = False) -> dict:
    """保存済みのグリッドと直近のスキャンを取得する.

    include_scans=True なら全履歴 (新しい順) も付ける。

    Raises:
        PersistenceError: 読み込み失敗
    """
    try:
        grid = db.get_heat_map_data(project_id, keyword_combination)
        latest = db.get_latest_scan(project_id, keyword_combination)
        scans = db.get_scan_history(project_id, keyword_combination) if include_scans else None
    except (APIError, httpx.HTTPError) as e:
        logger.error("ヒートマップの読み込み失敗: keyword=%s, error=%s", keyword_combination, e)
        raise PersistenceError("Failed to load heat map data") from e

    result = {"success": True, "grid": grid, "latest_scan": latest}
    if scans is not None:
        result["scans"] = scans
    return result


def clear_grid(project_id: str, keyword_combination: str) -> None:
    """地点データを削除する. スキャン履歴は残す."""
    try:
        db.delete_heat_map_data(project_id, keyword_combination)
    except (APIError, httpx.HTTPError) as e:
        logger.error("ヒートマップの削除失敗: keyword=%s, error=%s", keyword_combination, e)
        raise PersistenceError("Failed to delete heat map data") from e
