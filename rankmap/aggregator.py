"""スキャン結果の集計."""

from __future__ import annotations

from datetime import datetime, timezone

from rankmap.config import WEAK_LOCATION_LIMIT, WEAK_POSITION_THRESHOLD
from rankmap.grid import location_name
from rankmap.models import (
    STATUS_SKIPPED,
    PointResult,
    ScanRequest,
    ScanSummary,
    WeakLocation,
)


def average_position(positions: list[int | None]) -> int:
    """順位ありの地点だけで平均を取り、四捨五入する. 該当なしは 0."""
    ranked = [p for p in positions if p is not None]
    if not ranked:
        return 0
    # 0.5 は切り上げ (Python の round は偶数丸めのため使わない)
    return int(sum(ranked) / len(ranked) + 0.5)


def weak_locations(
    results: list[PointResult],
    threshold: int = WEAK_POSITION_THRESHOLD,
    limit: int = WEAK_LOCATION_LIMIT,
) -> list[WeakLocation]:
    """順位の弱い地点を抽出する.

    圏外を先頭に、次いで順位の悪い順。同順位はグリッド順。
    未処理 (skipped) の地点は対象外。
    """
    candidates = [
        (i, r) for i, r in enumerate(results)
        if r.status != STATUS_SKIPPED and (r.position is None or r.position >= threshold)
    ]
    candidates.sort(key=lambda c: (c[1].position is not None, -(c[1].position or 0), c[0]))

    return [
        WeakLocation(
            name=location_name(r.point.latitude, r.point.longitude),
            position=r.position,
            lat=r.point.latitude,
            lng=r.point.longitude,
        )
        for _, r in candidates[:limit]
    ]


def aggregate(
    request: ScanRequest,
    results: list[PointResult],
    limit: int | None = None,
    scanned_at: datetime | None = None,
) -> ScanSummary:
    """地点ごとの結果からサマリを作る (副作用なし).

    ranked_count + not_ranked_count は常に地点数と一致する。

    Args:
        request: スキャン要求
        results: check_grid の出力
        limit: クォータで許可された地点数。地点数未満なら truncated
        scanned_at: スキャン時刻 (省略時は現在時刻)
    """
    positions = [r.position for r in results]
    ranked_count = sum(1 for p in positions if p is not None)
    checked = [r for r in results if r.processed]
    if limit is None:
        limit = len(results)
    # 許可範囲内に未処理地点があれば期限切れによる途中終了
    partial = any(r.status == STATUS_SKIPPED for r in results[:limit])

    return ScanSummary(
        project_id=request.project_id,
        keyword_combination=request.keyword_combination,
        grid_size=request.grid_size,
        radius_km=request.radius_km,
        center_lat=request.center_lat,
        center_lng=request.center_lng,
        average_position=average_position(positions),
        ranked_count=ranked_count,
        not_ranked_count=len(results) - ranked_count,
        weak_locations=weak_locations(results),
        grid_data=list(results),
        scanned_at=scanned_at or datetime.now(timezone.utc),
        combination_id=request.combination_id,
        checked_count=len(checked),
        partial=partial,
        truncated=limit < len(results),
    )
