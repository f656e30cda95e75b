"""グリッド各地点の順位取得.

プロバイダはマップ検索のバッチ・並列実行を受け付けないため、
地点は 1 件ずつ順番に処理し、呼び出し間に固定の待機を入れる。
1 地点の失敗は圏外として記録し、スキャン全体は止めない。
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from rankmap.config import MAPS_SEARCH_DEPTH, REQUEST_INTERVAL
from rankmap.errors import ConfigurationError, ProviderError
from rankmap.grid import validate_grid_params
from rankmap.matcher import match
from rankmap.models import (
    STATUS_FAILED,
    STATUS_MATCHED,
    STATUS_SKIPPED,
    STATUS_UNMATCHED,
    BusinessIdentity,
    GridPoint,
    Listing,
    PointResult,
    ScanRequest,
)

logger = logging.getLogger(__name__)


class RankingProvider(Protocol):
    def query_maps(self, keyword: str, point: GridPoint, depth: int) -> list[Listing]:
        ...


def wait_interval(interval: float = REQUEST_INTERVAL) -> None:
    """プロバイダ呼び出し間の固定待機."""
    time.sleep(interval)


def check_point(
    keyword: str,
    point: GridPoint,
    identity: BusinessIdentity,
    provider: RankingProvider,
    depth: int = MAPS_SEARCH_DEPTH,
) -> PointResult:
    """1 地点の順位を取得する. ProviderError は failed として記録する."""
    try:
        listings = provider.query_maps(keyword, point, depth)
    except ProviderError as e:
        logger.error(
            "地点 (%d, %d) の取得失敗: status=%s, error=%s", point.x, point.y, e.status, e
        )
        return PointResult(point=point, status=STATUS_FAILED)

    found = match(identity, listings, depth=depth)
    if found is None:
        return PointResult(
            point=point, business_count=len(listings), status=STATUS_UNMATCHED
        )
    return PointResult(
        point=point,
        position=found.rank,
        business_count=len(listings),
        status=STATUS_MATCHED,
    )


def check_grid(
    request: ScanRequest,
    points: list[GridPoint],
    identity: BusinessIdentity,
    provider: RankingProvider,
    *,
    limit: int | None = None,
    deadline: float | None = None,
    depth: int = MAPS_SEARCH_DEPTH,
    interval: float = REQUEST_INTERVAL,
    sleep: Callable[[float], None] = wait_interval,
    clock: Callable[[], float] = time.monotonic,
) -> list[PointResult]:
    """グリッド全地点の順位を順番に取得する.

    Args:
        request: スキャン要求 (キーワード・グリッド設定)
        points: generate_grid の出力 (行優先順)
        identity: 照合対象のビジネス
        provider: 順位プロバイダ
        limit: 処理する最大地点数 (クォータ残量)。超過分は skipped
        deadline: clock() 基準の期限。超えたら以降の地点は skipped
        depth: 1 地点で確認する検索結果の件数

    Returns:
        points と同じ順序・同じ長さの PointResult リスト。

    Raises:
        ConfigurationError: リクエストが不正 (地点の処理前に送出)
    """
    validate_grid_params(
        request.center_lat, request.center_lng, request.grid_size, request.radius_km
    )
    if not request.keyword_combination.strip():
        raise ConfigurationError("keyword_combination が空です")
    if not identity.name.strip() and not identity.domain:
        raise ConfigurationError("照合対象のビジネス名・ドメインがありません")

    if limit is None:
        limit = len(points)

    results: list[PointResult] = []
    calls = 0
    stopped = False

    for i, point in enumerate(points):
        if i >= limit or stopped:
            results.append(PointResult(point=point, status=STATUS_SKIPPED))
            continue

        if deadline is not None and clock() >= deadline:
            logger.warning("期限切れ: %d/%d 地点で打ち切り", i, len(points))
            stopped = True
            results.append(PointResult(point=point, status=STATUS_SKIPPED))
            continue

        if calls > 0:
            sleep(interval)

        result = check_point(request.keyword_combination, point, identity, provider, depth)
        calls += 1
        results.append(result)

        status = f"{result.position}位" if result.position else "圏外"
        logger.info("  地点 %d (%d, %d) → %s", i, point.x, point.y, status)

    return results
