"""ヒートマップスキャンの実行.

処理フロー:
  1. リクエスト・認証情報を検証 (ここで失敗してもクォータは消費しない)
  2. プロジェクトから照合対象のビジネスを取得
  3. グリッドを生成し、クォータを確保 (不足分は地点を切り詰める)
  4. 各地点の順位を順番に取得
  5. 集計し、実際の呼び出し回数でクォータを確定
  6. 地点データとスキャン履歴を保存
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from rankmap import db
from rankmap.aggregator import aggregate
from rankmap.config import SCAN_DEADLINE_SECONDS
from rankmap.errors import ConfigurationError, ProjectNotFoundError, QuotaExhaustedError
from rankmap.grid import build_grid, validate_grid_params
from rankmap.matcher import domain_from_url
from rankmap.models import BusinessIdentity, ScanRequest, ScanSummary
from rankmap.provider import DataForSEOClient
from rankmap.quota import QuotaLedger
from rankmap.rank_checker import RankingProvider, check_grid, wait_interval
from rankmap.store import persist

logger = logging.getLogger(__name__)


class _CountingProvider:
    """プロバイダ呼び出し回数を数える."""

    def __init__(self, provider: RankingProvider):
        self.provider = provider
        self.calls = 0

    def query_maps(self, keyword, point, depth):
        self.calls += 1
        return self.provider.query_maps(keyword, point, depth)


def business_identity(project: dict) -> BusinessIdentity:
    """プロジェクト行から照合対象を作る.

    名前は company_name (無ければ project_name)、ドメインは blog_url から取る。
    """
    name = (project.get("company_name") or project.get("project_name") or "").strip()
    return BusinessIdentity(name=name, domain=domain_from_url(project.get("blog_url")))


def load_identity(project_id: str) -> BusinessIdentity:
    project = db.get_project(project_id)
    if not project:
        raise ProjectNotFoundError(f"Project not found: {project_id}")
    return business_identity(project)


def build_response(summary: ScanSummary, remaining_checks: int | None) -> dict:
    """呼び出し側へ返す形式. positions[i] はグリッドの i 番目 (行優先) に対応."""
    return {
        "success": True,
        "positions": summary.positions,
        "business_counts": summary.business_counts,
        "average_position": summary.average_position,
        "ranked_count": summary.ranked_count,
        "not_ranked_count": summary.not_ranked_count,
        "total_points": len(summary.grid_data),
        "checked_count": summary.checked_count,
        "partial": summary.partial,
        "truncated": summary.truncated,
        "remaining_checks": remaining_checks,
    }


def run_scan(
    account_id: str,
    request: ScanRequest,
    provider: RankingProvider | None = None,
    ledger: QuotaLedger | None = None,
    deadline_seconds: float = SCAN_DEADLINE_SECONDS,
    sleep: Callable[[float], None] = wait_interval,
    clock: Callable[[], float] = time.monotonic,
) -> dict:
    """ヒートマップスキャンを 1 回実行する.

    Raises:
        ConfigurationError: 認証情報なし・リクエスト不正・プロジェクト不在
        QuotaExhaustedError: 開始時点でクォータ残量が 0
        PersistenceError: 保存失敗 (e.summary で再保存可能、クォータは確定済み)
    """
    logger.info(
        "=== ヒートマップ開始: keyword=%s, grid=%dx%d, radius=%skm ===",
        request.keyword_combination, request.grid_size, request.grid_size, request.radius_km,
    )
    started = clock()

    validate_grid_params(
        request.center_lat, request.center_lng, request.grid_size, request.radius_km
    )
    if not request.keyword_combination.strip():
        raise ConfigurationError("keyword_combination が空です")
    if provider is None:
        provider = DataForSEOClient.from_env()

    identity = load_identity(request.project_id)
    logger.info("ビジネス名: %s, ドメイン: %s", identity.name, identity.domain or "未設定")

    points = build_grid(request)
    ledger = ledger or QuotaLedger("heat_map")
    granted = ledger.reserve(account_id, len(points))
    if granted == 0:
        raise QuotaExhaustedError(
            "Rank map credits exhausted. Purchase more checks or upgrade your plan."
        )
    if granted < len(points):
        logger.warning("クォータ不足のため %d/%d 地点に切り詰め", granted, len(points))

    counted = _CountingProvider(provider)
    try:
        results = check_grid(
            request,
            points,
            identity,
            counted,
            limit=granted,
            deadline=started + deadline_seconds,
            sleep=sleep,
            clock=clock,
        )
    except BaseException:
        # 途中で落ちても実際に呼び出した回数だけ確定し、残りは戻す
        ledger.commit(account_id, counted.calls, granted)
        raise

    summary = aggregate(request, results, limit=granted)
    ledger.commit(account_id, summary.checked_count, granted)

    persist(summary)

    remaining = ledger.remaining(account_id)
    logger.info(
        "=== ヒートマップ完了: 順位あり=%d, 圏外=%d, 平均=%d, 呼び出し=%d, 所要時間=%.1f 秒 ===",
        summary.ranked_count, summary.not_ranked_count, summary.average_position,
        summary.checked_count, clock() - started,
    )
    return build_response(summary, remaining)
