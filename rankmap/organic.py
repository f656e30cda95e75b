"""組み合わせページのオーガニック順位チェック.

公開済み (pushed) の各ページについて Google オーガニック検索を行い、
ページ URL が何位に出ているかを location_keywords に記録する。
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Protocol

import httpx
from postgrest.exceptions import APIError

from rankmap import db
from rankmap.config import ORGANIC_BATCH_SIZE, REQUEST_INTERVAL
from rankmap.errors import (
    ConfigurationError,
    PersistenceError,
    ProjectNotFoundError,
    ProviderError,
    QuotaExhaustedError,
)
from rankmap.models import Listing, OrganicTarget
from rankmap.provider import DataForSEOClient
from rankmap.quota import QuotaLedger
from rankmap.rank_checker import wait_interval

logger = logging.getLogger(__name__)


class OrganicProvider(Protocol):
    def query_organic(self, tasks: list[dict]) -> list[list[Listing] | None]:
        ...


def page_slug(combination: dict) -> str:
    return combination.get("slug") or "-".join(combination["phrase"].lower().split())


def build_targets(base_url: str, combinations: list[dict]) -> list[OrganicTarget]:
    base = base_url.rstrip("/")
    return [
        OrganicTarget(
            combination_id=c["id"],
            phrase=c["phrase"],
            url=f"{base}/{page_slug(c)}",
            previous_position=c.get("position"),
        )
        for c in combinations
    ]


def find_url_rank(listings: list[Listing], url: str) -> int | None:
    """検索結果から URL を含む最初の結果の順位を返す. 見つからなければ None."""
    for i, item in enumerate(listings, start=1):
        if item.url and url in item.url:
            return item.rank_absolute or i
    return None


def check_rankings(
    account_id: str,
    project_id: str,
    combination_ids: list[str] | None = None,
    provider: OrganicProvider | None = None,
    ledger: QuotaLedger | None = None,
    batch_size: int = ORGANIC_BATCH_SIZE,
    sleep: Callable[[float], None] = wait_interval,
) -> dict:
    """プロジェクトの公開済みページの順位をチェックする.

    Raises:
        ConfigurationError: 認証情報なし・URL 未設定・プロジェクト不在
        QuotaExhaustedError: クォータ残量が 0
        PersistenceError: 順位の保存失敗 (クォータは確定済み)
    """
    if provider is None:
        provider = DataForSEOClient.from_env()

    project = db.get_project(project_id)
    if not project:
        raise ProjectNotFoundError(f"Project not found: {project_id}")
    base_url = project.get("blog_url") or project.get("wp_url")
    if not base_url:
        raise ConfigurationError(
            "Project must have either blog_url or wp_url set for rank tracking"
        )

    combinations = db.get_pushed_combinations(project_id, combination_ids)
    if not combinations:
        logger.info("チェック対象の公開済みページがありません: project=%s", project_id)
        return {
            "success": True,
            "message": "No pushed combinations found to check",
            "checked_count": 0,
        }

    targets = build_targets(base_url, combinations)
    ledger = ledger or QuotaLedger("rank_check")
    granted = ledger.reserve(account_id, len(targets))
    if granted == 0:
        raise QuotaExhaustedError("Daily rank check quota exhausted.")
    if granted < len(targets):
        logger.warning("クォータ不足のため %d/%d 件に切り詰め", granted, len(targets))
    targets = targets[:granted]

    started = time.time()
    sent = 0
    try:
        for start in range(0, len(targets), batch_size):
            if start > 0:
                sleep(REQUEST_INTERVAL)
            batch = targets[start:start + batch_size]
            try:
                sent += len(batch)
                results = provider.query_organic([{"keyword": t.phrase} for t in batch])
            except ProviderError as e:
                logger.error("バッチ %d 件の取得失敗: status=%s, error=%s", len(batch), e.status, e)
                continue

            for target, listings in zip(batch, results):
                if listings is None:
                    continue
                target.position = find_url_rank(listings, target.url)
                target.checked = True
                status = f"{target.position}位" if target.position else "圏外"
                logger.info("  %s → %s", target.phrase, status)
    except BaseException:
        ledger.commit(account_id, sent, granted)
        raise

    # 保存より先に確定する
    ledger.commit(account_id, sent, granted)

    checked = [t for t in targets if t.checked]
    checked_at = datetime.now(timezone.utc).isoformat()
    try:
        for t in checked:
            db.update_combination_position(t.combination_id, {
                "position": t.position,
                "previous_position": t.previous_position,
                "last_position_check": checked_at,
            })
    except (APIError, httpx.HTTPError) as e:
        logger.error("順位の保存に失敗: %s", e)
        raise PersistenceError(f"Failed to save rank positions: {e}") from e

    ranked_count = sum(1 for t in checked if t.position is not None)
    logger.info(
        "順位チェック完了: %d 件 (順位あり %d 件), 所要時間: %.1f 秒",
        len(checked), ranked_count, time.time() - started,
    )
    return {
        "success": True,
        "checked_count": len(checked),
        "ranked_count": ranked_count,
        "not_ranked_count": len(checked) - ranked_count,
        "truncated": granted < len(combinations),
        "remaining_today": ledger.remaining(account_id),
    }
