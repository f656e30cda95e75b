"""Supabase データベース操作モジュール.

全テーブルは SUPABASE_SCHEMA (既定 public) に配置。
Supabase client のスキーマ指定は .schema() で行う。
"""

from __future__ import annotations

import logging

from supabase import Client, create_client

from rankmap.config import SUPABASE_SCHEMA, SUPABASE_SECRET_KEY, SUPABASE_URL
from rankmap.errors import ConfigurationError

logger = logging.getLogger(__name__)

GRID_CONFLICT_KEY = "project_id,keyword_combination,grid_x,grid_y"
QUOTA_CONFLICT_KEY = "user_id,kind"

_client: Client | None = None


def _get_client() -> Client:
    """Supabase クライアントを初回利用時に生成する."""
    global _client
    if _client is None:
        if not SUPABASE_URL or not SUPABASE_SECRET_KEY:
            raise ConfigurationError("SUPABASE_URL / SUPABASE_SECRET_KEY が未設定です")
        _client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
    return _client


def _table(name: str):
    """スキーマ内のテーブルを参照する."""
    return _get_client().schema(SUPABASE_SCHEMA).table(name)


def _rpc(name: str, params: dict):
    """スキーマ内のストアドファンクションを呼び出す."""
    return _get_client().schema(SUPABASE_SCHEMA).rpc(name, params).execute()


# --- プロジェクト・プラン ---


def get_project(project_id: str) -> dict | None:
    """プロジェクトを取得する. 存在しなければ None."""
    resp = (
        _table("projects")
        .select("id, user_id, project_name, company_name, blog_url, wp_url, latitude, longitude")
        .eq("id", project_id)
        .limit(1)
        .execute()
    )
    return resp.data[0] if resp.data else None


def count_projects(user_id: str) -> int:
    """ユーザーのプロジェクト数を返す."""
    resp = (
        _table("projects")
        .select("id", count="exact")
        .eq("user_id", user_id)
        .execute()
    )
    if resp.count is not None:
        return resp.count
    return len(resp.data or [])


def get_user_plan(user_id: str) -> dict | None:
    """ユーザーのプラン定数を取得する.

    Returns:
        plans テーブルの行 (rank_check_daily_base, rank_check_per_site,
        heat_map_daily_base, heat_map_per_site ...)。ユーザー不在なら None。
    """
    resp = (
        _table("users")
        .select("id, plan_id, plans:plan_id(*)")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    if not resp.data:
        return None
    return resp.data[0].get("plans") or {}


# --- クォータ台帳 ---


def get_quota_row(user_id: str, kind: str) -> dict | None:
    resp = (
        _table("quota_ledger")
        .select("user_id, kind, checks_used, checks_purchased, reset_at")
        .eq("user_id", user_id)
        .eq("kind", kind)
        .limit(1)
        .execute()
    )
    return resp.data[0] if resp.data else None


def create_quota_row(user_id: str, kind: str, reset_at: str) -> None:
    """0 件の台帳行を作る. 既に存在すれば何もしない."""
    row = {
        "user_id": user_id,
        "kind": kind,
        "checks_used": 0,
        "checks_purchased": 0,
        "reset_at": reset_at,
    }
    (
        _table("quota_ledger")
        .upsert(row, on_conflict=QUOTA_CONFLICT_KEY, ignore_duplicates=True)
        .execute()
    )
    logger.info("quota_ledger 作成: user=%s, kind=%s", user_id, kind)


def reset_quota_row(user_id: str, kind: str, expected_reset_at: str, new_reset_at: str) -> bool:
    """reset_at が期待値のままの場合だけ使用数を 0 に戻す.

    Returns:
        更新できたら True。他のリクエストが先にリセットしていれば False。
    """
    resp = (
        _table("quota_ledger")
        .update({"checks_used": 0, "reset_at": new_reset_at})
        .eq("user_id", user_id)
        .eq("kind", kind)
        .eq("reset_at", expected_reset_at)
        .execute()
    )
    return bool(resp.data)


def reserve_quota_checks(user_id: str, kind: str, requested: int, allowed: int) -> dict:
    """残量の範囲で使用数を確保する (DB 側で 1 回の条件付き更新).

    Returns:
        {"granted", "checks_used", "checks_purchased", "reset_at"}
    """
    resp = _rpc("reserve_quota_checks", {
        "p_user_id": user_id,
        "p_kind": kind,
        "p_requested": requested,
        "p_allowed": allowed,
    })
    data = resp.data
    if isinstance(data, list):
        data = data[0] if data else {}
    return data or {}


def adjust_quota_checks(user_id: str, kind: str, delta: int) -> int:
    """使用数に delta を加算する (DB 側で 1 回の加算更新). 更新後の使用数を返す."""
    resp = _rpc("adjust_quota_checks", {
        "p_user_id": user_id,
        "p_kind": kind,
        "p_delta": delta,
    })
    data = resp.data
    if isinstance(data, list):
        data = data[0] if data else 0
    if isinstance(data, dict):
        data = data.get("checks_used", 0)
    return int(data or 0)


# --- ヒートマップ ---


def upsert_grid_rows(records: list[dict]) -> None:
    """グリッドの地点行を upsert する (project_id, keyword_combination, grid_x, grid_y).

    Args:
        records: [{"project_id", "keyword_combination", "grid_x", "grid_y",
                   "latitude", "longitude", "position", ...}, ...]
    """
    if not records:
        return
    _table("location_ranking_grid").upsert(records, on_conflict=GRID_CONFLICT_KEY).execute()
    logger.info("location_ranking_grid に %d 件 upsert", len(records))


def insert_heat_map_scan(record: dict) -> None:
    """スキャン履歴を 1 行追加する."""
    _table("heat_map_scans").insert(record).execute()
    logger.info("heat_map_scans に 1 件挿入: %s", record.get("keyword_combination"))


def get_heat_map_data(project_id: str, keyword_combination: str) -> list[dict]:
    """保存済みのグリッドを行優先順で取得する."""
    resp = (
        _table("location_ranking_grid")
        .select("*")
        .eq("project_id", project_id)
        .eq("keyword_combination", keyword_combination)
        .order("grid_y")
        .order("grid_x")
        .execute()
    )
    return resp.data or []


def delete_heat_map_data(project_id: str, keyword_combination: str) -> None:
    (
        _table("location_ranking_grid")
        .delete()
        .eq("project_id", project_id)
        .eq("keyword_combination", keyword_combination)
        .execute()
    )
    logger.info("location_ranking_grid 削除: project=%s, keyword=%s", project_id, keyword_combination)


def get_scan_history(project_id: str, keyword_combination: str) -> list[dict]:
    """スキャン履歴を新しい順で取得する."""
    resp = (
        _table("heat_map_scans")
        .select("*")
        .eq("project_id", project_id)
        .eq("keyword_combination", keyword_combination)
        .order("scanned_at", desc=True)
        .execute()
    )
    return resp.data or []


def get_latest_scan(project_id: str, keyword_combination: str) -> dict | None:
    resp = (
        _table("heat_map_scans")
        .select("*")
        .eq("project_id", project_id)
        .eq("keyword_combination", keyword_combination)
        .order("scanned_at", desc=True)
        .limit(1)
        .execute()
    )
    return resp.data[0] if resp.data else None


# --- オーガニック順位 ---


def get_pushed_combinations(project_id: str, combination_ids: list[str] | None = None) -> list[dict]:
    """公開済み (pushed) の組み合わせページを取得する."""
    query = (
        _table("location_keywords")
        .select("id, phrase, status, slug, position")
        .eq("project_id", project_id)
        .eq("status", "pushed")
    )
    if combination_ids:
        query = query.in_("id", combination_ids)
    return query.execute().data or []


def update_combination_position(combination_id: str, fields: dict) -> None:
    """組み合わせページの順位を更新する.

    Args:
        fields: {"position", "previous_position", "last_position_check"}
    """
    _table("location_keywords").update(fields).eq("id", combination_id).execute()
