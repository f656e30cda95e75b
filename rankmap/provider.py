"""DataForSEO 順位プロバイダのクライアント.

Google マップ検索は 1 リクエスト 1 地点 (バッチ不可)。
オーガニック検索は 1 リクエストに最大 100 タスクまとめられる。
"""

from __future__ import annotations

import logging

import requests

from rankmap.config import (
    DATAFORSEO_LOGIN,
    DATAFORSEO_PASSWORD,
    LANGUAGE_CODE,
    LOCATION_CODE,
    MAPS_ENDPOINT,
    MAPS_SEARCH_DEPTH,
    MAPS_ZOOM,
    ORGANIC_ENDPOINT,
    REQUEST_TIMEOUT,
    TASK_OK_STATUS,
)
from rankmap.errors import ConfigurationError, ProviderError
from rankmap.models import GridPoint, Listing

logger = logging.getLogger(__name__)


def load_credentials() -> tuple[str, str]:
    """DataForSEO の認証情報を返す. 未設定なら ConfigurationError."""
    if not DATAFORSEO_LOGIN or not DATAFORSEO_PASSWORD:
        raise ConfigurationError("DataForSEO credentials not configured")
    return DATAFORSEO_LOGIN, DATAFORSEO_PASSWORD


def location_coordinate(point: GridPoint) -> str:
    """マップ検索の location_coordinate 文字列 (lat,lng,zoom)."""
    return f"{point.latitude:.6f},{point.longitude:.6f},{MAPS_ZOOM}"


class DataForSEOClient:
    """DataForSEO SERP API クライアント."""

    def __init__(
        self,
        login: str,
        password: str,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not login or not password:
            raise ConfigurationError("DataForSEO credentials not configured")
        self.session = session or requests.Session()
        self.session.auth = (login, password)
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> DataForSEOClient:
        login, password = load_credentials()
        return cls(login, password)

    def _post(self, url: str, tasks: list[dict]) -> dict:
        try:
            resp = self.session.post(url, json=tasks, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"request failed: {e}") from e

        if not resp.ok:
            raise ProviderError(
                f"DataForSEO API error: {resp.status_code} {resp.reason}",
                status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("response is not JSON", status=resp.status_code) from e
        if not isinstance(data, dict):
            raise ProviderError("unexpected response shape", status=resp.status_code)
        return data

    def query_maps(
        self, keyword: str, point: GridPoint, depth: int = MAPS_SEARCH_DEPTH
    ) -> list[Listing]:
        """1 地点のマップ検索結果を取得する.

        Raises:
            ProviderError: 通信失敗・非 2xx・タスク失敗・不正なレスポンス
        """
        task = {
            "keyword": keyword,
            "location_coordinate": location_coordinate(point),
            "language_code": LANGUAGE_CODE,
            "depth": depth,
        }
        data = self._post(MAPS_ENDPOINT, [task])
        tasks = data.get("tasks") or []
        if not tasks:
            raise ProviderError("response has no tasks")
        return parse_task_items(tasks[0])

    def query_organic(self, tasks: list[dict]) -> list[list[Listing] | None]:
        """オーガニック検索を一括実行する.

        Args:
            tasks: [{"keyword": str}, ...] (最大 ORGANIC_BATCH_SIZE 件)

        Returns:
            入力と同じ順序の結果。失敗したタスクは None。

        Raises:
            ProviderError: リクエスト全体の失敗
        """
        payload = [
            {
                "keyword": t["keyword"],
                "location_code": t.get("location_code", LOCATION_CODE),
                "language_code": LANGUAGE_CODE,
                "device": "desktop",
                "os": "windows",
                "calculate_rectangles": False,
            }
            for t in tasks
        ]
        data = self._post(ORGANIC_ENDPOINT, payload)
        raw_tasks = data.get("tasks") or []

        results: list[list[Listing] | None] = []
        for i in range(len(tasks)):
            if i >= len(raw_tasks):
                results.append(None)
                continue
            try:
                results.append(parse_task_items(raw_tasks[i]))
            except ProviderError as e:
                logger.warning("オーガニックタスク失敗: keyword=%s, error=%s", tasks[i]["keyword"], e)
                results.append(None)
        return results


def parse_task_items(task: dict) -> list[Listing]:
    """DataForSEO のタスク結果から Listing のリストを作る.

    status_code が 20000 以外、または result が無い場合は ProviderError。
    items が空 (検索結果 0 件) は正常として空リストを返す。
    """
    if not isinstance(task, dict):
        raise ProviderError("malformed task")

    status = task.get("status_code")
    if status != TASK_OK_STATUS:
        raise ProviderError(
            f"task failed: {task.get('status_message') or 'Unknown error'}",
            status=status,
        )

    result = task.get("result")
    if not isinstance(result, list) or not result or not isinstance(result[0], dict):
        raise ProviderError("task has no result")

    items = result[0].get("items") or []
    if not isinstance(items, list):
        raise ProviderError("items is not a list")

    listings: list[Listing] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = item.get("title") or ""
        if not isinstance(title, str):
            raise ProviderError(f"malformed item title: {title!r}")
        listings.append(Listing(
            title=title,
            domain=_as_str(item.get("domain")),
            rank_group=_as_int(item.get("rank_group")),
            rank_absolute=_as_int(item.get("rank_absolute")),
            url=_as_str(item.get("url")),
        ))
    return listings


def _as_str(value) -> str | None:
    return value if isinstance(value, str) else None


def _as_int(value) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
