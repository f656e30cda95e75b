"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# 地点ごとの処理状態
STATUS_PENDING = "pending"
STATUS_MATCHED = "matched"
STATUS_UNMATCHED = "unmatched"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"  # クォータ不足・期限切れで未処理


@dataclass(frozen=True)
class GridPoint:
    """グリッド上の 1 地点を表す."""

    x: int  # 0 始まりの列番号
    y: int  # 0 始まりの行番号
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ScanRequest:
    """1 回のヒートマップスキャンの入力. 生成後は変更しない."""

    project_id: str  # uuid
    keyword_combination: str  # 例: "web design in doncaster"
    center_lat: float
    center_lng: float
    grid_size: int  # 2 以上
    radius_km: float  # 0 より大きい
    combination_id: str | None = None  # location_keywords.id
    layout: str = "square"  # "square" or "hex"


@dataclass(frozen=True)
class BusinessIdentity:
    """照合対象のビジネス."""

    name: str
    domain: str | None = None


@dataclass
class Listing:
    """プロバイダが返す検索結果の 1 件."""

    title: str
    domain: str | None = None
    rank_group: int | None = None
    rank_absolute: int | None = None
    url: str | None = None

    @property
    def rank(self) -> int | None:
        """プロバイダ側の順位. 無ければ None."""
        return self.rank_group or self.rank_absolute


@dataclass
class MatchResult:
    listing: Listing
    rank: int  # 1 始まり


@dataclass
class PointResult:
    """1 地点の順位取得結果."""

    point: GridPoint
    position: int | None = None  # None = 圏外
    business_count: int | None = None
    status: str = STATUS_PENDING

    @property
    def processed(self) -> bool:
        return self.status not in (STATUS_PENDING, STATUS_SKIPPED)


@dataclass
class WeakLocation:
    name: str
    position: int | None
    lat: float
    lng: float


@dataclass
class ScanSummary:
    """スキャン結果のサマリ. 履歴として毎回追記する."""

    project_id: str
    keyword_combination: str
    grid_size: int
    radius_km: float
    center_lat: float
    center_lng: float
    average_position: int
    ranked_count: int
    not_ranked_count: int
    weak_locations: list[WeakLocation]
    grid_data: list[PointResult]
    scanned_at: datetime
    combination_id: str | None = None
    checked_count: int = 0  # 実際に行ったプロバイダ呼び出し回数
    partial: bool = False  # 期限切れで途中終了
    truncated: bool = False  # クォータ不足で地点を削減

    @property
    def positions(self) -> list[int | None]:
        return [r.position for r in self.grid_data]

    @property
    def business_counts(self) -> list[int | None]:
        return [r.business_count for r in self.grid_data]


@dataclass
class QuotaState:
    """アカウント×種別ごとのクォータ台帳."""

    account_id: str
    kind: str  # "heat_map" or "rank_check"
    checks_used: int
    checks_allowed: int
    checks_purchased: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.checks_allowed + self.checks_purchased - self.checks_used)


@dataclass
class OrganicTarget:
    """オーガニック順位チェック対象のページ."""

    combination_id: str
    phrase: str
    url: str
    previous_position: int | None = None
    position: int | None = None
    checked: bool = field(default=False)
