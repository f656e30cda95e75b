"""ヒートマップエンジンの例外定義.

呼び出し側 (UI) が失敗の種類で対応を変えられるよう、
各例外は category (credentials / quota / provider / persistence) を持つ。
"""

from __future__ import annotations


class HeatMapError(Exception):
    """エンジンが送出する例外の基底クラス."""

    category = "unknown"


class ConfigurationError(HeatMapError):
    """認証情報の欠落やリクエスト不正. プロバイダ呼び出し前に送出する."""

    category = "credentials"


class ProjectNotFoundError(ConfigurationError):
    """対象プロジェクトが存在しない."""


class QuotaExhaustedError(HeatMapError):
    """開始時点で残りクォータが 0."""

    category = "quota"

    def __init__(self, message: str, remaining: int = 0):
        super().__init__(message)
        self.remaining = remaining


class PlanAccessError(QuotaExhaustedError):
    """プランにこの機能の枠が無い (base=0, per_site=0)."""


class ProviderError(HeatMapError):
    """プロバイダ呼び出しの失敗. 1 地点に閉じ、ループ外へは伝播しない."""

    category = "provider"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class PersistenceError(HeatMapError):
    """保存失敗. 計算済みサマリを保持し、再保存だけをやり直せるようにする."""

    category = "persistence"

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        self.summary = summary
