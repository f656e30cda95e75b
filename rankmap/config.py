"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# クライアント生成時に検証する (db._get_client)
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "public")

# --- DataForSEO ---
# スキャン開始前に検証する (provider.load_credentials)
DATAFORSEO_LOGIN: str = os.environ.get("DATAFORSEO_LOGIN", "")
DATAFORSEO_PASSWORD: str = os.environ.get("DATAFORSEO_PASSWORD", "")

DATAFORSEO_BASE_URL = "https://api.dataforseo.com/v3"
MAPS_ENDPOINT = f"{DATAFORSEO_BASE_URL}/serp/google/maps/live/advanced"
ORGANIC_ENDPOINT = f"{DATAFORSEO_BASE_URL}/serp/google/organic/live/advanced"
TASK_OK_STATUS = 20000

MAPS_SEARCH_DEPTH = 20  # 1 地点あたりの検索結果の確認件数
MAPS_ZOOM = "15z"
LANGUAGE_CODE = "en"
LOCATION_CODE = 2826  # United Kingdom
ORGANIC_BATCH_SIZE = 100

# --- リクエスト設定 ---
REQUEST_INTERVAL = 0.2  # 秒 (プロバイダ呼び出し間の固定待機)
REQUEST_TIMEOUT = 60  # 秒
SCAN_DEADLINE_SECONDS = 600.0  # 1 スキャン全体の期限

# --- グリッド ---
KM_PER_DEGREE = 111.32
EARTH_RADIUS_KM = 6371.0
MIN_GRID_SIZE = 2
GRID_LAYOUTS = ("square", "hex")

GRID_PRESETS = {
    "quick": {"grid_size": 5, "radius_km": 5.0},  # 25 地点, 町の中心部
    "standard": {"grid_size": 7, "radius_km": 10.0},  # 49 地点, 市街地
    "detailed": {"grid_size": 10, "radius_km": 15.0},  # 100 地点, 都市圏
    "comprehensive": {"grid_size": 15, "radius_km": 25.0},  # 225 地点, 地域
}

# --- 集計 ---
WEAK_POSITION_THRESHOLD = 4  # マップパック (上位3件) 圏外
WEAK_LOCATION_LIMIT = 10

# --- クォータ ---
# 種別ごとのリセット周期 ("daily" or "monthly")
QUOTA_PERIODS = {
    "heat_map": "daily",
    "rank_check": "daily",
}

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
