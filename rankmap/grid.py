"""グリッド生成・距離計算モジュール.

ビジネス所在地を中心とした正方形エリアを N×N 地点に分割する。
(0, 0) はグリッドの角 (南西端) で、中心ではない。
"""

from __future__ import annotations

import math

from rankmap.config import (
    EARTH_RADIUS_KM,
    GRID_PRESETS,
    KM_PER_DEGREE,
    MIN_GRID_SIZE,
)
from rankmap.errors import ConfigurationError
from rankmap.models import GridPoint, ScanRequest


def km_to_lat_degrees(km: float) -> float:
    """km を緯度の度数に変換する (1° ≈ 111.32 km)."""
    return km / KM_PER_DEGREE


def km_to_lng_degrees(km: float, latitude: float) -> float:
    """km を指定緯度での経度の度数に変換する.

    高緯度ほど経度 1° あたりの距離が縮むため cos(緯度) で補正する。
    """
    return km / (KM_PER_DEGREE * math.cos(math.radians(latitude)))


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """2 地点間の大円距離 (km) を返す."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def location_name(latitude: float, longitude: float) -> str:
    """座標の表示名. 逆ジオコーディングは行わない."""
    return f"{latitude:.4f}, {longitude:.4f}"


def search_location(point: GridPoint) -> str:
    """DB に保存する検索地点文字列."""
    return f"{point.latitude:.4f},{point.longitude:.4f}"


def validate_grid_params(
    center_lat: float, center_lng: float, grid_size: int, radius_km: float
) -> None:
    """グリッドのパラメータを検証する. 不正なら ConfigurationError."""
    if isinstance(grid_size, bool) or not isinstance(grid_size, int):
        raise ConfigurationError(f"grid_size は整数で指定してください: {grid_size!r}")
    if grid_size < MIN_GRID_SIZE:
        raise ConfigurationError(
            f"grid_size は {MIN_GRID_SIZE} 以上が必要です: {grid_size}"
        )
    if not radius_km > 0:
        raise ConfigurationError(f"radius_km は 0 より大きい値が必要です: {radius_km}")
    # 極点では経度方向の換算が発散する
    if not -90.0 < center_lat < 90.0:
        raise ConfigurationError(f"緯度が範囲外です: {center_lat}")
    if not -180.0 <= center_lng <= 180.0:
        raise ConfigurationError(f"経度が範囲外です: {center_lng}")
    lat_radius = km_to_lat_degrees(radius_km)
    if center_lat - lat_radius <= -90.0 or center_lat + lat_radius >= 90.0:
        raise ConfigurationError(
            f"グリッドが極を越えます: center_lat={center_lat}, radius_km={radius_km}"
        )


def generate_grid(
    center_lat: float, center_lng: float, grid_size: int, radius_km: float
) -> list[GridPoint]:
    """中心座標の周囲に正方形グリッドを生成する.

    Args:
        center_lat: 中心の緯度
        center_lng: 中心の経度
        grid_size: 1 辺の地点数 (2 以上)
        radius_km: 中心から辺までの距離 (km)

    Returns:
        grid_size² 個の GridPoint。y → x の行優先順。
    """
    validate_grid_params(center_lat, center_lng, grid_size, radius_km)

    lat_radius = km_to_lat_degrees(radius_km)
    lng_radius = km_to_lng_degrees(radius_km, center_lat)
    lat_step = (2 * lat_radius) / (grid_size - 1)
    lng_step = (2 * lng_radius) / (grid_size - 1)

    start_lat = center_lat - lat_radius
    start_lng = center_lng - lng_radius

    return [
        GridPoint(
            x=x,
            y=y,
            latitude=start_lat + y * lat_step,
            longitude=start_lng + x * lng_step,
        )
        for y in range(grid_size)
        for x in range(grid_size)
    ]


def generate_hex_grid(
    center_lat: float, center_lng: float, grid_size: int, radius_km: float
) -> list[GridPoint]:
    """六角形 (行ごとに半列ずらし) のグリッドを生成する.

    行間隔は正方形グリッドの 0.75 倍。奇数行は経度方向に半ステップずらす。
    """
    validate_grid_params(center_lat, center_lng, grid_size, radius_km)

    hex_height = km_to_lat_degrees(radius_km * 2) / (grid_size - 1)
    hex_width = km_to_lng_degrees(radius_km * 2, center_lat) / (grid_size - 1)
    vert_spacing = hex_height * 0.75

    start_lng = center_lng - hex_width * (grid_size - 1) / 2
    start_lat = center_lat - vert_spacing * (grid_size - 1) / 2

    points: list[GridPoint] = []
    for row in range(grid_size):
        offset = 0.0 if row % 2 == 0 else hex_width / 2
        for col in range(grid_size):
            points.append(GridPoint(
                x=col,
                y=row,
                latitude=start_lat + row * vert_spacing,
                longitude=start_lng + col * hex_width + offset,
            ))
    return points


def build_grid(request: ScanRequest) -> list[GridPoint]:
    """リクエストのレイアウトに応じてグリッドを生成する."""
    if request.layout == "square":
        return generate_grid(
            request.center_lat, request.center_lng, request.grid_size, request.radius_km
        )
    if request.layout == "hex":
        return generate_hex_grid(
            request.center_lat, request.center_lng, request.grid_size, request.radius_km
        )
    raise ConfigurationError(f"未対応のグリッドレイアウト: {request.layout}")


def grid_from_preset(name: str) -> tuple[int, float]:
    """プリセット名から (grid_size, radius_km) を返す."""
    try:
        preset = GRID_PRESETS[name]
    except KeyError:
        raise ConfigurationError(
            f"未知のプリセット: {name} (選択肢: {', '.join(GRID_PRESETS)})"
        ) from None
    return preset["grid_size"], preset["radius_km"]
