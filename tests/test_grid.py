"""grid モジュールのユニットテスト."""

import math

import pytest

from rankmap.errors import ConfigurationError
from rankmap.grid import (
    build_grid,
    generate_grid,
    generate_hex_grid,
    grid_from_preset,
    haversine_km,
    km_to_lat_degrees,
    km_to_lng_degrees,
    location_name,
    search_location,
)
from rankmap.models import ScanRequest


class TestGenerateGrid:
    """generate_grid のテスト."""

    @pytest.mark.parametrize("grid_size,radius_km", [(2, 1.0), (3, 5.0), (7, 10.0), (15, 25.0)])
    def test_point_count_and_unique_indices(self, grid_size, radius_km):
        """N² 個の地点が重複なく [0,N)×[0,N) を覆うこと."""
        points = generate_grid(51.5, -0.12, grid_size, radius_km)

        assert len(points) == grid_size ** 2
        indices = {(p.x, p.y) for p in points}
        assert indices == {(x, y) for x in range(grid_size) for y in range(grid_size)}

    def test_row_major_order(self):
        """y → x の行優先順で並ぶこと."""
        points = generate_grid(51.5, -0.12, 3, 5.0)
        assert [(p.x, p.y) for p in points[:4]] == [(0, 0), (1, 0), (2, 0), (0, 1)]

    def test_centroid_is_center(self):
        """全地点の重心が中心座標と一致すること."""
        points = generate_grid(51.5, -0.12, 7, 10.0)
        lat = sum(p.latitude for p in points) / len(points)
        lng = sum(p.longitude for p in points) / len(points)

        assert lat == pytest.approx(51.5, abs=1e-9)
        assert lng == pytest.approx(-0.12, abs=1e-9)

    def test_corner_is_origin(self):
        """(0, 0) は南西の角で、中心から radius_km 離れていること."""
        points = generate_grid(51.5, -0.12, 3, 5.0)
        origin = points[0]

        assert origin.latitude == pytest.approx(51.5 - 5.0 / 111.32)
        assert origin.longitude == pytest.approx(
            -0.12 - 5.0 / (111.32 * math.cos(math.radians(51.5)))
        )
        # 3×3 なら中央の地点が中心
        assert points[4].latitude == pytest.approx(51.5)
        assert points[4].longitude == pytest.approx(-0.12)

    def test_edge_spans_two_radii(self):
        """端から端までがおよそ 2×radius_km であること."""
        points = generate_grid(51.5, -0.12, 5, 5.0)
        west, east = points[0], points[4]
        south, north = points[0], points[20]

        assert haversine_km(south.latitude, south.longitude, north.latitude, north.longitude) \
            == pytest.approx(10.0, rel=0.01)
        assert haversine_km(west.latitude, west.longitude, east.latitude, east.longitude) \
            == pytest.approx(10.0, rel=0.01)

    def test_deterministic(self):
        assert generate_grid(40.0, 10.0, 4, 3.0) == generate_grid(40.0, 10.0, 4, 3.0)

    @pytest.mark.parametrize("grid_size", [1, 0, -3])
    def test_rejects_small_grid(self, grid_size):
        """grid_size < 2 は ConfigurationError になること."""
        with pytest.raises(ConfigurationError):
            generate_grid(51.5, -0.12, grid_size, 5.0)

    @pytest.mark.parametrize("radius_km", [0, -1.0])
    def test_rejects_non_positive_radius(self, radius_km):
        with pytest.raises(ConfigurationError):
            generate_grid(51.5, -0.12, 3, radius_km)

    def test_rejects_pole(self):
        with pytest.raises(ConfigurationError):
            generate_grid(90.0, 0.0, 3, 5.0)

    @pytest.mark.parametrize("center_lat", [89.9, -89.9])
    def test_rejects_extent_past_pole(self, center_lat):
        """中心が範囲内でも端の行が極を越えれば ConfigurationError になること."""
        with pytest.raises(ConfigurationError):
            generate_grid(center_lat, 0.0, 3, 50.0)

    def test_high_latitude_within_bounds(self):
        points = generate_grid(89.0, 0.0, 3, 50.0)
        assert all(-90.0 < p.latitude < 90.0 for p in points)

    def test_rejects_float_grid_size(self):
        with pytest.raises(ConfigurationError):
            generate_grid(51.5, -0.12, 3.0, 5.0)


class TestGenerateHexGrid:
    """generate_hex_grid のテスト."""

    def test_point_count_and_unique_indices(self):
        points = generate_hex_grid(51.5, -0.12, 5, 5.0)

        assert len(points) == 25
        assert len({(p.x, p.y) for p in points}) == 25

    def test_odd_rows_offset(self):
        """奇数行は半列ずれること."""
        points = generate_hex_grid(51.5, -0.12, 4, 5.0)
        step = points[1].longitude - points[0].longitude

        assert points[4].longitude - points[0].longitude == pytest.approx(step / 2)
        assert points[8].longitude == pytest.approx(points[0].longitude)


class TestBuildGrid:
    """build_grid のテスト."""

    def _request(self, layout):
        return ScanRequest(
            project_id="p1",
            keyword_combination="plumber in leeds",
            center_lat=53.8,
            center_lng=-1.55,
            grid_size=3,
            radius_km=2.0,
            layout=layout,
        )

    def test_square(self):
        assert build_grid(self._request("square")) == generate_grid(53.8, -1.55, 3, 2.0)

    def test_hex(self):
        assert build_grid(self._request("hex")) == generate_hex_grid(53.8, -1.55, 3, 2.0)

    def test_unknown_layout(self):
        with pytest.raises(ConfigurationError):
            build_grid(self._request("circle"))


class TestGeometry:
    """距離・換算のテスト."""

    def test_haversine_zero(self):
        assert haversine_km(51.5, -0.12, 51.5, -0.12) == 0

    def test_haversine_london_paris(self):
        """ロンドン〜パリ間がおよそ 344 km であること."""
        assert haversine_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=2)

    def test_lat_degrees(self):
        assert km_to_lat_degrees(111.32) == pytest.approx(1.0)

    def test_lng_degrees_grow_with_latitude(self):
        """高緯度ほど同じ km の経度差が大きくなること."""
        assert km_to_lng_degrees(10, 0.0) == pytest.approx(km_to_lat_degrees(10))
        assert km_to_lng_degrees(10, 60.0) == pytest.approx(2 * km_to_lat_degrees(10))

    def test_location_name(self):
        assert location_name(51.5, -0.12) == "51.5000, -0.1200"

    def test_search_location(self):
        point = generate_grid(51.5, -0.12, 3, 5.0)[4]
        assert search_location(point) == "51.5000,-0.1200"


class TestGridFromPreset:
    def test_standard(self):
        assert grid_from_preset("standard") == (7, 10.0)

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            grid_from_preset("huge")
