"""
OpenStreetMap URL and marker overlay tests.
"""

from urllib.parse import parse_qs, urlparse

import pytest

from yellowbook.web.maps import (
    detail_map_url,
    marker_positions,
    results_bbox,
    results_map_url,
)


def _entry(id_, lat, lon):
    return {"id": id_, "name": id_.title(), "latitude": lat, "longitude": lon}


def test_detail_map_url():
    url = urlparse(detail_map_url(47.92, 106.92))
    query = parse_qs(url.query)
    assert url.netloc == "www.openstreetmap.org"
    assert query["marker"] == ["47.92,106.92"]
    min_lon, min_lat, max_lon, max_lat = (float(v) for v in query["bbox"][0].split(","))
    assert min_lon == pytest.approx(106.91)
    assert max_lat == pytest.approx(47.93)


def test_results_bbox_padding():
    bbox = results_bbox([_entry("a", 47.0, 106.0), _entry("b", 48.0, 107.0)])
    assert bbox == pytest.approx((105.98, 46.98, 107.02, 48.02))


def test_results_bbox_needs_entries():
    with pytest.raises(ValueError):
        results_bbox([])


def test_results_map_url_has_no_marker():
    query = parse_qs(urlparse(results_map_url([_entry("a", 47.0, 106.0)])).query)
    assert "marker" not in query
    assert query["layer"] == ["mapnik"]


def test_single_marker_is_centred():
    (marker,) = marker_positions([_entry("a", 47.9, 106.9)])
    assert marker["left"] == pytest.approx(50.0)
    assert marker["top"] == pytest.approx(50.0)


def test_marker_offsets_follow_coordinates():
    east, west = marker_positions([_entry("east", 47.9, 106.91), _entry("west", 47.9, 106.89)])
    assert east["left"] == pytest.approx(75.0)
    assert west["left"] == pytest.approx(25.0)
    north, south = marker_positions([_entry("north", 47.91, 106.9), _entry("south", 47.89, 106.9)])
    assert north["top"] < south["top"]


def test_no_entries_no_markers():
    assert marker_positions([]) == []
