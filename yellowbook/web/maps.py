"""
OpenStreetMap helpers for the detail and search pages.

Detail page: a single embed centred on the listing, ±DETAIL_DELTA degrees.
Search page: a background embed covering every result (±RESULTS_PADDING
around the bounding box) with absolutely positioned markers. Marker offsets
are percentages of the overlay, measured from the average coordinate:

    left = ((lon - avg_lon + 0.02) / 0.04) * 100
    top  = ((avg_lat - lat + 0.02) / 0.04) * 100
"""

from typing import Any, Sequence
from urllib.parse import urlencode

OSM_EMBED_URL = "https://www.openstreetmap.org/export/embed.html"
DETAIL_DELTA = 0.01
RESULTS_PADDING = 0.02
MARKER_SPAN = 0.04


def _bbox_param(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> str:
    return f"{min_lon},{min_lat},{max_lon},{max_lat}"


def detail_map_url(latitude: float, longitude: float) -> str:
    """Embed URL for one listing with a marker at its coordinates."""
    bbox = _bbox_param(
        longitude - DETAIL_DELTA,
        latitude - DETAIL_DELTA,
        longitude + DETAIL_DELTA,
        latitude + DETAIL_DELTA,
    )
    query = urlencode(
        {"bbox": bbox, "layer": "mapnik", "marker": f"{latitude},{longitude}"},
        safe=",",
    )
    return f"{OSM_EMBED_URL}?{query}"


def results_bbox(entries: Sequence[dict[str, Any]]) -> tuple[float, float, float, float]:
    """``(min_lon, min_lat, max_lon, max_lat)`` padded by RESULTS_PADDING."""
    if not entries:
        raise ValueError("results_bbox needs at least one entry")
    lons = [e["longitude"] for e in entries]
    lats = [e["latitude"] for e in entries]
    return (
        min(lons) - RESULTS_PADDING,
        min(lats) - RESULTS_PADDING,
        max(lons) + RESULTS_PADDING,
        max(lats) + RESULTS_PADDING,
    )


def results_map_url(entries: Sequence[dict[str, Any]]) -> str:
    query = urlencode({"bbox": _bbox_param(*results_bbox(entries)), "layer": "mapnik"}, safe=",")
    return f"{OSM_EMBED_URL}?{query}"


def marker_positions(entries: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Overlay position (percent) of each result, relative to the average coordinate."""
    if not entries:
        return []
    avg_lat = sum(e["latitude"] for e in entries) / len(entries)
    avg_lon = sum(e["longitude"] for e in entries) / len(entries)
    return [
        {
            "id": e["id"],
            "name": e["name"],
            "left": (e["longitude"] - avg_lon + RESULTS_PADDING) / MARKER_SPAN * 100,
            "top": (avg_lat - e["latitude"] + RESULTS_PADDING) / MARKER_SPAN * 100,
        }
        for e in entries
    ]
