#!/usr/bin/env python3
"""
Tests for stop name normalization and cross-feed stop aggregation
"""

import math

import pytest

from timetable_studio.common.config import Settings
from timetable_studio.common.models import Feed, Stop, StopMember
from timetable_studio.processing.stop_aggregation import (
    aggregate_stops,
    find_aggregated_stops,
    normalize_stop_name,
)
from timetable_studio.processing.utils import EARTH_RADIUS_M, haversine_distance_m

BASE_LAT = 34.395
BASE_LON = 132.459


def _north_of(lat, meters):
    return lat + math.degrees(meters / EARTH_RADIUS_M)


def _feed(feed_id, *stops):
    return Feed(id=feed_id, stops=tuple(Stop(*s) for s in stops))


@pytest.mark.parametrize("raw, expected", [
    ("広電前バス停", "広電前"),
    ("広電前(のりば1)", "広電前"),
    ("広電前（のりば12）", "広電前"),
    # full-width digits are not a platform number
    ("広電前(のりば１)", "広電前のりば１"),
    ("広電　前", "広電前"),
    ("紙屋町 西", "紙屋町西"),
    ("Hiroshima Station", "hiroshimastation"),
    ("", ""),
])
def test_normalize_stop_name(raw, expected, settings):
    assert normalize_stop_name(raw, settings) == expected


@pytest.mark.parametrize("raw", [
    "広電前バス停",
    "広電前(のりば1)",
    "バス(停)",
    "バスのりば1停",
    "のりのりば1ば2",
    "ＡＢＣ　Stop",
    "Kamiya-cho (East) バス停 のりば3",
])
def test_normalize_is_idempotent(raw, settings):
    once = normalize_stop_name(raw, settings)
    assert normalize_stop_name(once, settings) == once


def test_removal_exposing_new_match_is_cleaned(settings):
    assert normalize_stop_name("バス(停)", settings) == ""
    assert normalize_stop_name("八丁堀バスのりば1停", settings) == "八丁堀"


def test_custom_removal_patterns():
    settings = Settings(bus_stop_marker="busstop", platform_pattern=r"platform\d+")
    assert normalize_stop_name("Main St Bus Stop Platform 2", settings) == "mainst"


def test_haversine_known_distance():
    # one degree of latitude on the mean sphere
    assert haversine_distance_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111194.93, rel=1e-6)
    assert haversine_distance_m(BASE_LAT, BASE_LON, BASE_LAT, BASE_LON) == 0.0


def test_distance_boundary_is_inclusive():
    a = ("A1", "広電前", BASE_LAT, BASE_LON)
    b = ("B1", "広電前", _north_of(BASE_LAT, 30.0), BASE_LON)
    exact = haversine_distance_m(a[2], a[3], b[2], b[3])
    assert exact == pytest.approx(30.0)

    merged = aggregate_stops([_feed("a", a), _feed("b", b)], Settings(merge_distance_m=exact))
    assert len(merged) == 1
    assert len(merged[0].members) == 2


def test_default_threshold_merges_just_inside_and_splits_just_outside(settings):
    inside = ("B1", "広電前", _north_of(BASE_LAT, 29.9), BASE_LON)
    outside = ("B2", "広電前", _north_of(BASE_LAT, 30.1), BASE_LON)
    origin = ("A1", "広電前", BASE_LAT, BASE_LON)

    assert len(aggregate_stops([_feed("a", origin), _feed("b", inside)], settings)) == 1
    assert len(aggregate_stops([_feed("a", origin), _feed("b", outside)], settings)) == 2


def test_name_or_proximity_alone_does_not_merge(settings):
    same_name_far = [_feed("a", ("A1", "紙屋町", BASE_LAT, BASE_LON)),
                     _feed("b", ("B1", "紙屋町", _north_of(BASE_LAT, 100), BASE_LON))]
    assert len(aggregate_stops(same_name_far, settings)) == 2

    near_other_name = [_feed("a", ("A1", "紙屋町", BASE_LAT, BASE_LON)),
                       _feed("b", ("B1", "八丁堀", BASE_LAT, BASE_LON))]
    assert len(aggregate_stops(near_other_name, settings)) == 2


def test_first_stop_is_representative(settings):
    first = ("A1", "広電前バス停", BASE_LAT, BASE_LON)
    second = ("B1", "広電前(のりば1)", _north_of(BASE_LAT, 25), BASE_LON)
    # 25 m from the second stop but 50 m from the representative point
    third = ("C1", "広電前", _north_of(BASE_LAT, 50), BASE_LON)

    result = aggregate_stops([_feed("a", first), _feed("b", second), _feed("c", third)], settings)

    assert [s.id for s in result] == ["広電前-1", "広電前-2"]
    assert result[0].name == "広電前バス停"
    assert (result[0].lat, result[0].lon) == (BASE_LAT, BASE_LON)
    assert result[0].members == (StopMember("a", "A1"), StopMember("b", "B1"))
    assert result[1].members == (StopMember("c", "C1"),)


def test_first_match_wins_over_closer_candidate(settings):
    # two separate aggregates 40 m apart, incoming stop within range of both
    a = ("A1", "本通", BASE_LAT, BASE_LON)
    b = ("B1", "本通", _north_of(BASE_LAT, 40), BASE_LON)
    incoming = ("C1", "本通", _north_of(BASE_LAT, 25), BASE_LON)

    result = aggregate_stops([_feed("a", a), _feed("b", b), _feed("c", incoming)], settings)
    assert len(result) == 2
    assert StopMember("c", "C1") in result[0].members


def test_stops_within_one_feed_merge_too(settings):
    feed = _feed("a", ("A1", "紙屋町", BASE_LAT, BASE_LON), ("A2", "紙屋町", BASE_LAT, BASE_LON))
    result = aggregate_stops([feed], settings)
    assert result[0].members == (StopMember("a", "A1"), StopMember("a", "A2"))


def test_aggregation_is_deterministic(settings):
    feeds = [
        _feed("a", ("A1", "広電前", BASE_LAT, BASE_LON), ("A2", "紙屋町", 34.396, 132.457)),
        _feed("b", ("B1", "紙屋町(のりば2)", 34.39601, 132.45701), ("B2", "八丁堀", 34.394, 132.462)),
        _feed("c", ("C1", "広電前バス停", BASE_LAT, BASE_LON)),
    ]
    first = aggregate_stops(feeds, settings)
    second = aggregate_stops(feeds, settings)
    assert first == second
    assert [s.id for s in first] == ["広電前-1", "紙屋町-2", "八丁堀-3"]


def test_aggregate_of_nothing(settings):
    assert aggregate_stops([], settings) == []
    assert aggregate_stops([Feed(id="empty")], settings) == []


def test_find_aggregated_stops(settings):
    feeds = [_feed("a", ("A1", "広電前", BASE_LAT, BASE_LON), ("A2", "紙屋町西", 34.396, 132.457),
                   ("A3", "紙屋町東", 34.3961, 132.4581))]
    stops = aggregate_stops(feeds, settings)

    assert [s.id for s in find_aggregated_stops(stops, "紙屋町", settings)] == ["紙屋町西-2", "紙屋町東-3"]
    assert [s.id for s in find_aggregated_stops(stops, "広電前バス停", settings)] == ["広電前-1"]
    assert [s.id for s in find_aggregated_stops(stops, "紙屋町東-3", settings)] == ["紙屋町東-3"]
    assert find_aggregated_stops(stops, "バス停", settings) == []


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
