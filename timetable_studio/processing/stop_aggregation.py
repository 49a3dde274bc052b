from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from timetable_studio.common.config import Settings, get_settings
from timetable_studio.common.models import AggregatedStop, Feed, Stop, StopMember
from timetable_studio.processing.utils import haversine_distance_m

logger = logging.getLogger(__name__)


@lru_cache(maxsize=16)
def _removal_patterns(settings: Settings) -> Tuple[re.Pattern, ...]:
    # applied in this order: whitespace, brackets, bus-stop marker, platform suffix
    return (
        re.compile(settings.whitespace_pattern),
        re.compile(settings.bracket_pattern),
        re.compile(settings.bus_stop_marker, re.IGNORECASE),
        re.compile(settings.platform_pattern, re.IGNORECASE),
    )


def _normalize_once(name: str, patterns: Tuple[re.Pattern, ...]) -> str:
    for pattern in patterns:
        name = pattern.sub("", name)
    return name.lower()


def normalize_stop_name(name: str, settings: Optional[Settings] = None) -> str:
    """Merge key for a stop name.

    Strips whitespace (full-width included), bracket characters, the
    bus-stop marker and platform-number suffixes, then lower-cases. The pass
    repeats until nothing changes, so a removal that exposes another match
    (e.g. "バス(停)") is also cleaned and the result is idempotent.
    """
    patterns = _removal_patterns(settings or get_settings())
    current = name or ""
    while True:
        normalized = _normalize_once(current, patterns)
        if normalized == current:
            return normalized
        current = normalized


@dataclass
class _Candidate:
    name: str
    lat: float
    lon: float
    normalized_name: str
    members: List[StopMember] = field(default_factory=list)


def aggregate_stops(feeds: Sequence[Feed], settings: Optional[Settings] = None,
                    silent: bool = True) -> List[AggregatedStop]:
    """Merge stops of all feeds into physical stops.

    Feeds are walked in order and stops in file order. A stop joins the first
    aggregate (in creation order) with the same normalized name whose
    representative point is within `merge_distance_m`; otherwise it seeds a
    new aggregate. Candidates are bucketed by normalized name, each bucket in
    creation order, which gives the same first match as a full scan.
    """
    settings = settings or get_settings()
    threshold = settings.merge_distance_m

    ordered: List[_Candidate] = []
    by_name: Dict[str, List[_Candidate]] = {}

    total = sum(len(feed.stops) for feed in feeds)
    with tqdm(total=total, desc="Aggregating stops", disable=silent) as progress:
        for feed in feeds:
            for stop in feed.stops:
                _place_stop(feed.id, stop, settings, threshold, ordered, by_name)
                progress.update(1)

    aggregated = [
        AggregatedStop(
            id=f"{c.normalized_name}-{ordinal}",
            name=c.name,
            lat=c.lat,
            lon=c.lon,
            normalized_name=c.normalized_name,
            members=tuple(c.members),
        )
        for ordinal, c in enumerate(ordered, start=1)
    ]
    logger.debug("Aggregated %d stops from %d feeds into %d physical stops", total, len(feeds), len(aggregated))
    if not silent:
        print(f"Aggregated {total} stops into {len(aggregated)} physical stops.")
    return aggregated


def _place_stop(feed_id: str, stop: Stop, settings: Settings, threshold: float,
                ordered: List[_Candidate], by_name: Dict[str, List[_Candidate]]) -> None:
    norm = normalize_stop_name(stop.stop_name, settings)
    member = StopMember(feed_id=feed_id, stop_id=stop.stop_id)
    bucket = by_name.setdefault(norm, [])
    for candidate in bucket:
        distance = haversine_distance_m(candidate.lat, candidate.lon, stop.stop_lat, stop.stop_lon)
        if distance <= threshold:
            candidate.members.append(member)
            return

    candidate = _Candidate(
        name=stop.stop_name,
        lat=stop.stop_lat,
        lon=stop.stop_lon,
        normalized_name=norm,
        members=[member],
    )
    bucket.append(candidate)
    ordered.append(candidate)


def find_aggregated_stops(stops: Sequence[AggregatedStop], query: str,
                          settings: Optional[Settings] = None) -> List[AggregatedStop]:
    """Aggregated stops whose id equals `query` or whose name contains it.

    An exact id match wins outright; otherwise the query is normalized like a
    stop name and matched as a substring, in aggregation order.
    """
    exact = [s for s in stops if s.id == query]
    if exact:
        return exact
    needle = normalize_stop_name(query, settings)
    if not needle:
        return []
    return [s for s in stops if needle in s.normalized_name]
