from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import pandas as pd

from timetable_studio.common.config import Settings, get_settings
from timetable_studio.common.models import AggregatedStop, Feed, Operator, Route, TimetableRow
from timetable_studio.processing.utils import MAX_TIME_SECONDS, departure_sort_key, hhmmss_to_seconds

logger = logging.getLogger(__name__)

TIMETABLE_COLUMNS = ['operator', 'agency_name', 'route', 'headsign', 'departure_time', 'departure_seconds']


def _route_label(route: Optional[Route], fallback: str) -> str:
    if route is not None:
        short_name = (route.route_short_name or "").strip()
        if short_name:
            return short_name
        long_name = (route.route_long_name or "").strip()
        if long_name:
            return long_name
    return fallback


def _feed_rows(feed: Feed, member_stop_ids: set, settings: Settings) -> List[TimetableRow]:
    trip_by_id = {t.trip_id: t for t in feed.trips}
    route_by_id = {r.route_id: r for r in feed.routes}
    agency_by_id = {a.agency_id: a for a in feed.agencies}
    operator = Operator.distinguished if feed.is_distinguished_operator else Operator.other

    rows = []
    dangling = 0
    for st in feed.stop_times:
        if st.stop_id not in member_stop_ids:
            continue
        trip = trip_by_id.get(st.trip_id)
        if trip is None:
            dangling += 1
            continue
        route = route_by_id.get(trip.route_id)
        if route is not None:
            agency = agency_by_id.get(route.agency_id)
        else:
            agency = feed.agencies[0] if feed.agencies else None

        rows.append(TimetableRow(
            operator=operator,
            agency_name=(agency.agency_name if agency is not None else "") or settings.agency_unknown_label,
            route=_route_label(route, settings.route_unknown_label),
            headsign=trip.trip_headsign or "",
            departure_time=st.departure_time,
        ))

    if dangling:
        logger.debug("%s: skipped %d stop_times referencing unknown trips", feed.id, dangling)
    return rows


def build_timetable(feeds: Sequence[Feed], stop: Optional[AggregatedStop],
                    settings: Optional[Settings] = None) -> List[TimetableRow]:
    """All departures at an aggregated stop across feeds, ordered by time of day.

    Rows keep feed order then stop_times file order before a stable sort on
    seconds since midnight. Times past 24:00:00 are not wrapped; anything
    unparsable sorts last.
    """
    if stop is None:
        return []
    settings = settings or get_settings()

    rows: List[TimetableRow] = []
    for feed in feeds:
        member_stop_ids = set(stop.stop_ids_for(feed.id))
        if not member_stop_ids:
            continue
        rows.extend(_feed_rows(feed, member_stop_ids, settings))

    return sorted(rows, key=lambda row: departure_sort_key(row.departure_time))


def group_rows_by_hour(rows: Sequence[TimetableRow]) -> Dict[int, List[TimetableRow]]:
    """Hour buckets for a printed timetable; hours past 23 stay as they are."""
    grid: Dict[int, List[TimetableRow]] = {}
    for row in rows:
        seconds = hhmmss_to_seconds(row.departure_time)
        if seconds is None:
            continue
        grid.setdefault(seconds // 3600, []).append(row)
    return dict(sorted(grid.items()))


def timetable_to_dataframe(rows: Sequence[TimetableRow]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=TIMETABLE_COLUMNS)
    records = []
    for row in rows:
        seconds = departure_sort_key(row.departure_time)
        records.append({
            'operator': row.operator.value,
            'agency_name': row.agency_name,
            'route': row.route,
            'headsign': row.headsign,
            'departure_time': row.departure_time,
            'departure_seconds': None if seconds == MAX_TIME_SECONDS else seconds,
        })
    df = pd.DataFrame(records, columns=TIMETABLE_COLUMNS)
    df['departure_seconds'] = df['departure_seconds'].astype('Int64')
    return df
