from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Operator(str, Enum):
    distinguished = "hiroden"
    other = "other"


@dataclass(frozen=True)
class Agency:
    agency_id: str
    agency_name: str


@dataclass(frozen=True)
class Stop:
    stop_id: str
    stop_name: str
    stop_lat: float
    stop_lon: float


@dataclass(frozen=True)
class Route:
    route_id: str
    agency_id: str
    route_short_name: str = ""
    route_long_name: str = ""


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    trip_headsign: str = ""


@dataclass(frozen=True)
class StopTime:
    trip_id: str
    arrival_time: str
    departure_time: str
    stop_id: str
    stop_sequence: float = 0.0


@dataclass(frozen=True)
class Feed:
    """One loaded GTFS archive.

    - id: archive file name (or the display name given by the caller)
    - is_distinguished_operator: true when any agency name carries the
      configured operator marker; applies to the whole feed
    """

    id: str
    agencies: Tuple[Agency, ...] = ()
    stops: Tuple[Stop, ...] = ()
    routes: Tuple[Route, ...] = ()
    trips: Tuple[Trip, ...] = ()
    stop_times: Tuple[StopTime, ...] = ()
    is_distinguished_operator: bool = False


@dataclass(frozen=True)
class StopMember:
    feed_id: str
    stop_id: str


@dataclass(frozen=True)
class AggregatedStop:
    """A physical stop merged across feeds.

    name/lat/lon belong to the first stop matched into the aggregate and are
    never moved towards later members.
    """

    id: str
    name: str
    lat: float
    lon: float
    normalized_name: str
    members: Tuple[StopMember, ...]

    def stop_ids_for(self, feed_id: str) -> Tuple[str, ...]:
        return tuple(m.stop_id for m in self.members if m.feed_id == feed_id)


@dataclass(frozen=True)
class TimetableRow:
    operator: Operator
    agency_name: str
    route: str
    headsign: str
    departure_time: str
