from __future__ import annotations

import asyncio
import io
import logging
import zipfile
import zlib
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx

from timetable_studio.common.config import Settings, get_settings
from timetable_studio.common.errors import LoadError, ParseError
from timetable_studio.common.models import Agency, Feed, Route, Stop, StopTime, Trip
from timetable_studio.ingest.csv_parser import CsvRecord, parse_csv
from timetable_studio.processing.utils import parse_float

AGENCY_FILE = "agency.txt"
STOPS_FILE = "stops.txt"
ROUTES_FILE = "routes.txt"
TRIPS_FILE = "trips.txt"
STOP_TIMES_FILE = "stop_times.txt"

DEFAULT_TIMEOUT_SECS = 30.0

FeedSource = Union[str, Path, Tuple[bytes, str]]

logger = logging.getLogger(__name__)


def _read_member(zf: zipfile.ZipFile, name: str) -> Optional[bytes]:
    try:
        info = zf.getinfo(name)
    except KeyError:
        return None
    return zf.read(info)


async def _member_records(zf: zipfile.ZipFile, name: str, source_id: str) -> List[CsvRecord]:
    try:
        content = await asyncio.to_thread(_read_member, zf, name)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, NotImplementedError, RuntimeError, OSError, EOFError) as exc:
        raise LoadError(source_id, f"cannot decompress {name}: {exc}", exc) from exc
    if content is None:
        logger.debug("%s: %s not present", source_id, name)
        return []
    try:
        return parse_csv(content)
    except ParseError as exc:
        logger.warning("%s: skipping %s: %s", source_id, name, exc)
        return []


def _read_agencies(records: List[CsvRecord]) -> Tuple[Agency, ...]:
    return tuple(
        Agency(agency_id=r.get("agency_id", ""), agency_name=r.get("agency_name", ""))
        for r in records
    )


def _read_stops(records: List[CsvRecord], source_id: str) -> Tuple[Stop, ...]:
    stops = []
    for r in records:
        lat = parse_float(r.get("stop_lat", ""))
        lon = parse_float(r.get("stop_lon", ""))
        if lat is None or lon is None:
            continue
        stops.append(Stop(
            stop_id=r.get("stop_id", ""),
            stop_name=r.get("stop_name", ""),
            stop_lat=lat,
            stop_lon=lon,
        ))
    dropped = len(records) - len(stops)
    if dropped:
        logger.debug("%s: dropped %d stops without numeric coordinates", source_id, dropped)
    return tuple(stops)


def _read_routes(records: List[CsvRecord]) -> Tuple[Route, ...]:
    return tuple(
        Route(
            route_id=r.get("route_id", ""),
            agency_id=r.get("agency_id", ""),
            route_short_name=r.get("route_short_name", ""),
            route_long_name=r.get("route_long_name", ""),
        )
        for r in records
    )


def _read_trips(records: List[CsvRecord]) -> Tuple[Trip, ...]:
    return tuple(
        Trip(
            trip_id=r.get("trip_id", ""),
            route_id=r.get("route_id", ""),
            service_id=r.get("service_id", ""),
            trip_headsign=r.get("trip_headsign", ""),
        )
        for r in records
    )


def _read_stop_times(records: List[CsvRecord], source_id: str) -> Tuple[StopTime, ...]:
    stop_times = []
    for r in records:
        trip_id = r.get("trip_id", "")
        stop_id = r.get("stop_id", "")
        if not trip_id or not stop_id:
            continue
        sequence = parse_float(r.get("stop_sequence", ""))
        stop_times.append(StopTime(
            trip_id=trip_id,
            arrival_time=r.get("arrival_time", ""),
            departure_time=r.get("departure_time", ""),
            stop_id=stop_id,
            stop_sequence=0.0 if sequence is None else sequence,
        ))
    dropped = len(records) - len(stop_times)
    if dropped:
        logger.debug("%s: dropped %d stop_times without trip_id or stop_id", source_id, dropped)
    return tuple(stop_times)


def is_distinguished(agencies: Iterable[Agency], marker: str) -> bool:
    return any(marker in a.agency_name for a in agencies)


async def load_feed(archive: bytes, source_id: str, settings: Optional[Settings] = None) -> Feed:
    """Load one GTFS zip archive into a Feed.

    Member files are extracted one after another. Missing or undecodable
    members give empty tables; an archive that cannot be opened, or a member
    that fails to decompress, raises LoadError.
    """
    settings = settings or get_settings()
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError, TypeError) as exc:
        raise LoadError(source_id, f"cannot open archive: {exc}", exc) from exc

    with zf:
        agencies = _read_agencies(await _member_records(zf, AGENCY_FILE, source_id))
        stops = _read_stops(await _member_records(zf, STOPS_FILE, source_id), source_id)
        routes = _read_routes(await _member_records(zf, ROUTES_FILE, source_id))
        trips = _read_trips(await _member_records(zf, TRIPS_FILE, source_id))
        stop_times = _read_stop_times(await _member_records(zf, STOP_TIMES_FILE, source_id), source_id)

    return Feed(
        id=source_id,
        agencies=agencies,
        stops=stops,
        routes=routes,
        trips=trips,
        stop_times=stop_times,
        is_distinguished_operator=is_distinguished(agencies, settings.operator_marker),
    )


async def load_feed_from_path(path: Union[str, Path], settings: Optional[Settings] = None,
                              source_id: Optional[str] = None) -> Feed:
    path = Path(path)
    source_id = source_id or path.name
    try:
        archive = await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        raise LoadError(source_id, f"cannot read {path}: {exc}", exc) from exc
    return await load_feed(archive, source_id, settings)


async def fetch_feed_archive(url: str, client: Optional[httpx.AsyncClient] = None,
                             timeout: float = DEFAULT_TIMEOUT_SECS) -> bytes:
    """Download a feed archive; any HTTP or transport failure becomes LoadError."""
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(timeout, pool=None), follow_redirects=True)
    try:
        response = await client.get(url)
        response.raise_for_status()
        return response.content
    except httpx.HTTPError as exc:
        raise LoadError(url, f"download failed: {exc}", exc) from exc
    finally:
        if owns_client:
            await client.aclose()


def source_id_for_url(url: str) -> str:
    name = httpx.URL(url).path.rstrip("/").rsplit("/", 1)[-1]
    return name or url


async def load_feed_from_url(url: str, client: Optional[httpx.AsyncClient] = None,
                             settings: Optional[Settings] = None) -> Feed:
    archive = await fetch_feed_archive(url, client=client)
    return await load_feed(archive, source_id_for_url(url), settings)


def unique_feed_ids(names: Sequence[str]) -> List[str]:
    seen: Dict[str, int] = {}
    ids = []
    for name in names:
        count = seen.get(name, 0) + 1
        seen[name] = count
        ids.append(name if count == 1 else f"{name}#{count}")
    return ids


def _source_name(source: FeedSource) -> str:
    if isinstance(source, tuple):
        return source[1]
    return Path(source).name


async def _load_source(source: FeedSource, source_id: str, settings: Settings) -> Feed:
    if isinstance(source, tuple):
        return await load_feed(source[0], source_id, settings)
    return await load_feed_from_path(source, settings, source_id=source_id)


async def load_feeds(sources: Sequence[FeedSource], settings: Optional[Settings] = None,
                     preserve_order: bool = True, silent: bool = True) -> Tuple[List[Feed], List[LoadError]]:
    """Load several archives concurrently.

    With preserve_order the feeds come back in the order of `sources`;
    otherwise in the order their loads complete. Failed loads are collected
    in the error list and do not affect the others.
    """
    settings = settings or get_settings()
    ids = unique_feed_ids([_source_name(s) for s in sources])
    tasks = [asyncio.ensure_future(_load_source(s, i, settings)) for s, i in zip(sources, ids)]

    feeds: List[Feed] = []
    errors: List[LoadError] = []

    def collect(result: Union[Feed, BaseException]) -> None:
        if isinstance(result, LoadError):
            errors.append(result)
            if not silent:
                print(f"Failed to load feed {result.source_id}: {result}")
        elif isinstance(result, BaseException):
            raise result
        else:
            feeds.append(result)
            if not silent:
                print(f"Loaded feed {result.id} ({len(result.stops)} stops, {len(result.stop_times)} stop times)")

    if preserve_order:
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            collect(result)
    else:
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    collect(await next_done)
                except LoadError as exc:
                    collect(exc)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    return feeds, errors


def summarize_feed(feed: Feed) -> Dict[str, Union[str, int, bool]]:
    return {
        "id": feed.id,
        "agencies": len(feed.agencies),
        "stops": len(feed.stops),
        "routes": len(feed.routes),
        "trips": len(feed.trips),
        "stop_times": len(feed.stop_times),
        "distinguished": feed.is_distinguished_operator,
    }
