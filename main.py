import argparse
import asyncio
import hashlib
import logging
import os
import pickle
import sys
from dataclasses import replace

from timetable_studio.common.config import load_settings
from timetable_studio.common.errors import LoadError
from timetable_studio.common.models import Operator
from timetable_studio.common.perf import PhaseTimer
from timetable_studio.ingest.feed_loader import fetch_feed_archive, load_feed, source_id_for_url, summarize_feed, unique_feed_ids
from timetable_studio.processing.stop_aggregation import aggregate_stops, find_aggregated_stops
from timetable_studio.processing.timetable import build_timetable, group_rows_by_hour, timetable_to_dataframe

cache_dir = ".cache"


def _cache_file(cache_key):
    digest = hashlib.sha1(cache_key).hexdigest()
    return os.path.join(cache_dir, f"feed_{digest}.pkl")


def load_or_parse(source_id, archive, settings, force_ingest=False, silent=False):
    # parsed feeds are cached by archive content and operator marker
    cache_file = _cache_file(archive + settings.operator_marker.encode("utf-8"))
    if not force_ingest and os.path.exists(cache_file):
        if not silent:
            print(f"loading {source_id} from cache...")
        with open(cache_file, 'rb') as f:
            return replace(pickle.load(f), id=source_id)

    if not silent:
        print(f"parsing {source_id}...")
    feed = asyncio.run(load_feed(archive, source_id, settings))
    with open(cache_file, 'wb') as f:
        pickle.dump(feed, f)
    return feed


def print_timetable(stop, rows):
    print(f"\n{stop.name} [{stop.id}] ({stop.lat:.6f}, {stop.lon:.6f})")
    for member in stop.members:
        print(f"  member: {member.feed_id} / {member.stop_id}")
    if not rows:
        print("  no departures")
        return
    grid = group_rows_by_hour(rows)
    for hour, hour_rows in grid.items():
        cells = []
        for row in hour_rows:
            minute = row.departure_time.strip().split(':')[1]
            marker = "*" if row.operator is Operator.distinguished else " "
            cells.append(f"{marker}{minute} {row.route}")
        print(f"  {hour:02d} | " + "  ".join(cells))
    unparsed = len(rows) - sum(len(v) for v in grid.values())
    if unparsed:
        print(f"  ({unparsed} departures with unreadable times)")


def main():
    logging.getLogger('httpx').setLevel(logging.WARNING)
    parser = argparse.ArgumentParser(description="merged bus stop timetables from several gtfs feeds")
    parser.add_argument('feeds', nargs='*', help='gtfs zip archives')
    parser.add_argument('--url', action='append', default=[], help='download a gtfs zip archive (repeatable)')
    parser.add_argument('--stop', help='aggregated stop id or stop name to show')
    parser.add_argument('--list-stops', action='store_true', help='list aggregated stops matching --stop (or all)')
    parser.add_argument('--output', help='write the selected timetable to this csv file')
    parser.add_argument('--config', help='json settings file')
    parser.add_argument('--force-ingest', action='store_true', help='re-parse archives, ignoring cache')
    parser.add_argument('--silent', action='store_true', help='run in silent mode, suppressing progress bars')
    parser.add_argument('--verbose', action='store_true', help='log dropped rows and skipped files')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if not args.feeds and not args.url:
        parser.error("give at least one feed archive or --url")

    settings = load_settings(args.config)

    if not os.path.exists(cache_dir):
        os.makedirs(cache_dir)

    timings = []
    feeds = []
    with PhaseTimer("load feeds", timings, silent=args.silent):
        source_ids = unique_feed_ids([os.path.basename(p) for p in args.feeds] + [source_id_for_url(u) for u in args.url])
        for path, source_id in zip(args.feeds, source_ids):
            try:
                with open(path, 'rb') as f:
                    archive = f.read()
                feeds.append(load_or_parse(source_id, archive, settings, args.force_ingest, args.silent))
            except (OSError, LoadError) as e:
                print(f"Error loading {path}: {e}", file=sys.stderr)
        for url, source_id in zip(args.url, source_ids[len(args.feeds):]):
            try:
                archive = asyncio.run(fetch_feed_archive(url))
                feeds.append(load_or_parse(source_id, archive, settings, args.force_ingest, args.silent))
            except LoadError as e:
                print(f"Error loading {url}: {e}", file=sys.stderr)

    if not feeds:
        print("no feeds loaded", file=sys.stderr)
        return 1

    if not args.silent:
        for feed in feeds:
            summary = summarize_feed(feed)
            print(", ".join(f"{k}: {v}" for k, v in summary.items()))

    with PhaseTimer("aggregate stops", timings, silent=args.silent):
        aggregated = aggregate_stops(feeds, settings, silent=args.silent)

    matches = find_aggregated_stops(aggregated, args.stop, settings) if args.stop else aggregated

    if args.list_stops or not args.stop:
        for stop in matches:
            feed_ids = sorted({m.feed_id for m in stop.members})
            print(f"{stop.id}\t{stop.name}\t{stop.lat:.6f},{stop.lon:.6f}\t{len(stop.members)} members\t{', '.join(feed_ids)}")
        return 0

    if not matches:
        print(f"no stop matches {args.stop!r}", file=sys.stderr)
        return 1
    if len(matches) > 1 and not args.silent:
        print(f"{len(matches)} stops match {args.stop!r}, showing {matches[0].id}")

    selected = matches[0]
    with PhaseTimer("build timetable", timings, silent=args.silent):
        rows = build_timetable(feeds, selected, settings)

    print_timetable(selected, rows)

    if args.output:
        df = timetable_to_dataframe(rows)
        df.to_csv(args.output, index=False, encoding='utf-8-sig')
        if not args.silent:
            print(f"wrote {len(df)} departures to {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
