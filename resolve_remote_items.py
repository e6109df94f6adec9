#!/usr/bin/env python3
"""Resolve podcast:remoteItem references into the local track cache via the Podcast Index."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import List, Optional, Sequence

import requests
from rich.logging import RichHandler
from tqdm import tqdm

from config import ConfigurationError, Settings, get_settings
from podcast_index import PodcastIndexClient, RateLimitGuard
from remote_items import SourceError, load_source, unique_refs
from resolver import BatchReport, TrackResolver, resolve_batch
from track_cache import CacheError, TrackCache
from tracks import RemoteItemRef, ResolvedTrack

LOG = logging.getLogger("resolve_remote_items")


def configure_logging(settings: Settings, verbose: bool, debug: bool) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if verbose and not debug:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    handler = RichHandler(rich_tracebacks=False, markup=False)
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s", force=True)


def build_resolver(settings: Settings, session: Optional[requests.Session] = None) -> TrackResolver:
    api_key, api_secret = settings.require_credentials()
    guard = RateLimitGuard(settings.request_interval, settings.rate_limit_cooldown)
    client = PodcastIndexClient(
        api_key,
        api_secret,
        base_url=settings.base_url,
        user_agent=settings.user_agent,
        timeout=settings.request_timeout,
        guard=guard,
        session=session,
    )
    return TrackResolver(
        client,
        episode_list_fallback=settings.episode_list_fallback,
        episode_list_max=settings.episode_list_max,
    )


def collect_refs(
    sources: Sequence[str],
    cached: Sequence[ResolvedTrack],
    settings: Settings,
    *,
    refresh: bool,
) -> tuple[List[RemoteItemRef], List[RemoteItemRef]]:
    """Return (discovered, pending): every pair found in the sources and the ones to resolve now."""
    cached_by_key = {track.key: track for track in cached}

    if not sources:
        pending = list(unique_refs(track.ref for track in cached if refresh or track.needs_resolution))
        return [], pending

    discovered: List[RemoteItemRef] = []
    session = requests.Session()
    for source in sources:
        discovered.extend(
            load_source(
                source,
                session=session,
                timeout=settings.request_timeout,
                user_agent=settings.user_agent,
            )
        )
    discovered = list(unique_refs(discovered))

    pending = []
    for ref in discovered:
        existing = cached_by_key.get(ref.key)
        if existing is not None and not existing.needs_resolution and not refresh:
            LOG.debug("Already resolved %s; skipping.", ref)
            continue
        pending.append(ref)
    return discovered, pending


def run(args: argparse.Namespace, settings: Settings, session: Optional[requests.Session] = None) -> int:
    start_time = time.perf_counter()

    try:
        resolver = build_resolver(settings, session=session)
    except ConfigurationError as exc:
        LOG.error("Configuration error: %s", exc)
        return 1

    cache = TrackCache(settings.track_cache_file, settings.backup_dir)
    try:
        cached = cache.load_tracks()
    except CacheError as exc:
        LOG.error("%s", exc)
        return 1

    try:
        discovered, pending = collect_refs(args.sources, cached, settings, refresh=args.refresh)
    except SourceError as exc:
        LOG.error("%s", exc)
        return 1

    LOG.info(
        "Cache %s holds %d track(s); %d pair(s) to resolve.",
        settings.track_cache_file,
        len(cached),
        len(pending),
    )

    progress = tqdm(total=len(pending), desc="Resolving", unit="track") if args.progress else None
    try:
        report = resolve_batch(
            resolver,
            pending,
            on_result=(lambda _result: progress.update(1)) if progress is not None else None,
        )
    finally:
        if progress is not None:
            progress.close()

    if args.dry_run:
        for track in report.resolved:
            LOG.info("[dry-run] %s - %s (%ss) %s", track.artist, track.title, track.duration_seconds, track.audio_url)
    else:
        try:
            cache.merge_resolved(report.resolved, placeholders=discovered)
        except CacheError as exc:
            LOG.error("%s", exc)
            return 1

    log_summary(report, resolver, len(args.sources), time.perf_counter() - start_time)
    return 0


def log_summary(report: BatchReport, resolver: TrackResolver, sources: int, elapsed: float) -> None:
    failures = report.failure_counts()
    failure_text = ", ".join(f"{reason}={count}" for reason, count in sorted(failures.items())) or "none"
    LOG.info(
        "Summary: sources=%d, pairs=%d, resolved=%d, unresolved=%d (%s), api_calls=%d, elapsed=%.2fs",
        sources,
        report.total,
        len(report.resolved),
        len(report.unresolved),
        failure_text,
        resolver.client.api_calls,
        elapsed,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve podcast:remoteItem feedGuid/itemGuid pairs into the local track cache."
    )
    parser.add_argument(
        "sources",
        nargs="*",
        help="Feed XML files, feed URLs, text dumps or JSON batch files. "
        "Without sources, unresolved cache entries are retried.",
    )
    parser.add_argument("--refresh", action="store_true", help="Re-resolve pairs that are already resolved.")
    parser.add_argument("--dry-run", action="store_true", help="Resolve but do not write the cache.")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar while resolving.")
    parser.add_argument("--verbose", action="store_true", help="Enable informational logging.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = get_settings()
    except (RuntimeError, ValueError) as exc:
        logging.basicConfig(level=logging.ERROR, handlers=[RichHandler(markup=False)], force=True)
        LOG.error("Configuration error: %s", exc)
        return 1
    configure_logging(settings, verbose=args.verbose, debug=args.debug)
    return run(args, settings)


if __name__ == "__main__":
    sys.exit(main())

# Required
# PODCAST_INDEX_API_KEY=YOUR_KEY
# PODCAST_INDEX_API_SECRET=YOUR_SECRET

# Defaults (can override)
# PODCAST_INDEX_BASE_URL=https://api.podcastindex.org/api/1.0
# PODCAST_INDEX_REQUEST_INTERVAL=1.0
# PODCAST_INDEX_COOLDOWN=30
# PODCAST_INDEX_TIMEOUT=15
# TRACK_CACHE_FILE=data/resolved-tracks.json
# TRACK_BACKUP_DIR=data
# EPISODE_LIST_FALLBACK=true
# EPISODE_LIST_MAX=1000
# LOG_LEVEL=INFO
