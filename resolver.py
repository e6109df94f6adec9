"""Resolve remote-item pairs into track metadata via the Podcast Index."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from podcast_index import PodcastIndexClient, PodcastIndexError, RateLimitedError, status_ok
from tracks import (
    FEED_NOT_FOUND,
    INCOMPLETE_METADATA,
    ITEM_NOT_FOUND,
    NETWORK_ERROR,
    RATE_LIMITED,
    RemoteItemRef,
    ResolutionResult,
    ResolvedTrack,
    Unresolved,
    normalize_duration,
    normalize_guid,
)

LOG = logging.getLogger("resolver")


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        text = _text(value)
        if text:
            return text
    return None


def _feed_id(feed: Dict[str, Any]) -> Optional[int]:
    raw = feed.get("id")
    if isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _episode_from_payload(payload: Optional[Dict[str, Any]], item_guid: str) -> Optional[Dict[str, Any]]:
    """Pick the episode for ``item_guid`` out of an ``episode`` or ``items`` payload."""
    if not payload or not status_ok(payload):
        return None
    episode = payload.get("episode")
    if isinstance(episode, list):
        episode = episode[0] if episode else None
    if isinstance(episode, dict) and episode:
        return episode

    items = payload.get("items")
    if not isinstance(items, list):
        return None
    wanted = item_guid.casefold()
    for item in items:
        if not isinstance(item, dict):
            continue
        guid = normalize_guid(item.get("guid"))
        if guid and guid.casefold() == wanted:
            return item
    return None


def build_track(ref: RemoteItemRef, feed: Dict[str, Any], episode: Dict[str, Any]) -> ResolvedTrack:
    feed_title = _first_text(feed.get("title"), episode.get("feedTitle"))
    return ResolvedTrack(
        feed_guid=ref.feed_guid,
        item_guid=ref.item_guid,
        title=_text(episode.get("title")),
        artist=_first_text(feed.get("author"), episode.get("feedAuthor"), feed_title),
        audio_url=_text(episode.get("enclosureUrl")),
        artwork_url=_first_text(
            episode.get("image"),
            episode.get("feedImage"),
            feed.get("artwork"),
            feed.get("image"),
        ),
        duration_seconds=normalize_duration(episode.get("duration")),
        feed_title=feed_title,
    )


class TrackResolver:
    def __init__(
        self,
        client: PodcastIndexClient,
        *,
        episode_list_fallback: bool = True,
        episode_list_max: int = 1000,
    ) -> None:
        self.client = client
        self.episode_list_fallback = episode_list_fallback
        self.episode_list_max = episode_list_max

    def resolve_track(self, feed_guid: str, item_guid: str) -> ResolutionResult:
        ref = RemoteItemRef.create(feed_guid, item_guid)
        if ref is None:
            raise ValueError(f"Both GUIDs are required, got feedGuid={feed_guid!r} itemGuid={item_guid!r}")
        return self.resolve(ref)

    def resolve(self, ref: RemoteItemRef) -> ResolutionResult:
        try:
            return self._resolve(ref)
        except RateLimitedError as exc:
            return Unresolved(ref, RATE_LIMITED, str(exc))
        except (requests.RequestException, PodcastIndexError) as exc:
            return Unresolved(ref, NETWORK_ERROR, str(exc))

    def _resolve(self, ref: RemoteItemRef) -> ResolutionResult:
        status, payload = self.client.podcast_by_guid(ref.feed_guid)
        feed = payload.get("feed") if payload and status_ok(payload) else None
        if status != 200 or not isinstance(feed, dict) or not feed:
            return Unresolved(ref, FEED_NOT_FOUND, f"feed lookup answered HTTP {status}")

        feed_id = _feed_id(feed)
        status, payload = self.client.episode_by_guid(
            ref.item_guid,
            feed_id=feed_id,
            feed_guid=ref.feed_guid,
        )
        if status != 200:
            return Unresolved(ref, ITEM_NOT_FOUND, f"episode lookup answered HTTP {status}")

        episode = _episode_from_payload(payload, ref.item_guid)
        if episode is None and self.episode_list_fallback and feed_id is not None:
            LOG.debug("Episode %s not returned directly; scanning episodes of feed %s.", ref.item_guid, feed_id)
            status, payload = self.client.episodes_by_feed_id(feed_id, max_items=self.episode_list_max)
            if status == 200:
                episode = _episode_from_payload(payload, ref.item_guid)
        if episode is None:
            return Unresolved(ref, ITEM_NOT_FOUND, "feed found but it has no matching episode")

        track = build_track(ref, feed, episode)
        if track.is_placeholder:
            return Unresolved(ref, INCOMPLETE_METADATA, "episode has neither a title nor an enclosure URL")
        return track


@dataclass
class BatchReport:
    resolved: List[ResolvedTrack] = field(default_factory=list)
    unresolved: List[Unresolved] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.resolved) + len(self.unresolved)

    def failure_counts(self) -> Dict[str, int]:
        return dict(Counter(item.reason for item in self.unresolved))


def resolve_batch(
    resolver: TrackResolver,
    refs: Iterable[RemoteItemRef],
    *,
    on_result: Optional[Callable[[ResolutionResult], None]] = None,
) -> BatchReport:
    """Resolve pairs one at a time; failures are logged and the loop moves on."""
    report = BatchReport()
    for ref in refs:
        result = resolver.resolve(ref)
        if isinstance(result, Unresolved):
            LOG.warning(
                "Unresolved feedGuid=%s itemGuid=%s: %s (%s)",
                ref.feed_guid,
                ref.item_guid,
                result.reason,
                result.detail or "no detail",
            )
            report.unresolved.append(result)
        else:
            LOG.info("Resolved '%s' by %s (%s)", result.title, result.artist or "Unknown Artist", ref)
            report.resolved.append(result)
        if on_result is not None:
            on_result(result)
    return report
