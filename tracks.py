"""Track records shared by the resolver, the cache and the CLI.

Everything that arrives from outside (API payloads, legacy cache entries,
feed attributes) passes through ``normalize_guid`` / ``normalize_duration``
before it reaches these types.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

FEED_NOT_FOUND = "feed-not-found"
ITEM_NOT_FOUND = "item-not-found"
INCOMPLETE_METADATA = "incomplete-metadata"
RATE_LIMITED = "rate-limited"
NETWORK_ERROR = "network-error"

UNRESOLVED_REASONS = (
    FEED_NOT_FOUND,
    ITEM_NOT_FOUND,
    INCOMPLETE_METADATA,
    RATE_LIMITED,
    NETWORK_ERROR,
)

TrackKey = Tuple[str, str]

_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")


def normalize_guid(value: Any) -> Optional[str]:
    """Return a trimmed GUID string from a plain or ``{"_": guid}`` wrapped value."""
    if isinstance(value, dict):
        value = value.get("_")
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def make_key(feed_guid: Any, item_guid: Any) -> Optional[TrackKey]:
    feed = normalize_guid(feed_guid)
    item = normalize_guid(item_guid)
    if not feed or not item:
        return None
    return feed.casefold(), item.casefold()


def normalize_duration(value: Any) -> int:
    """Convert a duration in any of the shapes seen in the wild to whole seconds.

    Plain numbers are seconds; ``"MM:SS"`` and ``"HH:MM:SS"`` are summed by
    place value. Anything unparseable becomes ``0``.
    """
    if isinstance(value, dict):
        return normalize_duration(value.get("_"))
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if value != value or value < 0:  # NaN or negative
            return 0
        return int(round(value))
    if not isinstance(value, str):
        return 0

    text = value.strip()
    if not text:
        return 0
    if _NUMERIC_RE.match(text):
        return int(round(float(text)))

    parts = text.split(":")
    if len(parts) not in (2, 3):
        return 0
    if not all(_NUMERIC_RE.match(part.strip()) for part in parts):
        return 0
    total = 0.0
    for part in parts:
        total = total * 60 + float(part.strip())
    return int(round(total))


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("_")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class RemoteItemRef:
    """A ``podcast:remoteItem`` pair pointing at an item in another feed."""

    feed_guid: str
    item_guid: str

    @property
    def key(self) -> TrackKey:
        return self.feed_guid.casefold(), self.item_guid.casefold()

    @classmethod
    def create(cls, feed_guid: Any, item_guid: Any) -> Optional[RemoteItemRef]:
        feed = normalize_guid(feed_guid)
        item = normalize_guid(item_guid)
        if not feed or not item:
            return None
        return cls(feed_guid=feed, item_guid=item)

    def __str__(self) -> str:
        return f"({self.feed_guid}, {self.item_guid})"


@dataclass
class ResolvedTrack:
    feed_guid: str
    item_guid: str
    title: Optional[str] = None
    artist: Optional[str] = None
    audio_url: Optional[str] = None
    artwork_url: Optional[str] = None
    duration_seconds: int = 0
    feed_title: Optional[str] = None

    @property
    def key(self) -> TrackKey:
        return self.feed_guid.casefold(), self.item_guid.casefold()

    @property
    def ref(self) -> RemoteItemRef:
        return RemoteItemRef(self.feed_guid, self.item_guid)

    @property
    def is_placeholder(self) -> bool:
        return not self.title and not self.audio_url

    @property
    def needs_resolution(self) -> bool:
        return not self.title or not self.audio_url

    @classmethod
    def placeholder(cls, ref: RemoteItemRef) -> ResolvedTrack:
        return cls(feed_guid=ref.feed_guid, item_guid=ref.item_guid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feedGuid": self.feed_guid,
            "itemGuid": self.item_guid,
            "title": self.title,
            "artist": self.artist,
            "audioUrl": self.audio_url,
            "artworkUrl": self.artwork_url,
            "durationSeconds": self.duration_seconds,
            "feedTitle": self.feed_title,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional[ResolvedTrack]:
        """Build a record from a cache entry, accepting legacy field names."""
        feed_guid = normalize_guid(payload.get("feedGuid"))
        item_guid = normalize_guid(payload.get("itemGuid")) or normalize_guid(payload.get("episodeGuid"))
        if not feed_guid or not item_guid:
            return None

        if "durationSeconds" in payload:
            duration = normalize_duration(payload.get("durationSeconds"))
        else:
            duration = normalize_duration(payload.get("duration"))

        return cls(
            feed_guid=feed_guid,
            item_guid=item_guid,
            title=_clean_text(payload.get("title")),
            artist=_clean_text(payload.get("artist")),
            audio_url=_clean_text(payload.get("audioUrl")) or _clean_text(payload.get("enclosureUrl")),
            artwork_url=_clean_text(payload.get("artworkUrl")) or _clean_text(payload.get("image")),
            duration_seconds=duration,
            feed_title=_clean_text(payload.get("feedTitle")),
        )


@dataclass(frozen=True)
class Unresolved:
    """Terminal failure for a single pair; never raised, only returned."""

    ref: RemoteItemRef
    reason: str
    detail: Optional[str] = None

    def __post_init__(self) -> None:
        if self.reason not in UNRESOLVED_REASONS:
            raise ValueError(f"Unknown unresolved reason: {self.reason!r}")


ResolutionResult = Union[ResolvedTrack, Unresolved]
