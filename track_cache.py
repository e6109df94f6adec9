"""Flat JSON cache of resolved tracks keyed by (feedGuid, itemGuid)."""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, Iterable, List, Optional

from tracks import RemoteItemRef, ResolvedTrack, TrackKey, make_key

LOG = logging.getLogger("track_cache")

# Older field names that the canonical camelCase fields supersede on update.
LEGACY_ALIASES = ("episodeGuid", "enclosureUrl", "image", "duration")


class CacheError(Exception):
    """Raised when the cache file cannot be read or written."""


class CacheReadError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


@dataclass
class MergeResult:
    updated: int
    added: int
    total: int
    backup_path: Optional[Path]


class TrackCache:
    def __init__(self, path: Path, backup_dir: Optional[Path] = None) -> None:
        self.path = path
        self.backup_dir = backup_dir or path.parent

    def load_entries(self) -> List[Any]:
        """Return the raw cache array; a missing file is an empty cache.

        Non-object elements are returned as-is so a merge can write them back in place.
        """
        if not self.path.exists():
            LOG.debug("Cache %s does not exist yet; starting empty.", self.path)
            return []
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise CacheReadError(f"Failed to read cache {self.path}: {exc}") from exc
        if not isinstance(payload, list):
            raise CacheReadError(f"Cache file {self.path} did not contain a JSON array.")
        LOG.debug("Loaded %d cache entries from %s", len(payload), self.path)
        return payload

    def load_tracks(self) -> List[ResolvedTrack]:
        tracks: List[ResolvedTrack] = []
        entries = self.load_entries()
        skipped = sum(1 for entry in entries if not isinstance(entry, dict))
        if skipped:
            LOG.warning("Ignoring %d non-object entries in %s", skipped, self.path)
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            track = ResolvedTrack.from_dict(entry)
            if track is None:
                LOG.debug("Skipping cache entry without both GUIDs: %s", entry)
                continue
            tracks.append(track)
        return tracks

    def merge_resolved(
        self,
        records: Iterable[ResolvedTrack],
        placeholders: Iterable[RemoteItemRef] = (),
    ) -> MergeResult:
        """Replace entries with matching keys, append new ones, back up, then write atomically.

        ``placeholders`` are pairs discovered in a feed; they are appended only
        when neither the cache nor ``records`` already holds the pair.
        """
        incoming: Dict[TrackKey, ResolvedTrack] = {}
        for record in records:
            incoming[record.key] = record
        pending: Dict[TrackKey, ResolvedTrack] = {}
        for ref in placeholders:
            if ref.key not in incoming:
                pending.setdefault(ref.key, ResolvedTrack.placeholder(ref))

        entries = self.load_entries()
        merged: List[Any] = []
        seen: set[TrackKey] = set()
        updated = 0
        dropped = 0

        for entry in entries:
            if not isinstance(entry, dict):
                merged.append(entry)
                continue
            key = make_key(entry.get("feedGuid"), entry.get("itemGuid") or entry.get("episodeGuid"))
            if key is not None and key in seen:
                LOG.warning("Dropping duplicate cache entry for %s", key)
                dropped += 1
                continue
            if key is not None:
                seen.add(key)
            if key is not None and key in incoming:
                replacement = {name: value for name, value in entry.items() if name not in LEGACY_ALIASES}
                replacement.update(incoming[key].to_dict())
                merged.append(replacement)
                updated += 1
            else:
                merged.append(entry)

        added = 0
        for key, record in list(incoming.items()) + list(pending.items()):
            if key in seen:
                continue
            seen.add(key)
            merged.append(record.to_dict())
            added += 1

        if not updated and not added and not dropped:
            LOG.debug("Nothing to merge into %s", self.path)
            return MergeResult(updated=0, added=0, total=len(merged), backup_path=None)

        backup_path = self.write_backup()
        self._write_atomic(merged)
        LOG.info("Wrote %d tracks to %s (updated=%d, added=%d)", len(merged), self.path, updated, added)
        return MergeResult(updated=updated, added=added, total=len(merged), backup_path=backup_path)

    def write_backup(self) -> Optional[Path]:
        if not self.path.exists():
            return None
        stamp = int(time.time() * 1000)
        backup_path = self.backup_dir / f"{self.path.stem}.backup-{stamp}{self.path.suffix}"
        counter = 1
        while backup_path.exists():
            backup_path = self.backup_dir / f"{self.path.stem}.backup-{stamp}-{counter}{self.path.suffix}"
            counter += 1
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.path, backup_path)
        except OSError as exc:
            raise CacheWriteError(f"Failed to back up {self.path} to {backup_path}: {exc}") from exc
        LOG.debug("Backed up %s to %s", self.path, backup_path)
        return backup_path

    def _write_atomic(self, entries: List[Any]) -> None:
        temp_name: Optional[str] = None
        replaced = False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                "w", encoding="utf-8", delete=False, dir=str(self.path.parent), suffix=".tmp"
            ) as tmp:
                temp_name = tmp.name
                json.dump(entries, tmp, indent=2, ensure_ascii=False)
                tmp.write("\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(temp_name, self.path)
            replaced = True
        except (OSError, TypeError, ValueError) as exc:
            raise CacheWriteError(f"Failed to write cache {self.path}: {exc}") from exc
        finally:
            if temp_name is not None and not replaced:
                try:
                    os.unlink(temp_name)
                except FileNotFoundError:
                    pass
