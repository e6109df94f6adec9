"""Collect ``podcast:remoteItem`` pairs from feeds, text dumps and JSON batch files."""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional

import requests

from tracks import RemoteItemRef

LOG = logging.getLogger("remote_items")

FEED_GUID_RE = re.compile(r'feedGuid\s*=\s*["\']([^"\']+)["\']')
ITEM_GUID_RE = re.compile(r'itemGuid\s*=\s*["\']([^"\']+)["\']')
REMOTE_ITEM_TAG_RE = re.compile(r"<(?:podcast:)?remoteItem\b[^>]*>", re.I)


class SourceError(Exception):
    """Raised when an input source cannot be read."""


def _local_name(tag: Any) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1].split(":")[-1]


def parse_remote_items_xml(xml_bytes: bytes) -> List[RemoteItemRef]:
    """Return every remoteItem with both GUIDs, in document order.

    Raises ``ET.ParseError`` for documents that are not well-formed.
    """
    root = ET.fromstring(xml_bytes)
    refs: List[RemoteItemRef] = []
    for element in root.iter():
        if _local_name(element.tag) != "remoteItem":
            continue
        ref = RemoteItemRef.create(element.attrib.get("feedGuid"), element.attrib.get("itemGuid"))
        if ref is None:
            LOG.debug("Skipping remoteItem without both GUIDs: %s", element.attrib)
            continue
        refs.append(ref)
    return refs


def parse_remote_items_text(text: str) -> List[RemoteItemRef]:
    """Scan loose text for ``feedGuid="..." itemGuid="..."`` pairs.

    Each remoteItem tag counts once. Text without tags is scanned line by line.
    """
    refs: List[RemoteItemRef] = []
    chunks = REMOTE_ITEM_TAG_RE.findall(text) or text.splitlines()
    for chunk in chunks:
        feed_match = FEED_GUID_RE.search(chunk)
        item_match = ITEM_GUID_RE.search(chunk)
        if not feed_match or not item_match:
            continue
        ref = RemoteItemRef.create(feed_match.group(1), item_match.group(1))
        if ref is not None:
            refs.append(ref)
    return refs


def parse_remote_items_json(payload: Any) -> List[RemoteItemRef]:
    if isinstance(payload, dict):
        payload = payload.get("remoteItems", payload.get("items", []))
    if not isinstance(payload, list):
        raise SourceError("JSON batch must be an array of {feedGuid, itemGuid} objects.")
    refs: List[RemoteItemRef] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        ref = RemoteItemRef.create(entry.get("feedGuid"), entry.get("itemGuid"))
        if ref is None:
            LOG.debug("Skipping batch entry without both GUIDs: %s", entry)
            continue
        refs.append(ref)
    return refs


def parse_remote_items(content: bytes) -> List[RemoteItemRef]:
    """Parse feed XML, falling back to a text scan when the XML is broken."""
    try:
        return parse_remote_items_xml(content)
    except ET.ParseError as exc:
        LOG.debug("Not well-formed XML (%s); scanning as text.", exc)
    return parse_remote_items_text(content.decode("utf-8", errors="replace"))


def fetch_feed(url: str, session: requests.Session, *, timeout: float, user_agent: str) -> bytes:
    try:
        response = session.get(url, headers={"User-Agent": user_agent}, timeout=timeout)
    except requests.RequestException as exc:
        raise SourceError(f"Failed to fetch feed {url}: {exc}") from exc
    if response.status_code != 200:
        raise SourceError(f"Failed to fetch feed {url}: HTTP {response.status_code}")
    return response.content


def load_source(
    source: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 15.0,
    user_agent: str = "remote-item-resolver/1.0",
) -> List[RemoteItemRef]:
    if source.startswith(("http://", "https://")):
        session = session or requests.Session()
        refs = parse_remote_items(fetch_feed(source, session, timeout=timeout, user_agent=user_agent))
    else:
        path = Path(source).expanduser()
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise SourceError(f"Failed to read {path}: {exc}") from exc
        if path.suffix.lower() == ".json":
            try:
                payload = json.loads(content.decode("utf-8"))
            except ValueError as exc:
                raise SourceError(f"Invalid JSON batch {path}: {exc}") from exc
            refs = parse_remote_items_json(payload)
        else:
            refs = parse_remote_items(content)
    LOG.info("Found %d remote item(s) in %s", len(refs), source)
    return refs


def unique_refs(refs: Iterable[RemoteItemRef]) -> Iterator[RemoteItemRef]:
    seen = set()
    for ref in refs:
        if ref.key in seen:
            continue
        seen.add(ref.key)
        yield ref
