import json

import pytest

from conftest import FIXTURES, NEON_HAWK_FEED_GUID, NEON_HAWK_ITEM_GUID, FakeResponse, FakeSession
from remote_items import (
    SourceError,
    load_source,
    parse_remote_items,
    parse_remote_items_json,
    parse_remote_items_text,
    unique_refs,
)
from tracks import RemoteItemRef


def test_feed_fixture_yields_channel_and_item_level_pairs():
    refs = parse_remote_items((FIXTURES / "playlist_feed.xml").read_bytes())

    assert len(refs) == 4
    assert refs[0] == RemoteItemRef(NEON_HAWK_FEED_GUID, NEON_HAWK_ITEM_GUID)
    assert [ref.item_guid for ref in unique_refs(refs)] == [
        NEON_HAWK_ITEM_GUID,
        "aad6e3b1-6589-4e22-b8ca-521f3d888263",
        "52007112-2772-42f9-957a-a93eaeedb222",
    ]


def test_broken_xml_falls_back_to_text_scan():
    broken = (
        b'<rss><channel><podcast:remoteItem feedGuid="feed-a" itemGuid="item-a"/>\n'
        b"<podcast:remoteItem\n  itemGuid='item-b'\n  feedGuid='feed-b' />"
    )
    refs = parse_remote_items(broken)
    assert refs == [RemoteItemRef("feed-a", "item-a"), RemoteItemRef("feed-b", "item-b")]


def test_text_scan_reads_plain_lines():
    text = 'feedGuid="f1" itemGuid="i1"\nnothing here\nfeedGuid="f2"\n'
    assert parse_remote_items_text(text) == [RemoteItemRef("f1", "i1")]


def test_json_batch_accepts_list_or_wrapped_object():
    pairs = [{"feedGuid": "f1", "itemGuid": "i1"}, {"feedGuid": "f2"}, "junk"]
    assert parse_remote_items_json(pairs) == [RemoteItemRef("f1", "i1")]
    assert parse_remote_items_json({"remoteItems": pairs}) == [RemoteItemRef("f1", "i1")]
    with pytest.raises(SourceError):
        parse_remote_items_json("f1,i1")


def test_load_source_reads_json_batch_files(tmp_path):
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps([{"feedGuid": "f1", "itemGuid": "i1"}]), encoding="utf-8")
    assert load_source(str(batch)) == [RemoteItemRef("f1", "i1")]


def test_load_source_rejects_invalid_json(tmp_path):
    batch = tmp_path / "batch.json"
    batch.write_text("[{", encoding="utf-8")
    with pytest.raises(SourceError):
        load_source(str(batch))


def test_load_source_reports_missing_files(tmp_path):
    with pytest.raises(SourceError):
        load_source(str(tmp_path / "missing.xml"))


def test_load_source_fetches_feed_urls():
    content = (FIXTURES / "playlist_feed.xml").read_bytes()
    session = FakeSession({"feed.xml": [FakeResponse(200, content=content)]})
    refs = load_source("https://example.com/feed.xml", session=session, user_agent="tests/1.0")
    assert len(refs) == 4
    assert session.calls[0]["headers"] == {"User-Agent": "tests/1.0"}


def test_load_source_surfaces_http_failures():
    session = FakeSession({"feed.xml": [FakeResponse(500)]})
    with pytest.raises(SourceError):
        load_source("https://example.com/feed.xml", session=session)
