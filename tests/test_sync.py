"""Tests for the incremental sync engine, driven by a scripted client."""
import datetime

import pytest
from sqlalchemy.exc import OperationalError

from conftest import (
    T0, FakeClient, assignment_payload, collection_payload, kanji_payload, page, radical_payload,
    user_payload,
)
from wani_cache import cache_info, codec
from wani_cache.cache_info import CacheInfo, ResourceClass
from wani_cache.client import HttpError, NotModified, RateLimited, Unauthorized
from wani_cache.errors import AuthError, StoreError, TransportError
from wani_cache.resources import RateLimit
from wani_cache.sync import POLICIES, Outcome, sync_all, sync_class

NOW = T0 + datetime.timedelta(days=1)


def _kanji_ids(conn):
    return sorted(k.id for k in codec.read_all(conn, codec.KANJI))


# ── Conditional requests ──────────────────────────────────────────

def test_policy_request_args():
    info = CacheInfo(etag='"e"', last_modified="Mon, 01 Jan 2024 12:00:00 GMT", updated_after=T0)
    assert POLICIES[ResourceClass.SUBJECTS].request_args(info) == {"etag": '"e"', "updated_after": T0}
    assert POLICIES[ResourceClass.ASSIGNMENTS].request_args(info) == {"updated_after": T0}
    assert POLICIES[ResourceClass.USER].request_args(info) == {
        "if_modified_since": "Mon, 01 Jan 2024 12:00:00 GMT"}
    assert POLICIES[ResourceClass.SUBJECTS].request_args(cache_info.EMPTY) == {}


def test_not_modified_short_circuits(conn):
    info = CacheInfo(etag='"e"', updated_after=T0)
    cache_info.advance(conn, ResourceClass.SUBJECTS, etag='"e"', updated_after=T0)
    client = FakeClient({"subjects": [NotModified()]})
    result, new_info = sync_class(conn, client, ResourceClass.SUBJECTS, info, now=NOW)
    assert result.outcome is Outcome.NOT_MODIFIED
    assert new_info == info
    assert client.calls == [("subjects", {"etag": '"e"', "updated_after": T0})]
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS] == info
    assert _kanji_ids(conn) == []


# ── Full and partial drains ───────────────────────────────────────

def test_full_drain_advances_watermark(conn):
    client = FakeClient({"subjects": [
        page(collection_payload([radical_payload(id=1), kanji_payload(id=440)],
                                next_url="https://next/subjects?page_after_id=440"), etag='"e2"'),
        page(collection_payload([kanji_payload(id=441)])),
    ]})
    result, info = sync_class(conn, client, ResourceClass.SUBJECTS, now=NOW)
    assert result.outcome is Outcome.UPDATED
    assert result.pages == 2
    assert result.written == 3
    assert info == CacheInfo(etag='"e2"', last_modified=None, updated_after=NOW)
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS] == info
    assert _kanji_ids(conn) == [440, 441]
    # Only the first request is conditional.
    assert client.calls[1] == ("https://next/subjects?page_after_id=440", {})


def test_failure_on_second_page_keeps_first_and_old_watermark(conn):
    old = CacheInfo(etag='"old"', updated_after=T0)
    cache_info.advance(conn, ResourceClass.SUBJECTS, etag='"old"', updated_after=T0)
    client = FakeClient({"subjects": [
        page(collection_payload([kanji_payload(id=440)], next_url="https://next/subjects?page_after_id=440"),
             etag='"new"'),
        HttpError(500, "https://next/subjects?page_after_id=440"),
    ]})
    result, info = sync_class(conn, client, ResourceClass.SUBJECTS, old, now=NOW)
    assert result.outcome is Outcome.FAILED
    assert "500" in result.error
    assert info == old
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS] == old
    assert _kanji_ids(conn) == [440]

    # The next run resumes from the old watermark and replays harmlessly.
    client = FakeClient({"subjects": [
        page(collection_payload([kanji_payload(id=440)], next_url="https://next/subjects?page_after_id=440"),
             etag='"new"'),
        page(collection_payload([kanji_payload(id=441)])),
    ]})
    result, info = sync_class(conn, client, ResourceClass.SUBJECTS, old, now=NOW)
    assert client.calls[0][1] == {"etag": '"old"', "updated_after": T0}
    assert result.advanced
    assert _kanji_ids(conn) == [440, 441]


def test_transport_error_is_class_scoped(conn):
    client = FakeClient({"subjects": [TransportError("connection reset")]})
    result, info = sync_class(conn, client, ResourceClass.SUBJECTS, now=NOW)
    assert result.outcome is Outcome.FAILED
    assert info == cache_info.EMPTY


def test_decode_failure_writes_good_records_but_holds_watermark(conn):
    bad = kanji_payload(id=442)
    del bad["data"]["readings"]
    client = FakeClient({"subjects": [page(collection_payload([kanji_payload(id=440), bad]), etag='"e"')]})
    result, info = sync_class(conn, client, ResourceClass.SUBJECTS, now=NOW)
    assert result.outcome is Outcome.INCOMPLETE
    assert result.decode_failures == 1
    assert info == cache_info.EMPTY
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS].is_empty
    assert _kanji_ids(conn) == [440]


def test_store_failure_rolls_back_the_page(conn, monkeypatch):
    def broken_advance(*args, **kwargs):
        raise OperationalError("UPDATE cache_info", {}, Exception("disk I/O error"))

    monkeypatch.setattr(cache_info, "advance", broken_advance)
    client = FakeClient({"subjects": [page(collection_payload([kanji_payload(id=440)]), etag='"e"')]})
    with pytest.raises(StoreError):
        sync_class(conn, client, ResourceClass.SUBJECTS, now=NOW)
    assert _kanji_ids(conn) == []
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS].is_empty


def test_user_is_a_single_resource(conn):
    client = FakeClient({"user": [page(user_payload(), last_modified="Tue, 02 Jan 2024 12:00:00 GMT")]})
    result, info = sync_class(conn, client, ResourceClass.USER, now=NOW)
    assert result.advanced
    assert info.last_modified == "Tue, 02 Jan 2024 12:00:00 GMT"
    assert [u.username for u in codec.read_all(conn, codec.USERS)] == ["tanuki"]


# ── Whole pass ────────────────────────────────────────────────────

def test_auth_error_aborts_the_pass(conn):
    client = FakeClient({"subjects": [Unauthorized()]})
    with pytest.raises(AuthError):
        sync_all(conn, client, now=NOW)


def test_rate_limit_is_class_scoped(conn):
    limit = RateLimit(60, 0, 1700000000)
    client = FakeClient({
        "subjects": [RateLimited(limit)],
        "assignments": [page(collection_payload([assignment_payload(id=42)]))],
    })
    report = sync_all(conn, client, now=NOW)
    assert report.results[ResourceClass.SUBJECTS].outcome is Outcome.RATE_LIMITED
    assert report.results[ResourceClass.ASSIGNMENTS].outcome is Outcome.UPDATED
    assert report.results[ResourceClass.USER].outcome is Outcome.NOT_MODIFIED
    assert not report.ok
    assert report.watermarks[ResourceClass.ASSIGNMENTS].updated_after == NOW
    assert report.watermarks[ResourceClass.SUBJECTS].is_empty
    assert [a.id for a in codec.read_all(conn, codec.ASSIGNMENTS)] == [42]


def test_second_pass_uses_advanced_watermarks(conn):
    first = FakeClient({"assignments": [page(collection_payload([assignment_payload(id=42)]))]})
    sync_all(conn, first, classes=[ResourceClass.ASSIGNMENTS], now=NOW)
    second = FakeClient()
    report = sync_all(conn, second, classes=[ResourceClass.ASSIGNMENTS], now=NOW)
    assert second.calls == [("assignments", {"updated_after": NOW})]
    assert report.ok


def test_force_sync_ignores_but_keeps_watermarks(conn):
    cache_info.advance(conn, ResourceClass.SUBJECTS, etag='"e"', updated_after=T0)
    conn.commit()
    client = FakeClient({"subjects": [HttpError(503, "subjects")]})
    report = sync_all(conn, client, ignore_cache=True, classes=[ResourceClass.SUBJECTS], now=NOW)
    assert client.calls == [("subjects", {})]
    assert report.results[ResourceClass.SUBJECTS].outcome is Outcome.FAILED
    assert cache_info.get_all(conn)[ResourceClass.SUBJECTS].etag == '"e"'
