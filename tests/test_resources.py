"""Tests for wire payload decoding."""
import datetime

import pytest

from conftest import (
    T0, assignment_payload, collection_payload, kana_vocabulary_payload, kanji_payload,
    radical_payload, user_payload, vocabulary_payload,
)
from wani_cache.errors import DecodeError
from wani_cache.resources import (
    Assignment, Collection, KanaVocabulary, Kanji, Radical, RateLimit, Review, ReviewStatus,
    UnknownResource, User, Vocabulary, decode_resource, format_timestamp, parse_timestamp,
)


# ── Tag dispatch ──────────────────────────────────────────────────

def test_decode_each_subject_variant():
    assert isinstance(decode_resource(radical_payload()), Radical)
    assert isinstance(decode_resource(kanji_payload()), Kanji)
    assert isinstance(decode_resource(vocabulary_payload()), Vocabulary)
    assert isinstance(decode_resource(kana_vocabulary_payload()), KanaVocabulary)


def test_kanji_fields():
    kanji = decode_resource(kanji_payload(id=440, level=1))
    assert kanji.id == 440
    assert kanji.characters == "一"
    assert kanji.component_subject_ids == [1]
    assert kanji.readings[0].type == "onyomi"
    assert kanji.aux_meanings[0].accepted
    assert kanji.created_at == T0
    assert not kanji.hidden


def test_radical_without_characters():
    radical = decode_resource(radical_payload(characters=None))
    assert radical.characters is None


def test_unknown_tag_is_inert():
    resource = decode_resource({"id": 7, "object": "study_material", "data": {"whatever": 1}})
    assert isinstance(resource, UnknownResource)
    assert resource.object == "study_material"
    assert resource.id == 7


def test_unrecognised_tag_is_inert():
    resource = decode_resource({"object": "from_the_future", "data": {}})
    assert isinstance(resource, UnknownResource)


def test_user_and_assignment():
    user = decode_resource(user_payload())
    assert isinstance(user, User)
    assert user.subscription["max_level_granted"] == 60
    assignment = decode_resource(assignment_payload(passed_at=None))
    assert isinstance(assignment, Assignment)
    assert assignment.passed_at is None
    assert assignment.available_at == T0 + datetime.timedelta(hours=4)


# ── Malformed payloads ────────────────────────────────────────────

def test_missing_required_field_raises():
    payload = kanji_payload(id=441)
    del payload["data"]["readings"]
    with pytest.raises(DecodeError) as exc:
        decode_resource(payload)
    assert exc.value.object == "kanji"
    assert exc.value.row_id == 441


def test_bad_level_raises():
    with pytest.raises(DecodeError):
        decode_resource(radical_payload(level=0))


def test_bad_enum_raises():
    with pytest.raises(DecodeError):
        decode_resource(assignment_payload(subject_type="grammar"))


def test_timestamp_without_offset_raises():
    with pytest.raises(DecodeError):
        decode_resource(assignment_payload(created_at="2024-01-01T12:00:00"))


def test_non_object_payload_raises():
    with pytest.raises(DecodeError):
        decode_resource(["not", "an", "object"])


def test_collection_keeps_good_items_and_reports_bad_ones():
    bad = kanji_payload(id=2)
    del bad["data"]["characters"]
    collection = decode_resource(collection_payload([kanji_payload(id=1), bad, radical_payload(id=3)]))
    assert isinstance(collection, Collection)
    assert [item.id for item in collection.data] == [1, 3]
    assert len(collection.failures) == 1
    assert collection.failures[0].row_id == 2


def test_collection_next_url():
    collection = decode_resource(collection_payload([], next_url="https://next/subjects?page_after_id=5"))
    assert collection.pages.next_url == "https://next/subjects?page_after_id=5"


# ── Reviews ───────────────────────────────────────────────────────

def test_review_wire_shape():
    review = Review(assignment_id=42, created_at=T0, incorrect_meaning_answers=1, status=ReviewStatus.DONE)
    assert review.is_pending
    assert review.submission_body() == {
        "review": {
            "assignment_id": 42,
            "incorrect_meaning_answers": 1,
            "incorrect_reading_answers": 0,
            "status": "done",
        }
    }


# ── Timestamps and headers ────────────────────────────────────────

def test_timestamp_text_orders_like_time():
    earlier = format_timestamp(datetime.datetime(2024, 1, 1, 9, 0, tzinfo=datetime.UTC))
    later = format_timestamp(datetime.datetime(2024, 1, 1, 10, 0, 0, 1, tzinfo=datetime.UTC))
    assert earlier < later
    assert parse_timestamp(later).microsecond == 1


def test_timestamp_normalised_to_utc():
    parsed = parse_timestamp("2024-01-01T21:00:00+09:00")
    assert parsed == T0
    assert parsed.utcoffset() == datetime.timedelta(0)


def test_format_refuses_naive():
    with pytest.raises(ValueError):
        format_timestamp(datetime.datetime(2024, 1, 1))


def test_rate_limit_from_headers():
    limit = RateLimit.from_headers({"RateLimit-Limit": "60", "RateLimit-Remaining": "0", "RateLimit-Reset": "1700000000"})
    assert limit == RateLimit(60, 0, 1700000000)
    assert RateLimit.from_headers({"RateLimit-Limit": "60"}) is None
    assert RateLimit.from_headers({"RateLimit-Limit": "x", "RateLimit-Remaining": "0", "RateLimit-Reset": "1"}) is None
