"""Shared fixtures: a throwaway cache database, payload factories and a scripted client."""
import datetime
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wani_cache.client import NotModified, Page
from wani_cache.db import get_engine, init_db
from wani_cache.errors import RateLimitError
from wani_cache.resources import format_timestamp

T0 = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.UTC)


def ts(hours: float = 0) -> str:
    return format_timestamp(T0 + datetime.timedelta(hours=hours))


@pytest.fixture
def engine(tmp_path, monkeypatch):
    """Fresh, initialized cache file per test."""
    monkeypatch.delenv("WANI_DB", raising=False)
    eng = get_engine(str(tmp_path / "wani_cache.db"))
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def conn(engine):
    with engine.connect() as connection:
        yield connection


# ── Payload factories ─────────────────────────────────────────────

def _subject_data(level: int = 1, **data: Any) -> Dict[str, Any]:
    base = {
        "auxiliary_meanings": [{"meaning": "ground", "type": "whitelist"}],
        "created_at": ts(),
        "document_url": "https://www.wanikani.com/x",
        "hidden_at": None,
        "lesson_position": 0,
        "level": level,
        "meaning_mnemonic": "A <radical>line</radical> on the ground.",
        "meanings": [{"meaning": "One", "primary": True, "accepted_answer": True}],
        "slug": "one",
        "spaced_repetition_system_id": 1,
    }
    base.update(data)
    return base


def radical_payload(id: int = 1, **data: Any) -> Dict[str, Any]:
    body = _subject_data(**data)
    body.setdefault("amalgamation_subject_ids", [440])
    body.setdefault("characters", "一")
    body.setdefault("character_images", [])
    return {"id": id, "object": "radical", "data": body}


def kanji_payload(id: int = 440, **data: Any) -> Dict[str, Any]:
    body = _subject_data(**data)
    body.setdefault("characters", "一")
    body.setdefault("amalgamation_subject_ids", [2467])
    body.setdefault("component_subject_ids", [1])
    body.setdefault("meaning_hint", None)
    body.setdefault("reading_hint", "Think of <ja>一</ja>.")
    body.setdefault("reading_mnemonic", "<reading>Ichi</reading> is one.")
    body.setdefault("readings", [
        {"reading": "いち", "primary": True, "accepted_answer": True, "type": "onyomi"},
        {"reading": "ひと", "primary": False, "accepted_answer": False, "type": "kunyomi"},
    ])
    body.setdefault("visually_similar_subject_ids", [])
    return {"id": id, "object": "kanji", "data": body}


def vocabulary_payload(id: int = 2467, **data: Any) -> Dict[str, Any]:
    body = _subject_data(**data)
    body.setdefault("characters", "一")
    body.setdefault("component_subject_ids", [440])
    body.setdefault("context_sentences", [{"en": "One, please.", "ja": "一つください。"}])
    body.setdefault("parts_of_speech", ["numeral"])
    body.setdefault("pronunciation_audios", [{
        "url": "https://cdn.example/1.mp3",
        "content_type": "audio/mpeg",
        "metadata": {
            "gender": "female", "source_id": 1, "pronunciation": "いち",
            "voice_actor_id": 1, "voice_actor_name": "Kyoko", "voice_description": "Tokyo accent",
        },
    }])
    body.setdefault("readings", [{"reading": "いち", "primary": True, "accepted_answer": True}])
    body.setdefault("reading_mnemonic", "Same as the kanji.")
    return {"id": id, "object": "vocabulary", "data": body}


def kana_vocabulary_payload(id: int = 9001, **data: Any) -> Dict[str, Any]:
    body = _subject_data(**data)
    body.setdefault("characters", "おはよう")
    body.setdefault("context_sentences", [])
    body.setdefault("parts_of_speech", ["expression"])
    body.setdefault("pronunciation_audios", [])
    body["meanings"] = data.get("meanings", [{"meaning": "Good Morning", "primary": True, "accepted_answer": True}])
    return {"id": id, "object": "kana_vocabulary", "data": body}


def assignment_payload(id: int = 42, subject_id: int = 440, **data: Any) -> Dict[str, Any]:
    body = {
        "subject_id": subject_id,
        "subject_type": "kanji",
        "srs_stage": 1,
        "created_at": ts(),
        "unlocked_at": ts(),
        "started_at": ts(),
        "passed_at": None,
        "burned_at": None,
        "resurrected_at": None,
        "available_at": ts(4),
        "hidden": False,
    }
    body.update(data)
    return {"id": id, "object": "assignment", "data": body}


def user_payload(**data: Any) -> Dict[str, Any]:
    body = {
        "id": "5a6a5234-a392-4a87-8f3f-33342afe8a42",
        "username": "tanuki",
        "level": 3,
        "profile_url": "https://www.wanikani.com/users/tanuki",
        "started_at": ts(),
        "current_vacation_started_at": None,
        "subscription": {"active": True, "type": "recurring", "max_level_granted": 60},
        "preferences": {"lessons_batch_size": 5},
    }
    body.update(data)
    return {"object": "user", "url": "https://api.wanikani.com/v2/user", "data": body}


def collection_payload(items: List[Dict[str, Any]], next_url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "object": "collection",
        "url": "https://api.wanikani.com/v2/subjects",
        "pages": {"per_page": 1000, "next_url": next_url, "previous_url": None},
        "total_count": len(items),
        "data_updated_at": ts(),
        "data": items,
    }


def server_review_payload(id: int = 999, assignment_id: int = 42, created_at: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": id,
        "object": "review",
        "data": {
            "created_at": created_at or ts(),
            "assignment_id": assignment_id,
            "subject_id": 440,
            "spaced_repetition_system_id": 1,
            "starting_srs_stage": 1,
            "ending_srs_stage": 2,
            "incorrect_meaning_answers": 1,
            "incorrect_reading_answers": 0,
        },
    }


def page(body: Dict[str, Any], etag: Optional[str] = None, last_modified: Optional[str] = None) -> Page:
    next_url = (body.get("pages") or {}).get("next_url")
    return Page(body=body, url="https://api.wanikani.com/v2/test", next_url=next_url,
                etag=etag, last_modified=last_modified)


# ── Scripted client ───────────────────────────────────────────────

class FakeClient:
    """Answers conditional_get from a per-endpoint script, recording every call.

    A scripted entry that is an exception instance is raised instead of returned.
    Endpoints without a script answer NotModified.
    """

    def __init__(self, script: Optional[Dict[str, List[Any]]] = None,
                 submissions: Optional[List[Any]] = None) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.submissions = list(submissions or [])
        self.calls: List[tuple] = []
        self.submitted: List[Any] = []

    def _endpoint(self, url: str) -> str:
        for name in self.script:
            if url == name or url.startswith(name + "?") or url.startswith(f"https://next/{name}"):
                return name
        return url

    def conditional_get(self, url: str, **kwargs: Any) -> Any:
        self.calls.append((url, kwargs))
        queue = self.script.get(self._endpoint(url))
        if not queue:
            return NotModified()
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def submit_review(self, review: Any) -> Any:
        self.submitted.append(review)
        if not self.submissions:
            raise RateLimitError("no scripted submission left")
        result = self.submissions.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_client():
    return FakeClient
