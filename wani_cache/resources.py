"""Typed records for the WaniKani v2 resource tree.

Every payload carries an ``object`` tag. ``decode_resource`` reads the tag
first and then decodes the remaining fields for that variant; tags the cache
does not model come back as ``UnknownResource`` instead of failing.
"""
from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Union

from .errors import DecodeError

SUBJECT_TYPES = ("radical", "kanji", "vocabulary", "kana_vocabulary")
AUX_MEANING_TYPES = ("whitelist", "blacklist")
READING_TYPES = ("kunyomi", "onyomi", "nanori")

# Every tag the API documents. Tags outside this set are still accepted as
# UnknownResource so newer API revisions don't break a sync.
RESOURCE_OBJECTS = (
    "collection", "report", "assignment", "radical", "kanji", "vocabulary",
    "kana_vocabulary", "level_progression", "reset", "review_statistic",
    "review", "spaced_repetition_system", "study_material", "user",
    "voice_actor",
)


# ----------------------------------------------------------------------
# Timestamps
# ----------------------------------------------------------------------
def parse_timestamp(value: Any) -> datetime.datetime:
    """Parse an RFC-3339 timestamp into an aware UTC datetime."""
    if not isinstance(value, str):
        raise ValueError(f"expected RFC-3339 text, got {type(value).__name__}")
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {value!r}")
    return parsed.astimezone(datetime.UTC)


def parse_optional_timestamp(value: Any) -> Optional[datetime.datetime]:
    return None if value is None else parse_timestamp(value)


def format_timestamp(value: datetime.datetime) -> str:
    """Fixed-width UTC text, so string order is time order."""
    if value.tzinfo is None:
        raise ValueError("refusing to format a naive datetime")
    return value.astimezone(datetime.UTC).isoformat(timespec="microseconds")


def format_optional_timestamp(value: Optional[datetime.datetime]) -> Optional[str]:
    return None if value is None else format_timestamp(value)


def _choice(value: Any, allowed: tuple, what: str) -> str:
    if value not in allowed:
        raise ValueError(f"unknown {what}: {value!r}")
    return value


def _ids(values: Any) -> List[int]:
    return [int(v) for v in values]


# ----------------------------------------------------------------------
# Nested records (stored as JSON blobs)
# ----------------------------------------------------------------------
@dataclass
class AuxMeaning:
    meaning: str
    type: str  # whitelist | blacklist

    @property
    def accepted(self) -> bool:
        return self.type == "whitelist"

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> AuxMeaning:
        return cls(meaning=str(d["meaning"]), type=_choice(d["type"], AUX_MEANING_TYPES, "auxiliary meaning type"))


@dataclass
class Meaning:
    meaning: str
    primary: bool
    accepted_answer: bool

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Meaning:
        return cls(meaning=str(d["meaning"]), primary=bool(d["primary"]),
                   accepted_answer=bool(d["accepted_answer"]))


@dataclass
class KanjiReading:
    reading: str
    primary: bool
    accepted_answer: bool
    type: str  # kunyomi | onyomi | nanori

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> KanjiReading:
        return cls(reading=str(d["reading"]), primary=bool(d["primary"]),
                   accepted_answer=bool(d["accepted_answer"]),
                   type=_choice(d["type"], READING_TYPES, "kanji reading type"))


@dataclass
class VocabReading:
    reading: str
    primary: bool
    accepted_answer: bool

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> VocabReading:
        return cls(reading=str(d["reading"]), primary=bool(d["primary"]),
                   accepted_answer=bool(d["accepted_answer"]))


@dataclass
class ContextSentence:
    en: str
    ja: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ContextSentence:
        return cls(en=str(d["en"]), ja=str(d["ja"]))


@dataclass
class PronunciationMetadata:
    gender: str
    source_id: int
    pronunciation: str
    voice_actor_id: int
    voice_actor_name: str
    voice_description: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> PronunciationMetadata:
        return cls(
            gender=str(d["gender"]),
            source_id=int(d["source_id"]),
            pronunciation=str(d["pronunciation"]),
            voice_actor_id=int(d["voice_actor_id"]),
            voice_actor_name=str(d["voice_actor_name"]),
            voice_description=str(d["voice_description"]),
        )


@dataclass
class PronunciationAudio:
    url: str
    content_type: str
    metadata: PronunciationMetadata

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> PronunciationAudio:
        return cls(url=str(d["url"]), content_type=str(d["content_type"]),
                   metadata=PronunciationMetadata.from_dict(d["metadata"]))


@dataclass
class CharacterImage:
    url: str
    content_type: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> CharacterImage:
        return cls(url=str(d["url"]), content_type=d.get("content_type"),
                   metadata=dict(d.get("metadata") or {}))


def to_plain(value: Any) -> Any:
    """Dataclass (or list of them) to JSON-ready builtins."""
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)
    return value


# ----------------------------------------------------------------------
# Subjects
# ----------------------------------------------------------------------
@dataclass
class SubjectCommon:
    """Attributes every subject variant shares."""
    id: int
    created_at: datetime.datetime
    aux_meanings: List[AuxMeaning]
    document_url: str
    hidden_at: Optional[datetime.datetime]
    lesson_position: int
    level: int
    meaning_mnemonic: str
    meanings: List[Meaning]
    slug: str
    spaced_repetition_system_id: int

    OBJECT: ClassVar[str] = ""

    @property
    def hidden(self) -> bool:
        return self.hidden_at is not None


@dataclass
class Radical(SubjectCommon):
    amalgamation_subject_ids: List[int]
    characters: Optional[str]
    character_images: List[CharacterImage]

    OBJECT: ClassVar[str] = "radical"


@dataclass
class Kanji(SubjectCommon):
    characters: str
    amalgamation_subject_ids: List[int]
    component_subject_ids: List[int]
    meaning_hint: Optional[str]
    reading_hint: Optional[str]
    reading_mnemonic: str
    readings: List[KanjiReading]
    visually_similar_subject_ids: List[int]

    OBJECT: ClassVar[str] = "kanji"


@dataclass
class Vocabulary(SubjectCommon):
    characters: str
    component_subject_ids: List[int]
    context_sentences: List[ContextSentence]
    parts_of_speech: List[str]
    pronunciation_audios: List[PronunciationAudio]
    readings: List[VocabReading]
    reading_mnemonic: str

    OBJECT: ClassVar[str] = "vocabulary"


@dataclass
class KanaVocabulary(SubjectCommon):
    characters: str
    context_sentences: List[ContextSentence]
    parts_of_speech: List[str]
    pronunciation_audios: List[PronunciationAudio]

    OBJECT: ClassVar[str] = "kana_vocabulary"


Subject = Union[Radical, Kanji, Vocabulary, KanaVocabulary]


def _subject_common(payload: Mapping[str, Any]) -> Dict[str, Any]:
    data = payload["data"]
    level = int(data["level"])
    if level < 1:
        raise ValueError(f"level must be positive, got {level}")
    return dict(
        id=int(payload["id"]),
        created_at=parse_timestamp(data["created_at"]),
        aux_meanings=[AuxMeaning.from_dict(m) for m in data.get("auxiliary_meanings", [])],
        document_url=str(data["document_url"]),
        hidden_at=parse_optional_timestamp(data.get("hidden_at")),
        lesson_position=int(data["lesson_position"]),
        level=level,
        meaning_mnemonic=str(data["meaning_mnemonic"]),
        meanings=[Meaning.from_dict(m) for m in data["meanings"]],
        slug=str(data["slug"]),
        spaced_repetition_system_id=int(data["spaced_repetition_system_id"]),
    )


def _decode_radical(payload: Mapping[str, Any]) -> Radical:
    data = payload["data"]
    return Radical(
        **_subject_common(payload),
        amalgamation_subject_ids=_ids(data["amalgamation_subject_ids"]),
        characters=data.get("characters"),
        character_images=[CharacterImage.from_dict(i) for i in data.get("character_images", [])],
    )


def _decode_kanji(payload: Mapping[str, Any]) -> Kanji:
    data = payload["data"]
    return Kanji(
        **_subject_common(payload),
        characters=str(data["characters"]),
        amalgamation_subject_ids=_ids(data["amalgamation_subject_ids"]),
        component_subject_ids=_ids(data["component_subject_ids"]),
        meaning_hint=data.get("meaning_hint"),
        reading_hint=data.get("reading_hint"),
        reading_mnemonic=str(data["reading_mnemonic"]),
        readings=[KanjiReading.from_dict(r) for r in data["readings"]],
        visually_similar_subject_ids=_ids(data.get("visually_similar_subject_ids", [])),
    )


def _decode_vocabulary(payload: Mapping[str, Any]) -> Vocabulary:
    data = payload["data"]
    return Vocabulary(
        **_subject_common(payload),
        characters=str(data["characters"]),
        component_subject_ids=_ids(data["component_subject_ids"]),
        context_sentences=[ContextSentence.from_dict(s) for s in data.get("context_sentences", [])],
        parts_of_speech=[str(p) for p in data.get("parts_of_speech", [])],
        pronunciation_audios=[PronunciationAudio.from_dict(a) for a in data.get("pronunciation_audios", [])],
        readings=[VocabReading.from_dict(r) for r in data["readings"]],
        reading_mnemonic=str(data["reading_mnemonic"]),
    )


def _decode_kana_vocabulary(payload: Mapping[str, Any]) -> KanaVocabulary:
    data = payload["data"]
    return KanaVocabulary(
        **_subject_common(payload),
        characters=str(data["characters"]),
        context_sentences=[ContextSentence.from_dict(s) for s in data.get("context_sentences", [])],
        parts_of_speech=[str(p) for p in data.get("parts_of_speech", [])],
        pronunciation_audios=[PronunciationAudio.from_dict(a) for a in data.get("pronunciation_audios", [])],
    )


# ----------------------------------------------------------------------
# Progress records
# ----------------------------------------------------------------------
@dataclass
class Assignment:
    """A user's progress state for one subject."""
    id: int
    subject_id: int
    subject_type: str
    srs_stage: int
    created_at: datetime.datetime
    unlocked_at: Optional[datetime.datetime]
    started_at: Optional[datetime.datetime]
    passed_at: Optional[datetime.datetime]
    burned_at: Optional[datetime.datetime]
    resurrected_at: Optional[datetime.datetime]
    available_at: Optional[datetime.datetime]
    hidden: bool

    OBJECT: ClassVar[str] = "assignment"


def _decode_assignment(payload: Mapping[str, Any]) -> Assignment:
    data = payload["data"]
    srs_stage = int(data["srs_stage"])
    if srs_stage < 0:
        raise ValueError(f"srs_stage must be >= 0, got {srs_stage}")
    return Assignment(
        id=int(payload["id"]),
        subject_id=int(data["subject_id"]),
        subject_type=_choice(data["subject_type"], SUBJECT_TYPES, "subject type"),
        srs_stage=srs_stage,
        created_at=parse_timestamp(data["created_at"]),
        unlocked_at=parse_optional_timestamp(data.get("unlocked_at")),
        started_at=parse_optional_timestamp(data.get("started_at")),
        passed_at=parse_optional_timestamp(data.get("passed_at")),
        burned_at=parse_optional_timestamp(data.get("burned_at")),
        resurrected_at=parse_optional_timestamp(data.get("resurrected_at")),
        available_at=parse_optional_timestamp(data.get("available_at")),
        hidden=bool(data.get("hidden", False)),
    )


class ReviewStatus(enum.IntEnum):
    """How far the user got through a review locally."""
    NOT_STARTED = 0
    MEANING_DONE = 1
    READING_DONE = 2
    DONE = 3

    @property
    def wire_name(self) -> str:
        return self.name.lower()


@dataclass
class Review:
    """A row of the reviews table.

    Pending while ``id`` and ``available_at`` are both ``None``; confirmed
    once the server has assigned an id.
    """
    assignment_id: int
    created_at: datetime.datetime
    incorrect_meaning_answers: int = 0
    incorrect_reading_answers: int = 0
    status: ReviewStatus = ReviewStatus.NOT_STARTED
    id: Optional[int] = None
    available_at: Optional[datetime.datetime] = None
    # Store-assigned row key; None until the review has been enqueued.
    pk: Optional[int] = field(default=None, compare=False)

    @property
    def is_pending(self) -> bool:
        return self.available_at is None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "incorrect_meaning_answers": self.incorrect_meaning_answers,
            "incorrect_reading_answers": self.incorrect_reading_answers,
            "status": self.status.wire_name,
        }

    def submission_body(self) -> Dict[str, Any]:
        """Request body for POST /reviews."""
        return {"review": self.to_wire()}


@dataclass
class ServerReview:
    """A review as the API reports it (``object: review``)."""
    id: int
    assignment_id: int
    subject_id: int
    created_at: datetime.datetime
    starting_srs_stage: int
    ending_srs_stage: int
    incorrect_meaning_answers: int
    incorrect_reading_answers: int
    spaced_repetition_system_id: int

    OBJECT: ClassVar[str] = "review"


def _decode_review(payload: Mapping[str, Any]) -> ServerReview:
    data = payload["data"]
    return ServerReview(
        id=int(payload["id"]),
        assignment_id=int(data["assignment_id"]),
        subject_id=int(data["subject_id"]),
        created_at=parse_timestamp(data["created_at"]),
        starting_srs_stage=int(data["starting_srs_stage"]),
        ending_srs_stage=int(data["ending_srs_stage"]),
        incorrect_meaning_answers=int(data["incorrect_meaning_answers"]),
        incorrect_reading_answers=int(data["incorrect_reading_answers"]),
        spaced_repetition_system_id=int(data["spaced_repetition_system_id"]),
    )


# ----------------------------------------------------------------------
# User, report, collection
# ----------------------------------------------------------------------
@dataclass
class User:
    id: str
    username: str
    level: int
    profile_url: str
    started_at: datetime.datetime
    current_vacation_started_at: Optional[datetime.datetime]
    subscription: Dict[str, Any]
    preferences: Dict[str, Any]

    OBJECT: ClassVar[str] = "user"


def _decode_user(payload: Mapping[str, Any]) -> User:
    data = payload["data"]
    return User(
        id=str(data["id"]),
        username=str(data["username"]),
        level=int(data["level"]),
        profile_url=str(data["profile_url"]),
        started_at=parse_timestamp(data["started_at"]),
        current_vacation_started_at=parse_optional_timestamp(data.get("current_vacation_started_at")),
        subscription=dict(data.get("subscription") or {}),
        preferences=dict(data.get("preferences") or {}),
    )


@dataclass
class SummaryEntry:
    available_at: datetime.datetime
    subject_ids: List[int]


@dataclass
class Report:
    """The /summary report: lessons and reviews grouped by availability."""
    lessons: List[SummaryEntry]
    reviews: List[SummaryEntry]
    next_reviews_at: Optional[datetime.datetime]

    OBJECT: ClassVar[str] = "report"

    def lessons_available(self, now: datetime.datetime) -> int:
        return sum(len(e.subject_ids) for e in self.lessons if e.available_at <= now)

    def reviews_available(self, now: datetime.datetime) -> int:
        return sum(len(e.subject_ids) for e in self.reviews if e.available_at <= now)


def _decode_report(payload: Mapping[str, Any]) -> Report:
    data = payload["data"]

    def entries(raw: Any) -> List[SummaryEntry]:
        return [SummaryEntry(parse_timestamp(e["available_at"]), _ids(e["subject_ids"])) for e in raw]

    return Report(
        lessons=entries(data.get("lessons", [])),
        reviews=entries(data.get("reviews", [])),
        next_reviews_at=parse_optional_timestamp(data.get("next_reviews_at")),
    )


@dataclass
class UnknownResource:
    """Inert placeholder for a tag the cache does not model."""
    object: str
    id: Any
    raw: Dict[str, Any]


@dataclass
class PageInfo:
    per_page: Optional[int] = None
    next_url: Optional[str] = None
    previous_url: Optional[str] = None


@dataclass
class Collection:
    url: str
    data: List["Resource"]
    pages: PageInfo
    total_count: Optional[int] = None
    data_updated_at: Optional[datetime.datetime] = None
    # Items that failed to decode; their siblings are still in ``data``.
    failures: List[DecodeError] = field(default_factory=list)

    OBJECT: ClassVar[str] = "collection"


def _decode_collection(payload: Mapping[str, Any]) -> Collection:
    pages = payload.get("pages") or {}
    items: List[Resource] = []
    failures: List[DecodeError] = []
    for raw in payload["data"]:
        try:
            items.append(decode_resource(raw))
        except DecodeError as e:
            failures.append(e)
    return Collection(
        url=str(payload.get("url", "")),
        data=items,
        pages=PageInfo(
            per_page=pages.get("per_page"),
            next_url=pages.get("next_url"),
            previous_url=pages.get("previous_url"),
        ),
        total_count=payload.get("total_count"),
        data_updated_at=parse_optional_timestamp(payload.get("data_updated_at")),
        failures=failures,
    )


Resource = Union[Collection, Report, Assignment, Radical, Kanji, Vocabulary, KanaVocabulary,
                 ServerReview, User, UnknownResource]

_DECODERS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "collection": _decode_collection,
    "report": _decode_report,
    "assignment": _decode_assignment,
    "radical": _decode_radical,
    "kanji": _decode_kanji,
    "vocabulary": _decode_vocabulary,
    "kana_vocabulary": _decode_kana_vocabulary,
    "review": _decode_review,
    "user": _decode_user,
}


def decode_resource(payload: Any) -> Resource:
    """Decode one wire payload. Raises DecodeError for a malformed modelled variant."""
    if not isinstance(payload, Mapping):
        raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")
    tag = payload.get("object")
    decoder = _DECODERS.get(tag) if isinstance(tag, str) else None
    if decoder is None:
        return UnknownResource(object=str(tag), id=payload.get("id"), raw=dict(payload))
    try:
        return decoder(payload)
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        reason = f"missing field {e}" if isinstance(e, KeyError) else str(e)
        raise DecodeError(f"malformed {tag} payload: {reason}", object=tag, row_id=payload.get("id")) from e


# ----------------------------------------------------------------------
# Rate limit headers
# ----------------------------------------------------------------------
@dataclass
class RateLimit:
    limit: int
    remaining: int
    reset: int  # epoch seconds

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional[RateLimit]:
        values = []
        for name in ("RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset"):
            raw = headers.get(name)
            if raw is None:
                return None
            try:
                values.append(int(raw))
            except ValueError:
                return None
        return cls(*values)
