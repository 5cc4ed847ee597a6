"""Bidirectional mapping between typed records and table rows.

Scalar fields used for filtering (ids, level, timestamps, status, hidden flag)
are native columns; nested records and lists are stored as JSON text and never
split into further columns. Rows are read back by position, in the order of
the codec's own ``select_statement``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from sqlalchemy import Connection, Insert, Select, Table, insert, select

from . import db
from .errors import DecodeError
from .resources import (
    Assignment, AuxMeaning, CharacterImage, ContextSentence, KanaVocabulary, Kanji,
    KanjiReading, Meaning, PronunciationAudio, Radical, Review, ReviewStatus, Subject,
    User, VocabReading, Vocabulary, format_timestamp, parse_timestamp, to_plain,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Column conversions
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class FieldCodec:
    """One column: how a record attribute becomes a column value and back."""
    column: str
    attribute: str
    to_column: Callable[[Any], Any]
    from_column: Callable[[Any], Any]


def _identity(value: Any) -> Any:
    return value


def _required(convert: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def wrapped(value: Any) -> Any:
        if value is None:
            raise ValueError("unexpected NULL")
        return convert(value)
    return wrapped


def _optional(convert: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def wrapped(value: Any) -> Any:
        return None if value is None else convert(value)
    return wrapped


def _integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {value!r}")
    return value


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected text, got {type(value).__name__}")
    return value


def integer(column: str, attribute: Optional[str] = None, optional: bool = False) -> FieldCodec:
    wrap = _optional if optional else _required
    return FieldCodec(column, attribute or column, _identity, wrap(_integer))


def text(column: str, attribute: Optional[str] = None, optional: bool = False) -> FieldCodec:
    wrap = _optional if optional else _required
    return FieldCodec(column, attribute or column, _identity, wrap(_text))


def _flag(value: Any) -> bool:
    value = _integer(value)
    if value not in (0, 1):
        raise ValueError(f"expected 0 or 1, got {value!r}")
    return bool(value)


def flag(column: str, attribute: Optional[str] = None) -> FieldCodec:
    return FieldCodec(column, attribute or column, lambda v: 1 if v else 0, _required(_flag))


def timestamp(column: str, attribute: Optional[str] = None, optional: bool = False) -> FieldCodec:
    wrap = _optional if optional else _required
    return FieldCodec(column, attribute or column, wrap(format_timestamp), wrap(parse_timestamp))


def _dump(value: Any) -> str:
    return json.dumps(to_plain(value), ensure_ascii=False, sort_keys=True)


def json_list(column: str, item: Callable[[Any], Any], attribute: Optional[str] = None) -> FieldCodec:
    """A homogeneous list stored as one JSON array."""
    def load(raw: Any) -> List[Any]:
        value = json.loads(_text(raw))
        if not isinstance(value, list):
            raise ValueError(f"expected a JSON array, got {type(value).__name__}")
        return [item(v) for v in value]
    return FieldCodec(column, attribute or column, _required(_dump), _required(load))


def json_object(column: str, attribute: Optional[str] = None) -> FieldCodec:
    def load(raw: Any) -> Dict[str, Any]:
        value = json.loads(_text(raw))
        if not isinstance(value, dict):
            raise ValueError(f"expected a JSON object, got {type(value).__name__}")
        return value
    return FieldCodec(column, attribute or column, _required(_dump), _required(load))


def _int_item(value: Any) -> int:
    return _integer(value)


def _str_item(value: Any) -> str:
    return _text(value)


# ----------------------------------------------------------------------
# Table codec
# ----------------------------------------------------------------------
class TableCodec:
    """Encodes records of ``record_type`` into rows of ``model``'s table.

    ``key`` names the column reported in decode errors. When it is not one
    of the record's own columns (reviews use a store-assigned surrogate) it
    is selected as an extra trailing column, and handed back on the
    record as ``key_attribute``.
    """

    def __init__(self, model: Type[db.Base], record_type: type,
                 fields: Sequence[FieldCodec], key: str = "id", key_attribute: Optional[str] = None) -> None:
        self.model = model
        self.record_type = record_type
        self.fields: Tuple[FieldCodec, ...] = tuple(fields)
        self.key = key
        self.key_attribute = key_attribute
        self.columns: Tuple[str, ...] = tuple(f.column for f in self.fields)
        missing = set(self.columns) - set(self.table.c.keys())
        if missing:
            raise ValueError(f"{self.name}: codec columns not in table: {sorted(missing)}")

    def __repr__(self) -> str:
        return f"<TableCodec {self.name}>"

    @property
    def table(self) -> Table:
        return self.model.__table__  # type: ignore[attr-defined, return-value]

    @property
    def name(self) -> str:
        return self.table.name

    def encode(self, record: Any) -> Tuple[Any, ...]:
        """Column values in codec order."""
        return tuple(f.to_column(getattr(record, f.attribute)) for f in self.fields)

    def params(self, record: Any) -> Dict[str, Any]:
        return dict(zip(self.columns, self.encode(record)))

    def upsert_statement(self) -> Insert:
        """``INSERT OR REPLACE`` keyed on the table's primary key."""
        return insert(self.table).prefix_with("OR REPLACE")

    def select_statement(self) -> Select:
        columns = [self.table.c[name] for name in self.columns]
        if self.key not in self.columns:
            columns.append(self.table.c[self.key])
        return select(*columns)

    def _row_id(self, row: Sequence[Any]) -> Any:
        if self.key in self.columns:
            return row[self.columns.index(self.key)]
        return row[len(self.fields)] if len(row) > len(self.fields) else None

    def decode(self, row: Sequence[Any]) -> Any:
        """Rebuild a record from a row selected by ``select_statement``."""
        row_id = self._row_id(row)
        values: Dict[str, Any] = {}
        for index, f in enumerate(self.fields):
            try:
                values[f.attribute] = f.from_column(row[index])
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                reason = f"missing key {e}" if isinstance(e, KeyError) else str(e)
                raise DecodeError(f"cannot decode column: {reason}", table=self.name,
                                  row_id=row_id, column=f.column) from e
        if self.key_attribute:
            values[self.key_attribute] = row_id
        try:
            return self.record_type(**values)
        except TypeError as e:
            raise DecodeError(str(e), table=self.name, row_id=row_id) from e

    def write(self, conn: Connection, records: Sequence[Any]) -> int:
        if not records:
            return 0
        conn.execute(self.upsert_statement(), [self.params(r) for r in records])
        return len(records)


# Shared by all four subject tables; each subject codec appends its own columns.
SUBJECT_COMMON_FIELDS: Tuple[FieldCodec, ...] = (
    integer("id"),
    json_list("aux_meanings", AuxMeaning.from_dict),
    timestamp("created_at"),
    text("document_url"),
    timestamp("hidden_at", optional=True),
    integer("lesson_position"),
    integer("level"),
    text("meaning_mnemonic"),
    json_list("meanings", Meaning.from_dict),
    text("slug"),
    integer("srs_id", "spaced_repetition_system_id"),
)


class SubjectCodec(TableCodec):
    """Subject-common columns followed by the variant's columns."""

    def __init__(self, model: Type[db.Base], record_type: type, variant_fields: Sequence[FieldCodec]) -> None:
        super().__init__(model, record_type, SUBJECT_COMMON_FIELDS + tuple(variant_fields))
        self.object = record_type.OBJECT


RADICALS = SubjectCodec(db.RadicalRow, Radical, (
    json_list("amalgamation_subject_ids", _int_item),
    text("characters", optional=True),
    json_list("character_images", CharacterImage.from_dict),
))

KANJI = SubjectCodec(db.KanjiRow, Kanji, (
    text("characters"),
    json_list("amalgamation_subject_ids", _int_item),
    json_list("component_subject_ids", _int_item),
    text("meaning_hint", optional=True),
    text("reading_hint", optional=True),
    text("reading_mnemonic"),
    json_list("readings", KanjiReading.from_dict),
    json_list("visually_similar_subject_ids", _int_item),
))

VOCABULARY = SubjectCodec(db.VocabRow, Vocabulary, (
    text("characters"),
    json_list("component_subject_ids", _int_item),
    json_list("context_sentences", ContextSentence.from_dict),
    json_list("parts_of_speech", _str_item),
    json_list("pronunciation_audios", PronunciationAudio.from_dict),
    json_list("readings", VocabReading.from_dict),
    text("reading_mnemonic"),
))

KANA_VOCABULARY = SubjectCodec(db.KanaVocabRow, KanaVocabulary, (
    text("characters"),
    json_list("context_sentences", ContextSentence.from_dict),
    json_list("parts_of_speech", _str_item),
    json_list("pronunciation_audios", PronunciationAudio.from_dict),
))

ASSIGNMENTS = TableCodec(db.AssignmentRow, Assignment, (
    integer("id"),
    integer("subject_id"),
    text("subject_type"),
    integer("srs_stage"),
    timestamp("created_at"),
    timestamp("unlocked_at", optional=True),
    timestamp("started_at", optional=True),
    timestamp("passed_at", optional=True),
    timestamp("burned_at", optional=True),
    timestamp("resurrected_at", optional=True),
    timestamp("available_at", optional=True),
    flag("hidden"),
))

REVIEWS = TableCodec(db.ReviewRow, Review, (
    integer("id", optional=True),
    integer("assignment_id"),
    timestamp("created_at"),
    integer("incorrect_meaning_answers"),
    integer("incorrect_reading_answers"),
    FieldCodec("status", "status", int, _required(lambda v: ReviewStatus(_integer(v)))),
    timestamp("available_at", optional=True),
), key="pk", key_attribute="pk")

USERS = TableCodec(db.UserRow, User, (
    text("id"),
    text("username"),
    integer("level"),
    text("profile_url"),
    timestamp("started_at"),
    timestamp("current_vacation_started_at", optional=True),
    json_object("subscription"),
    json_object("preferences"),
))

SUBJECT_CODECS: Tuple[SubjectCodec, ...] = (RADICALS, KANJI, VOCABULARY, KANA_VOCABULARY)

_BY_RECORD_TYPE: Dict[type, TableCodec] = {
    codec.record_type: codec
    for codec in SUBJECT_CODECS + (ASSIGNMENTS, REVIEWS, USERS)
}

_BY_SUBJECT_TYPE: Dict[str, SubjectCodec] = {codec.object: codec for codec in SUBJECT_CODECS}


def codec_for(record: Any) -> Optional[TableCodec]:
    """The codec that stores ``record``, or None for records the cache does not keep."""
    return _BY_RECORD_TYPE.get(type(record))


def codec_for_subject_type(subject_type: str) -> SubjectCodec:
    return _BY_SUBJECT_TYPE[subject_type]


def write_records(conn: Connection, records: Iterable[Any]) -> int:
    """Upsert records into their tables, grouped per codec. Returns rows written."""
    grouped: Dict[TableCodec, List[Any]] = {}
    for record in records:
        codec = codec_for(record)
        if codec is None:
            logger.debug("No table for %s; skipped", type(record).__name__)
            continue
        grouped.setdefault(codec, []).append(record)
    return sum(codec.write(conn, batch) for codec, batch in grouped.items())


def read_all(conn: Connection, codec: TableCodec, skip_invalid: bool = False) -> List[Any]:
    """Decode every row of a table.

    A bad row raises DecodeError, unless ``skip_invalid`` is set, in which
    case it is logged and left out.
    """
    records = []
    for row in conn.execute(codec.select_statement()):
        try:
            records.append(codec.decode(row))
        except DecodeError as e:
            if not skip_invalid:
                raise
            logger.warning("Skipping undecodable row: %s", e)
    return records


def find_subject(conn: Connection, subject_id: int) -> Optional[Subject]:
    """Look a subject id up across every subject table."""
    for codec in SUBJECT_CODECS:
        row = conn.execute(codec.select_statement().where(codec.table.c.id == subject_id)).first()
        if row is not None:
            return codec.decode(row)
    return None


def find_subjects(conn: Connection, subject_ids: Iterable[int]) -> Dict[int, Subject]:
    """Resolve cross-reference ids (components, amalgamations) whatever table they live in."""
    wanted = set(subject_ids)
    found: Dict[int, Subject] = {}
    if not wanted:
        return found
    for codec in SUBJECT_CODECS:
        stmt = codec.select_statement().where(codec.table.c.id.in_(wanted - set(found)))
        for row in conn.execute(stmt):
            subject = codec.decode(row)
            found[subject.id] = subject
        if len(found) == len(wanted):
            break
    return found
