"""Schema and engine for the local WaniKani cache.

The tables are declared with the ORM so alembic and create_all share one
metadata, but every read and write goes through a Core ``Connection``: the
codec maps records to rows by column position and needs per-page
transactions that a long-lived Session would hide.
"""
from __future__ import annotations
from sqlalchemy import create_engine, inspect, delete, CheckConstraint, Connection, Engine, RootTransaction, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".wani")
DB_FILENAME = "wani_cache.db"


class Base(DeclarativeBase):
    pass


# Nested records and lists are JSON text; timestamps are RFC-3339 text.
class SubjectColumns:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    aux_meanings: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    document_url: Mapped[str] = mapped_column(Text, nullable=False)
    hidden_at: Mapped[Optional[str]] = mapped_column(Text)
    lesson_position: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    meaning_mnemonic: Mapped[str] = mapped_column(Text, nullable=False)
    meanings: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    srs_id: Mapped[int] = mapped_column(Integer, nullable=False)


class RadicalRow(SubjectColumns, Base):
    __tablename__ = "radicals"
    amalgamation_subject_ids: Mapped[str] = mapped_column(Text, nullable=False)
    characters: Mapped[Optional[str]] = mapped_column(Text)
    character_images: Mapped[str] = mapped_column(Text, nullable=False)


class KanjiRow(SubjectColumns, Base):
    __tablename__ = "kanji"
    characters: Mapped[str] = mapped_column(Text, nullable=False)
    amalgamation_subject_ids: Mapped[str] = mapped_column(Text, nullable=False)
    component_subject_ids: Mapped[str] = mapped_column(Text, nullable=False)
    meaning_hint: Mapped[Optional[str]] = mapped_column(Text)
    reading_hint: Mapped[Optional[str]] = mapped_column(Text)
    reading_mnemonic: Mapped[str] = mapped_column(Text, nullable=False)
    readings: Mapped[str] = mapped_column(Text, nullable=False)
    visually_similar_subject_ids: Mapped[str] = mapped_column(Text, nullable=False)


class VocabRow(SubjectColumns, Base):
    __tablename__ = "vocab"
    characters: Mapped[str] = mapped_column(Text, nullable=False)
    component_subject_ids: Mapped[str] = mapped_column(Text, nullable=False)
    context_sentences: Mapped[str] = mapped_column(Text, nullable=False)
    parts_of_speech: Mapped[str] = mapped_column(Text, nullable=False)
    pronunciation_audios: Mapped[str] = mapped_column(Text, nullable=False)
    readings: Mapped[str] = mapped_column(Text, nullable=False)
    reading_mnemonic: Mapped[str] = mapped_column(Text, nullable=False)


class KanaVocabRow(SubjectColumns, Base):
    __tablename__ = "kana_vocab"
    characters: Mapped[str] = mapped_column(Text, nullable=False)
    context_sentences: Mapped[str] = mapped_column(Text, nullable=False)
    parts_of_speech: Mapped[str] = mapped_column(Text, nullable=False)
    pronunciation_audios: Mapped[str] = mapped_column(Text, nullable=False)


class AssignmentRow(Base):
    __tablename__ = "assignments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(Text, nullable=False)
    srs_stage: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    unlocked_at: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[Optional[str]] = mapped_column(Text)
    passed_at: Mapped[Optional[str]] = mapped_column(Text)
    burned_at: Mapped[Optional[str]] = mapped_column(Text)
    resurrected_at: Mapped[Optional[str]] = mapped_column(Text)
    available_at: Mapped[Optional[str]] = mapped_column(Text, index=True)
    # 0 or 1, checked by the codec on read.
    hidden: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ReviewRow(Base):
    """Pending and confirmed reviews share this table; ``available_at`` tells them apart."""
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("(id IS NULL) = (available_at IS NULL)", name="ck_reviews_confirmed"),
    )
    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    assignment_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    incorrect_meaning_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    incorrect_reading_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_at: Mapped[Optional[str]] = mapped_column(Text, index=True)


class UserRow(Base):
    __tablename__ = "user"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    profile_url: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    current_vacation_started_at: Mapped[Optional[str]] = mapped_column(Text)
    subscription: Mapped[str] = mapped_column(Text, nullable=False)
    preferences: Mapped[str] = mapped_column(Text, nullable=False)


class CacheInfoRow(Base):
    __tablename__ = "cache_info"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    etag: Mapped[Optional[str]] = mapped_column(Text)
    last_modified: Mapped[Optional[str]] = mapped_column(Text)
    updated_after: Mapped[Optional[str]] = mapped_column(Text)


SUBJECT_TABLES = ("radicals", "kanji", "vocab", "kana_vocab")
REQUIRED_TABLES = frozenset(Base.metadata.tables)


def default_db_path(data_dir: Optional[str] = None) -> str:
    return os.environ.get("WANI_DB") or os.path.join(data_dir or DEFAULT_DATA_DIR, DB_FILENAME)


def get_engine(db_path: Optional[str] = None) -> Engine:
    """Engine for the cache file, creating its directory if needed."""
    path = db_path or default_db_path()
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    return create_engine(f"sqlite:///{path}", echo=DEBUG_MODE)


def transaction(conn: Connection) -> RootTransaction:
    """Begin an explicit transaction, closing out a pending autobegun one first.

    Reads on a fresh connection autobegin a transaction; it is committed here
    so each sync page gets a transaction of its own.
    """
    if conn.in_transaction():
        conn.commit()
    return conn.begin()


def is_db_initialized(engine: Engine) -> bool:
    """Check if the cache is initialized by checking that every table exists."""
    inspector = inspect(engine)
    return REQUIRED_TABLES.issubset(set(inspector.get_table_names()))


def init_db(engine: Engine) -> None:
    """Create all tables and seed one empty watermark per resource class."""
    from . import cache_info
    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        cache_info.seed(conn)
    logger.info("Cache initialized at %s", engine.url)


def reset_cache(engine: Engine, purge: bool = False) -> None:
    """Forget every watermark so the next sync is a full fetch.

    With ``purge`` the cached subjects, assignments and user rows go too.
    Reviews are never purged: pending rows have not reached the server yet.
    """
    from . import cache_info
    with engine.begin() as conn:
        cache_info.reset(conn)
        if purge:
            for model in (RadicalRow, KanjiRow, VocabRow, KanaVocabRow, AssignmentRow, UserRow):
                conn.execute(delete(model.__table__))
    logger.info("Cache reset (purge=%s)", purge)
