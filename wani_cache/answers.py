"""Answer checking against cached subjects, and mnemonic markup rendering."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from .resources import AuxMeaning, KanaVocabulary, Kanji, Radical, Subject, Vocabulary


class AnswerResult(enum.Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    # Reserved for typo tolerance; is_correct_answer never returns it yet.
    FUZZY_CORRECT = "fuzzy_correct"
    MATCHES_NON_ACCEPTED_ANSWER = "matches_non_accepted_answer"
    KANA_WHEN_MEANING = "kana_when_meaning"
    BAD_FORMATTING = "bad_formatting"


def is_kana(ch: str) -> bool:
    code = ord(ch)
    return 0x3040 <= code <= 0x309F or 0x30A0 <= code <= 0x30FF


def _answers(items: Iterable[object]) -> Iterable[Tuple[str, bool]]:
    for item in items:
        if isinstance(item, AuxMeaning):
            yield item.meaning, item.accepted
        else:
            text = getattr(item, "meaning", None)
            if text is None:
                text = getattr(item, "reading")
            yield text, bool(getattr(item, "accepted_answer"))


def _check(candidates: Sequence[Tuple[str, bool]], readings: Sequence[Tuple[str, bool]],
           guess: str, kana_input: str) -> AnswerResult:
    expect_numeric = False
    best = AnswerResult.INCORRECT
    for answer, accepted in candidates:
        if guess == answer.strip().lower():
            if accepted:
                return AnswerResult.CORRECT
            best = AnswerResult.MATCHES_NON_ACCEPTED_ANSWER
        if accepted and any(c.isdigit() for c in answer):
            expect_numeric = True

    if candidates and readings and kana_input:
        if _check(readings, [], kana_input, "") is AnswerResult.CORRECT:
            return AnswerResult.KANA_WHEN_MEANING

    if best is AnswerResult.INCORRECT:
        allowed = str.isalnum if expect_numeric else str.isalpha
        if any(not allowed(c) and not is_kana(c) for c in guess):
            return AnswerResult.BAD_FORMATTING
    return best


def is_correct_answer(subject: Subject, guess: str, is_meaning: bool, kana_input: str = "") -> AnswerResult:
    """Grade ``guess`` for a meaning or reading question.

    Radicals and kana vocabulary have no readings, so they are always
    graded as meaning questions. ``kana_input`` is the guess as the kana
    input method would have converted it; a meaning answer that matches a
    reading comes back as KANA_WHEN_MEANING.
    """
    if isinstance(subject, (Radical, KanaVocabulary)):
        is_meaning = True

    readings: list = []
    if isinstance(subject, (Kanji, Vocabulary)):
        readings = list(_answers(subject.readings))

    if is_meaning:
        candidates = list(_answers(subject.meanings)) + list(_answers(subject.aux_meanings))
        return _check(candidates, readings, guess, kana_input)
    return _check(readings, [], guess, "")


@dataclass(frozen=True)
class Tag:
    open: str = ""
    close: str = ""


@dataclass(frozen=True)
class TextFormat:
    """Replacement strings for each mnemonic markup tag."""
    radical: Tag = Tag()
    kanji: Tag = Tag()
    vocabulary: Tag = Tag()
    meaning: Tag = Tag()
    reading: Tag = Tag()
    ja: Tag = Tag()


PLAIN = TextFormat()


def format_text(text: str, fmt: TextFormat = PLAIN) -> str:
    """Render ``<kanji>...</kanji>`` style mnemonic markup with ``fmt``."""
    for name in ("radical", "kanji", "vocabulary", "reading", "ja", "meaning"):
        tag: Tag = getattr(fmt, name)
        text = text.replace(f"<{name}>", tag.open).replace(f"</{name}>", tag.close)
    return text
