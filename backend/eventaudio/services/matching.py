"""Deterministic filename-to-song matching for batch final-mix uploads.

Engineers name their bounces loosely (``Wir_sind_die_Minimusiker_final_mix.wav``,
``3b - Alle Voegel v2.wav``).  Each filename is normalised into tokens and
scored against every song of the event with :class:`difflib.SequenceMatcher`;
the best candidate wins and its distance decides the confidence tier.

Scores are *distances*: 0.0 is identical, 1.0 is no similarity.
"""

from __future__ import annotations

import re
import string
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from pathlib import PurePosixPath
from typing import Iterable, Optional, Sequence

from eventaudio.schemas import ClassRecord, Match, MatchConfidence, MatchSummary, SongRecord

_PUNCT_TRANSLATOR = str.maketrans(dict.fromkeys(string.punctuation, " "))
_NOISE_TOKENS = frozenset(
    {"final", "mix", "mixed", "mixdown", "master", "mastered", "version", "edit", "bounce", "wav"}
)
_VERSION_TAG = re.compile(r"^v\d+$")
_MAX_ALTERNATIVES = 3


@dataclass(frozen=True)
class MatchThresholds:
    """Upper distance bounds (inclusive) of each confidence tier."""

    high: float = 0.15
    medium: float = 0.35
    low: float = 0.6

    def confidence(self, score: float) -> MatchConfidence:
        if score <= self.high:
            return MatchConfidence.HIGH
        if score <= self.medium:
            return MatchConfidence.MEDIUM
        if score <= self.low:
            return MatchConfidence.LOW
        return MatchConfidence.NONE


@dataclass(frozen=True)
class _Candidate:
    song: SongRecord
    class_rank: int
    song_rank: int
    keys: tuple[tuple[str, ...], ...]


def normalize_text(text: str) -> str:
    """ASCII-fold, strip punctuation, lowercase and collapse whitespace."""
    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    normalized = normalized.translate(_PUNCT_TRANSLATOR)
    return " ".join(normalized.lower().split())


def _tokens(text: str) -> tuple[str, ...]:
    return tuple(normalize_text(text).split())


def _is_noise(token: str) -> bool:
    return token in _NOISE_TOKENS or token.isdigit() or bool(_VERSION_TAG.match(token))


def _strip_affix(tokens: tuple[str, ...], affixes: Iterable[tuple[str, ...]]) -> tuple[str, ...]:
    """Remove one class-name prefix and one class-name suffix, longest first."""
    ordered = sorted((a for a in affixes if a), key=len, reverse=True)
    for affix in ordered:
        if len(tokens) > len(affix) and tokens[: len(affix)] == affix:
            tokens = tokens[len(affix):]
            break
    for affix in ordered:
        if len(tokens) > len(affix) and tokens[-len(affix):] == affix:
            tokens = tokens[: -len(affix)]
            break
    return tokens


def filename_tokens(filename: str, class_names: Sequence[str] = ()) -> tuple[str, ...]:
    """Comparable tokens of an uploaded filename.

    The extension, class-name prefixes/suffixes and mix noise words
    (``final``, ``mix``, ``v2``, track numbers …) are dropped.  When
    stripping would leave nothing the plain normalised tokens are kept.
    """
    stem = PurePosixPath(filename.replace("\\", "/")).name
    if "." in stem.strip("."):
        stem = stem.rsplit(".", 1)[0]
    tokens = _tokens(stem)
    if not tokens:
        return ()

    stripped = _strip_affix(tokens, [_tokens(name) for name in class_names])
    stripped = tuple(t for t in stripped if not _is_noise(t))
    return stripped or tokens


def _ratio(left: str, right: str) -> float:
    return SequenceMatcher(a=left, b=right, autojunk=False).ratio()


def similarity_distance(left: Sequence[str], right: Sequence[str]) -> float:
    """Distance between two token sequences in ``[0, 1]``.

    The larger of the whole-string ratio and a partial ratio is used.  The
    partial ratio compares the shorter sequence with every equally long
    window of the longer one, so a title embedded in a longer filename
    still scores well; it is damped by how much of the longer side the
    shorter one covers.
    """
    if not left or not right:
        return 1.0
    full = _ratio(" ".join(left), " ".join(right))

    short, long_ = (left, right) if len(left) <= len(right) else (right, left)
    short_joined = " ".join(short)
    best_window = 0.0
    for start in range(len(long_) - len(short) + 1):
        best_window = max(best_window, _ratio(short_joined, " ".join(long_[start:start + len(short)])))
    coverage = len(short_joined) / max(len(" ".join(long_)), 1)
    partial = best_window * (0.75 + 0.25 * min(coverage, 1.0))

    return max(0.0, 1.0 - max(full, partial))


def _build_candidates(songs: Sequence[SongRecord], classes: Sequence[ClassRecord]) -> list[_Candidate]:
    class_rank = {cls.class_id: idx for idx, cls in enumerate(classes)}
    candidates = []
    for song_rank, song in enumerate(songs):
        title = _tokens(song.title)
        keys = [title]
        if song.artist:
            keys.append(title + _tokens(song.artist))
        candidates.append(
            _Candidate(
                song=song,
                class_rank=class_rank.get(song.class_id, len(classes)),
                song_rank=song_rank,
                keys=tuple(k for k in keys if k),
            )
        )
    return candidates


def _unmatched(filename: str) -> Match:
    return Match(filename=filename, confidence=MatchConfidence.NONE, score=1.0)


def _to_match(filename: str, candidate: _Candidate, score: float, confidence: MatchConfidence,
              class_names: dict[str, str]) -> Match:
    song = candidate.song
    return Match(
        filename=filename,
        song_id=song.id,
        song_title=song.title,
        confidence=confidence,
        score=score,
        class_id=song.class_id,
        class_name=class_names.get(song.class_id, song.class_id),
    )


def match_filename(
    filename: str,
    candidates: Sequence[_Candidate],
    class_names: Sequence[str],
    class_name_by_id: dict[str, str],
    thresholds: MatchThresholds,
) -> Match:
    tokens = filename_tokens(filename, class_names)
    if not candidates or not any(ch.isalpha() for ch in "".join(tokens)):
        return _unmatched(filename)

    ranked = []
    for candidate in candidates:
        score = min((similarity_distance(tokens, key) for key in candidate.keys), default=1.0)
        ranked.append((round(score, 4), candidate.class_rank, candidate.song_rank, candidate))
    ranked.sort(key=lambda item: item[:3])

    best_score, _, _, best = ranked[0]
    confidence = thresholds.confidence(best_score)
    if confidence is MatchConfidence.NONE:
        return Match(filename=filename, confidence=MatchConfidence.NONE, score=best_score)

    match = _to_match(filename, best, best_score, confidence, class_name_by_id)
    match.alternatives = [
        _to_match(filename, cand, score, thresholds.confidence(score), class_name_by_id)
        for score, _, _, cand in ranked[1:_MAX_ALTERNATIVES + 1]
        if thresholds.confidence(score) is not MatchConfidence.NONE
    ]
    return match


def match_filenames(
    filenames: Sequence[str],
    songs: Sequence[SongRecord],
    classes: Sequence[ClassRecord] = (),
    thresholds: Optional[MatchThresholds] = None,
) -> list[Match]:
    """Suggest a song for every filename, in input order.

    Pure and deterministic for a given catalog snapshot: equal scores are
    broken by class declaration order, then by song order in ``songs``.
    Never raises for string input; the worst outcome is a ``none`` match.
    """
    thresholds = thresholds or MatchThresholds()
    candidates = _build_candidates(songs, classes)
    class_names = [cls.class_name for cls in classes]
    class_name_by_id = {cls.class_id: cls.class_name for cls in classes}
    return [
        match_filename(filename, candidates, class_names, class_name_by_id, thresholds)
        for filename in filenames
    ]


def summarize_matches(matches: Sequence[Match]) -> MatchSummary:
    counts = {confidence: 0 for confidence in MatchConfidence}
    for match in matches:
        counts[match.confidence] += 1
    return MatchSummary(
        total=len(matches),
        high_confidence=counts[MatchConfidence.HIGH],
        medium_confidence=counts[MatchConfidence.MEDIUM],
        low_confidence=counts[MatchConfidence.LOW],
        unmatched=counts[MatchConfidence.NONE],
    )
