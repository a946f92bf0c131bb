"""Rewrite note bodies so person names only appear as policy allows.

Candidates come from redacted references (canonical name and aliases from the
author payload, paired with the computed label) and from note mentions. Only
text between tags is scanned. Matching is case-insensitive on word
boundaries, longest candidate first, left to right; a character range is
replaced at most once per call. Labels already present in the text are
protected so masking an already masked body changes nothing, unless a label
itself contains a name that must be masked.
"""

import html
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from app.models.identity import ReferenceType, Visibility
from app.observability import REDACTION_FALLBACKS
from app.schemas.identity import MentionRecord, RedactedReference
from app.services.references import FALLBACK_LABEL, initials

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<!--.*?-->|<[A-Za-z/!][^>]*>", re.DOTALL)


# ---------------------------------------------------------------------------
# Mention detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Span:
    text: str
    start: int
    end: int


class MentionDetector(Protocol):
    def detect(self, text: str) -> list[Span]:
        """Return name-like spans with offsets into ``text``."""
        ...


class CapitalizedNameDetector:
    """Heuristic detector: runs of capitalised words that are not stop words."""

    NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:[ \-'][A-Z][a-z]+)*\b")
    STOP_WORDS = frozenset(
        {
            "a", "about", "after", "all", "also", "an", "and", "as", "at",
            "back", "because", "before", "but", "by", "christmas", "dad",
            "did", "each", "easter", "every", "first", "for", "from", "he",
            "her", "here", "his", "how", "i", "if", "in", "it", "its", "just",
            "last", "later", "mom", "my", "no", "not", "now", "of", "on",
            "once", "one", "or", "our", "she", "so", "some", "still", "that",
            "the", "their", "then", "there", "these", "they", "this", "those",
            "to", "we", "what", "when", "where", "which", "while", "who",
            "with", "yes", "you", "your",
            "january", "february", "march", "april", "may", "june", "july",
            "august", "september", "october", "november", "december",
            "monday", "tuesday", "wednesday", "thursday", "friday",
            "saturday", "sunday",
        }
    )

    def detect(self, text: str) -> list[Span]:
        spans: list[Span] = []
        for match in self.NAME_PATTERN.finditer(text):
            start, end = match.span()
            tokens = list(re.finditer(r"[A-Za-z]+", match.group(0)))
            # Drop leading stop words ("When Bob" -> "Bob").
            while tokens and tokens[0].group(0).lower() in self.STOP_WORDS:
                tokens.pop(0)
            if not tokens:
                continue
            span_start = start + tokens[0].start()
            spans.append(Span(text[span_start:end], span_start, end))
        return spans


# ---------------------------------------------------------------------------
# Candidate terms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MaskTerm:
    text: str
    # None keeps the matched text as written.
    replacement: str | None
    pattern: re.Pattern

    @classmethod
    def build(cls, text: str, replacement: str | None) -> "MaskTerm":
        tokens = text.split()
        body = r"\s+".join(re.escape(token) for token in tokens)
        pattern = re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)
        return cls(text=" ".join(tokens), replacement=replacement, pattern=pattern)


def mention_label(mention: MentionRecord) -> str | None:
    if mention.display_label and mention.display_label.strip():
        return mention.display_label.strip()
    if mention.visibility is Visibility.approved:
        return None
    if mention.visibility is Visibility.blurred:
        return initials(mention.mention_text)
    return FALLBACK_LABEL


def _reference_names(ref: RedactedReference) -> list[str]:
    payload = ref.author_payload
    if payload is None or ref.type is not ReferenceType.person:
        return []
    return [name for name in [payload.author_label, *payload.aliases] if name]


def _reference_replacement(ref: RedactedReference, name: str) -> str | None:
    if ref.identity_state is Visibility.approved:
        return None
    label = ref.render_label or FALLBACK_LABEL
    if label.lower() == name.lower():
        return None
    return label


def build_mask_terms(
    refs: Iterable[RedactedReference],
    mentions: Iterable[MentionRecord] = (),
    extra_labels: Iterable[str] = (),
) -> list[MaskTerm]:
    """Collect candidate terms ordered longest first.

    When two sources name the same text, the one that replaces wins over the
    one that preserves.
    """
    chosen: dict[str, tuple[str, str | None]] = {}
    labels: set[str] = set(extra_labels)

    def add(text: str, replacement: str | None) -> None:
        key = " ".join(text.split()).lower()
        if not key:
            return
        if replacement:
            labels.add(replacement)
        current = chosen.get(key)
        if current is None or (current[1] is None and replacement is not None):
            chosen[key] = (text, replacement)

    for ref in refs:
        for name in _reference_names(ref):
            add(name, _reference_replacement(ref, name))
    for mention in mentions:
        label = mention_label(mention)
        if label and label.lower() == mention.mention_text.strip().lower():
            label = None
        add(mention.mention_text, label)

    terms = [
        MaskTerm.build(text, replacement) for text, replacement in chosen.values()
    ]
    replacing = [term for term in terms if term.replacement is not None]
    for label in labels:
        for protected in {label, html.escape(label, quote=False)}:
            if " ".join(protected.split()).lower() in chosen:
                continue
            # A label that spells out a masked name is not protected.
            if any(term.pattern.search(protected) for term in replacing):
                continue
            terms.append(MaskTerm.build(protected, None))
    terms.sort(key=lambda term: (-len(term.text), term.replacement is None))
    return terms


def _token_index(refs: Iterable[RedactedReference]) -> dict[str, str | None]:
    """Map full names and name tokens to a replacement for detector spans."""
    index: dict[str, set[str | None]] = {}
    for ref in refs:
        for name in _reference_names(ref):
            replacement = _reference_replacement(ref, name)
            tokens = name.split()
            keys = {" ".join(tokens).lower()}
            if tokens:
                keys.add(tokens[0].lower())
                keys.add(tokens[-1].lower())
            for key in keys:
                index.setdefault(key, set()).add(replacement)
    resolved: dict[str, str | None] = {}
    for key, options in index.items():
        if len(options) == 1:
            resolved[key] = next(iter(options))
        else:
            # Ambiguous token shared by several people.
            resolved[key] = FALLBACK_LABEL
    return resolved


# ---------------------------------------------------------------------------
# Masking
# ---------------------------------------------------------------------------


def _overlaps(consumed: list[tuple[int, int, str | None]], start: int, end: int):
    return any(start < c_end and c_start < end for c_start, c_end, _ in consumed)


class ContentMasker:
    def __init__(
        self,
        refs: Iterable[RedactedReference],
        mentions: Iterable[MentionRecord] = (),
        detector: MentionDetector | None = None,
    ):
        refs = list(refs)
        mentions = list(mentions)
        extra_labels = (FALLBACK_LABEL,) if detector is not None else ()
        self.terms = build_mask_terms(refs, mentions, extra_labels)
        self.detector = detector
        self.token_index = _token_index(refs) if detector is not None else {}

    def mask(self, content: str | None) -> str | None:
        if not content:
            return content
        if not self.terms and self.detector is None:
            return content
        parts: list[str] = []
        position = 0
        for tag in TAG_PATTERN.finditer(content):
            parts.append(self._mask_text(content[position : tag.start()]))
            parts.append(tag.group(0))
            position = tag.end()
        parts.append(self._mask_text(content[position:]))
        return "".join(parts)

    def _mask_text(self, text: str) -> str:
        if not text or text.isspace():
            return text
        consumed: list[tuple[int, int, str | None]] = []
        for term in self.terms:
            for match in term.pattern.finditer(text):
                start, end = match.span()
                if not _overlaps(consumed, start, end):
                    consumed.append((start, end, term.replacement))
        if self.detector is not None:
            self._apply_detector(text, consumed)
        if not consumed:
            return text
        consumed.sort(key=lambda item: item[0])
        parts: list[str] = []
        position = 0
        for start, end, replacement in consumed:
            parts.append(text[position:start])
            if replacement is None:
                parts.append(text[start:end])
            else:
                parts.append(html.escape(replacement, quote=False))
            position = end
        parts.append(text[position:])
        return "".join(parts)

    def _apply_detector(
        self, text: str, consumed: list[tuple[int, int, str | None]]
    ) -> None:
        try:
            spans = self.detector.detect(text)
        except Exception:
            REDACTION_FALLBACKS.labels("detector").inc()
            logger.exception("Mention detector failed; using candidate matches only")
            return
        for span in spans:
            start, end = span.start, span.end
            if not (0 <= start < end <= len(text)):
                continue
            if text[start:end].lower() != span.text.lower():
                continue
            if _overlaps(consumed, start, end):
                continue
            replacement = self._lookup(span.text)
            if replacement:
                consumed.append((start, end, replacement))

    def _lookup(self, text: str) -> str | None:
        """Match a detected span to a person by full name, then by any token."""
        key = " ".join(text.split()).lower()
        if key in self.token_index:
            return self.token_index[key]
        for token in key.split():
            if token in self.token_index:
                return self.token_index[token]
        return None


def mask_content(
    content: str | None,
    refs: Iterable[RedactedReference],
    mentions: Iterable[MentionRecord] = (),
    detector: MentionDetector | None = None,
) -> str | None:
    return ContentMasker(refs, mentions, detector).mask(content)
