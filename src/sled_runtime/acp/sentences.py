"""Sentence extraction for streaming text-to-speech.

Splits a running text buffer into complete sentences and leaves anything
ambiguous in the remainder. The bias is toward under-segmentation: a
terminator at the very end of the buffer is never a boundary, so callers
must flush explicitly to get trailing text.

Example:
    buf = SentenceBuffer()
    buf.add("Dr. Smith went home. He ")   -> ["Dr. Smith went home."]
    buf.add("left at 5.5 km")             -> []
    buf.flush()                           -> "He left at 5.5 km"
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Abbreviations that end with a period but don't end a sentence
COMMON_ABBREVIATIONS: frozenset[str] = frozenset(
    {
        "mr",
        "mrs",
        "ms",
        "dr",
        "prof",
        "sr",
        "jr",
        "vs",
        "etc",
        "inc",
        "ltd",
        "co",
        "st",
        "ave",
        "blvd",
        "rd",
        "jan",
        "feb",
        "mar",
        "apr",
        "jun",
        "jul",
        "aug",
        "sep",
        "oct",
        "nov",
        "dec",
        "e.g",
        "i.e",
        "cf",
        "al",
        "et",
        "no",
        "vol",
        "pp",
        "fig",
        "approx",
        "dept",
        "est",
        "govt",
        "misc",
        "ref",
    }
)

CODE_FENCE = "```"
URL_LOOKBACK = 50

_CLOSED_FENCE_RE = re.compile(r"```[\s\S]*?```")
_TERMINATOR_RE = re.compile(r"[.!?]")
_WORD_CHAR_RE = re.compile(r"[a-zA-Z.]")
_MULTI_DOT_RE = re.compile(r"^[a-z](\.[a-z])+$", re.IGNORECASE)
_URL_RE = re.compile(r"https?://\S*$")
_WWW_RE = re.compile(r"www\.\S*$")
_EXTENSION_RE = re.compile(r"^[a-zA-Z]{2,4}")
_SENTENCE_START_RE = re.compile(r"[A-Z\"'(\[]")
_CLOSERS = "\"')]"
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class SentenceResult:
    """Result of a sentence extraction pass.

    ``tail`` is the untrimmed text after the last boundary. Incremental
    callers keep it instead of ``remainder`` so whitespace between chunks
    survives.
    """

    sentences: list[str]
    remainder: str
    tail: str = ""


def _strip_code_blocks(text: str) -> tuple[str, bool]:
    """Blank out closed code fences. Reports whether a fence is left open."""
    has_unclosed = text.count(CODE_FENCE) % 2 == 1
    return _CLOSED_FENCE_RE.sub(" ", text), has_unclosed


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _is_abbreviation(text: str, period_index: int) -> bool:
    start = period_index - 1
    while start >= 0 and _WORD_CHAR_RE.match(text[start]):
        start -= 1
    word = text[start + 1 : period_index].lower()

    if word in COMMON_ABBREVIATIONS:
        return True
    # Initials, e.g. "J. Smith"
    if len(word) == 1 and word.isalpha():
        return True
    # "U.S." style
    return bool(_MULTI_DOT_RE.match(word))


def _is_decimal(text: str, period_index: int) -> bool:
    if period_index == 0 or period_index >= len(text) - 1:
        return False
    return text[period_index - 1].isdigit() and text[period_index + 1].isdigit()


def _is_url_or_path(text: str, period_index: int) -> bool:
    before = text[max(0, period_index - URL_LOOKBACK) : period_index]
    if _URL_RE.search(before) or _WWW_RE.search(before):
        return True

    # File names such as "main.py," or "config.yaml:12"
    match = _EXTENSION_RE.match(text[period_index + 1 : period_index + 6])
    if match is None:
        return False
    next_index = period_index + 1 + len(match.group(0))
    return next_index < len(text) and not text[next_index].isspace()


def _is_valid_boundary(text: str, terminator_index: int) -> bool:
    after = terminator_index + 1
    if after >= len(text):
        return False

    if not text[after].isspace():
        # Closing quote or bracket followed by whitespace
        return (
            text[after] in _CLOSERS
            and after + 1 < len(text)
            and text[after + 1].isspace()
        )

    index = after + 1
    while index < len(text) and text[index].isspace():
        index += 1
    if index >= len(text):
        return False
    return bool(_SENTENCE_START_RE.match(text[index]))


def _sentence_end(text: str, terminator_index: int) -> int:
    # A closing quote or bracket belongs to the sentence it closes
    end = terminator_index + 1
    if end < len(text) and text[end] in _CLOSERS:
        end += 1
    return end


def extract_sentences(text: str) -> SentenceResult:
    """Extract complete sentences from ``text``.

    A ``.``, ``!`` or ``?`` ends a sentence only when it is followed by
    whitespace and then a capital letter, quote or opening bracket. Periods
    inside abbreviations, decimals, URLs and file names are skipped. While a
    code fence is open nothing is extracted at all.
    """
    if not text or not text.strip():
        return SentenceResult(sentences=[], remainder=text, tail=text)

    cleaned, has_unclosed = _strip_code_blocks(text)
    if has_unclosed:
        return SentenceResult(sentences=[], remainder=text, tail=text)

    sentences: list[str] = []
    last_end = 0
    position = 0

    while True:
        match = _TERMINATOR_RE.search(cleaned, position)
        if match is None:
            break
        index = match.start()
        terminator = match.group(0)
        position = index + 1

        if cleaned.startswith("...", index):
            if _is_valid_boundary(cleaned, index + 2):
                end = _sentence_end(cleaned, index + 2)
                sentence = _collapse(cleaned[last_end:end])
                if sentence:
                    sentences.append(sentence)
                    last_end = end
            position = index + 3
            continue

        if terminator == "." and (
            _is_abbreviation(cleaned, index)
            or _is_decimal(cleaned, index)
            or _is_url_or_path(cleaned, index)
        ):
            continue

        if _is_valid_boundary(cleaned, index):
            end = _sentence_end(cleaned, index)
            sentence = _collapse(cleaned[last_end:end])
            if sentence:
                sentences.append(sentence)
                last_end = end

    tail = cleaned[last_end:]
    return SentenceResult(sentences=sentences, remainder=tail.strip(), tail=tail)


@dataclass
class SentenceBuffer:
    """Per-turn accumulator that feeds ``extract_sentences`` incrementally.

    ``raw`` holds text not yet spoken; ``sentences_sent`` counts sentences
    handed out so far (flushes included).
    """

    raw: str = ""
    sentences_sent: int = 0

    def add(self, text: str) -> list[str]:
        """Append a chunk and return the sentences it completed."""
        self.raw += text
        result = extract_sentences(self.raw)
        self.raw = result.tail
        self.sentences_sent += len(result.sentences)
        return result.sentences

    def flush(self) -> str | None:
        """Return the buffered partial sentence, if any, and reset the buffer."""
        remaining = _collapse(self.raw)
        self.raw = ""
        if not remaining:
            return None
        self.sentences_sent += 1
        return remaining
