import re
from typing import List, Tuple

CHARS_PER_TOKEN = 4
WORDS_PER_SECOND = 2.5
TRUNCATION_MARKER = "..."

Span = Tuple[int, int]

# Sentence ends (with trailing quotes/brackets) and line breaks are unit boundaries.
_UNIT_BREAK_RE = re.compile(r"[.!?…。！？]+[\"'”’)\]]*\s+|\n+")
_WORD_RE = re.compile(r"\S+\s*")


class TokenEstimator:
    """GPT-style approximation: about four characters per token."""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN, words_per_second: float = WORDS_PER_SECOND):
        self.chars_per_token = chars_per_token
        self.words_per_second = words_per_second

    def estimate(self, text: str) -> int:
        return max(1, len(text) // self.chars_per_token)

    def estimate_duration(self, text: str) -> float:
        return len(text.split()) / self.words_per_second

    def truncate(self, text: str, max_tokens: int) -> str:
        max_chars = max_tokens * self.chars_per_token
        if len(text) <= max_chars:
            return text
        keep = max(1, max_chars - len(TRUNCATION_MARKER))
        return text[:keep].rstrip() + TRUNCATION_MARKER


def sentence_spans(text: str) -> List[Span]:
    spans: List[Span] = []
    start = 0
    for m in _UNIT_BREAK_RE.finditer(text):
        end = m.end()
        if end >= len(text):
            break
        spans.append((start, end))
        start = end
    if start < len(text):
        spans.append((start, len(text)))
    return spans


def word_spans(text: str, start: int = 0, end: int = -1) -> List[Span]:
    if end < 0:
        end = len(text)
    spans: List[Span] = []
    for m in _WORD_RE.finditer(text, start, end):
        spans.append((m.start(), m.end()))
    if spans:
        # Leading whitespace belongs to the first word so spans stay contiguous.
        spans[0] = (start, spans[0][1])
    return spans
