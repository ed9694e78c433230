"""Document chunker - deterministic overlapping text windows."""

import re
from dataclasses import dataclass

_EXCESS_NEWLINES = re.compile(r"\n{3,}")

# Punctuation followed by whitespace that may end a window
_SENTENCE_BREAKS = (". ", ".\n", "? ", "?\n", "! ", "!\n", ";\n", ":\n")

# A boundary is only used if it keeps at least this share of the window
_MIN_WINDOW_RATIO = 0.3


@dataclass(frozen=True)
class TextChunk:
    """One chunk of normalized text.

    start/end are offsets into the normalized text (end exclusive);
    content is the stripped slice.
    """

    content: str
    start: int
    end: int


def normalize_text(text: str) -> str:
    """Collapse runs of 3+ newlines to a paragraph break and trim."""
    return _EXCESS_NEWLINES.sub("\n\n", text).strip()


def _find_break(text: str, start: int, end: int, max_chars: int) -> int:
    """Pick the end of a window that does not reach the end of the text.

    Preference: last paragraph break, then last sentence end, both only if
    they fall at or after 30% of the window; otherwise a hard cut.
    """
    floor = start + int(max_chars * _MIN_WINDOW_RATIO)

    paragraph = text.rfind("\n\n", start, end)
    if paragraph >= floor:
        return paragraph + 2

    sentence = max(text.rfind(marker, start, end) for marker in _SENTENCE_BREAKS)
    if sentence >= floor:
        return sentence + 1

    return end


def chunk_text(
    text: str,
    *,
    max_chars: int = 1500,
    overlap: int = 200,
    min_chars: int = 50,
) -> list[TextChunk]:
    """Split text into overlapping chunks.

    Pure function: the same input and parameters always give the same
    boundaries, so re-chunking a document is idempotent.

    Args:
        text: Raw extracted text
        max_chars: Maximum window size; no chunk span is longer
        overlap: Characters shared by consecutive chunks
        min_chars: Windows whose stripped content is shorter are folded
            into a neighbouring window when that still fits in max_chars,
            and discarded otherwise

    Returns:
        Ordered chunks whose [start, end) spans cover the normalized text,
        except for discarded scraps. Text shorter than min_chars yields a
        single chunk; empty text yields no chunk.

    Raises:
        ValueError: If max_chars/overlap are inconsistent
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if overlap < 0 or overlap >= max_chars:
        raise ValueError("overlap must be >= 0 and smaller than max_chars")

    normalized = normalize_text(text)
    if not normalized:
        return []

    length = len(normalized)
    if length < min_chars:
        return [TextChunk(content=normalized, start=0, end=length)]

    chunks: list[TextChunk] = []
    pos = 0
    carry_start: int | None = None  # start of a carried leading scrap

    while pos < length:
        end = min(pos + max_chars, length)
        if end < length:
            end = _find_break(normalized, pos, end, max_chars)

        span_start = pos if carry_start is None else carry_start
        if end - span_start > max_chars:
            # Carried scrap does not fit in one window: discard it
            span_start = pos
        content = normalized[span_start:end].strip()

        if len(content) >= min_chars:
            chunks.append(TextChunk(content=content, start=span_start, end=end))
            carry_start = None
        elif not chunks:
            carry_start = span_start
        elif end > chunks[-1].end:
            # Trailing scrap: fold it into a window of at most max_chars ending here
            previous = chunks[-1]
            start = max(previous.start, end - max_chars)
            widened = normalized[start:end].strip()
            if start == previous.start:
                chunks[-1] = TextChunk(content=widened, start=start, end=end)
            elif len(widened) >= min_chars:
                chunks.append(TextChunk(content=widened, start=start, end=end))

        if end >= length:
            break

        next_pos = end - overlap
        if next_pos <= pos:
            # Overlap would not move past this window's start
            next_pos = end
        pos = next_pos

    if carry_start is not None:
        # Whole text was scraps; keep the last window rather than lose it
        chunks.append(
            TextChunk(content=normalized[carry_start:].strip(), start=carry_start, end=length)
        )

    return chunks
