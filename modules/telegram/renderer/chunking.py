"""
Message Chunking.

Splits composed text into chunks no longer than the platform limit without
losing or altering a single character. Each chunk records the separator
that was consumed at its boundary, so join_chunks() reproduces the input
exactly.

Split preference inside the first `max_length + 1` characters:
    1. the last newline (line boundary)
    2. the last space, when no line boundary fits (overlong line)
    3. a hard cut at `max_length`, when a single word is overlong

Usage:
    chunks = chunk_text(text, 4096)
    assert join_chunks(chunks) == text
"""

from dataclasses import dataclass

TELEGRAM_MAX_MESSAGE_LENGTH = 4096


@dataclass(frozen=True)
class TextChunk:
    text: str
    separator: str = ""


def _split_point(window: str) -> tuple[int, str] | None:
    for separator in ("\n", " "):
        index = window.rfind(separator)
        if index > 0:
            return index, separator
    return None


def chunk_text(text: str, max_length: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> list[TextChunk]:
    """
    Split `text` into chunks of at most `max_length` characters.

    Raises:
        ValueError: If max_length is not positive
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")

    chunks: list[TextChunk] = []
    remaining = text
    while len(remaining) > max_length:
        split = _split_point(remaining[: max_length + 1])
        if split is None:
            chunks.append(TextChunk(remaining[:max_length]))
            remaining = remaining[max_length:]
            continue
        index, separator = split
        chunks.append(TextChunk(remaining[:index], separator))
        remaining = remaining[index + 1:]

    chunks.append(TextChunk(remaining))
    return chunks


def join_chunks(chunks: list[TextChunk]) -> str:
    """Inverse of chunk_text."""
    return "".join(chunk.text + chunk.separator for chunk in chunks)
