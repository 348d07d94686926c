"""
Chunking

Split free text into retrievable chunks.

Design decisions:
- Sentence boundaries are respected so no sentence is severed
- Character overlap carries context across chunk boundaries
- Oversized sentences are hard-wrapped, bounding every chunk
- Pure and deterministic; the chunker holds configuration only
"""

import re

# A run of terminal punctuation followed by whitespace or end of text
_SENTENCE_END = re.compile(r"[.!?]+(?:\s+|$)")

DEFAULT_CHUNK_SIZE = 800
DEFAULT_OVERLAP = 100


def split_sentences(text: str) -> list[str]:
    """
    Split text after terminal punctuation.

    Concatenating the result reproduces the input exactly: whitespace
    after a terminator stays with its sentence, and trailing text with
    no terminator becomes the last sentence.
    """
    sentences = []
    start = 0

    for match in _SENTENCE_END.finditer(text):
        sentences.append(text[start:match.end()])
        start = match.end()

    if start < len(text):
        sentences.append(text[start:])

    return sentences


class SentenceChunker:
    """
    Sentence-respecting chunker with character overlap.

    Sentences accumulate greedily into a buffer. When the next sentence
    would push the buffer past chunk_size the buffer is emitted, and the
    new buffer starts with the last `overlap` characters of the old one.

    No chunk is empty and none is longer than chunk_size + overlap.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ValueError(f"overlap must not be negative, got {overlap}")
        if overlap >= chunk_size:
            raise ValueError(
                f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
            )

        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def split(self, text: str) -> list[str]:
        """Split text into ordered, non-empty chunks."""
        if not text:
            return []

        chunks: list[str] = []
        buffer = ""

        for sentence in self._sentences(text):
            if buffer and len(buffer) + len(sentence) > self._chunk_size:
                self._emit(chunks, buffer)
                buffer = self._tail(buffer) + sentence
            else:
                buffer += sentence

        self._emit(chunks, buffer)
        return chunks

    def _sentences(self, text: str) -> list[str]:
        """Sentences, with any longer than chunk_size cut into slices."""
        pieces = []
        for sentence in split_sentences(text):
            if len(sentence) <= self._chunk_size:
                pieces.append(sentence)
                continue
            for i in range(0, len(sentence), self._chunk_size):
                pieces.append(sentence[i:i + self._chunk_size])
        return pieces

    def _tail(self, buffer: str) -> str:
        # buffer[-0:] would be the whole buffer
        if self._overlap == 0:
            return ""
        return buffer[-self._overlap:]

    @staticmethod
    def _emit(chunks: list[str], buffer: str) -> None:
        chunk = buffer.strip()
        if chunk:
            chunks.append(chunk)


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """Functional shortcut for SentenceChunker(chunk_size, overlap).split(text)."""
    return SentenceChunker(chunk_size=chunk_size, overlap=overlap).split(text)
