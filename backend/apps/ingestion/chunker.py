"""
Deterministic recursive text chunking for document indexing.

Chunking is designed to be:
- Deterministic: Same input always produces same chunks
- Structure-aware: Splits on the coarsest separator that fits
  (paragraph, line, sentence, word, then hard character cut)
- Overlap-aware: Consecutive chunks share up to `chunk_overlap`
  characters for context continuity
- Lossless: Every chunk is a contiguous slice of the stripped input,
  so the chunks cover it in order with no gaps
"""
import logging
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Default chunking parameters
DEFAULT_CHUNK_SIZE = 500  # characters
DEFAULT_CHUNK_OVERLAP = 50  # characters of overlap between chunks

# Coarse to fine. The empty separator means "cut between any two characters".
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


def split_keeping_separator(text: str, separator: str) -> List[str]:
    """
    Split text on a separator, keeping it at the end of each piece.

    "One. Two. Three" split on ". " gives ["One. ", "Two. ", "Three"],
    so joining the pieces back gives the original text exactly.
    """
    if separator == "":
        return list(text)

    pieces = []
    start = 0
    while True:
        idx = text.find(separator, start)
        if idx == -1:
            break
        pieces.append(text[start:idx + len(separator)])
        start = idx + len(separator)
    pieces.append(text[start:])

    return [p for p in pieces if p]


class RecursiveChunker:
    """
    Split long text into overlapping chunks of bounded size.

    Pieces are merged greedily up to `chunk_size`. When a chunk is
    emitted, its trailing pieces (up to `chunk_overlap` characters) are
    carried into the next one. Pieces that are still too large on their
    own are split again with the next finer separator.

    No chunk exceeds `chunk_size` unless a single piece at the finest
    available separator does.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: Optional[Sequence[str]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be >= 0 and smaller "
                f"than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators) if separators is not None else list(DEFAULT_SEPARATORS)

    def chunk(self, text: str) -> List[str]:
        """
        Split text into overlapping chunks.

        Args:
            text: The text to chunk

        Returns:
            Ordered list of chunks; empty only for blank input
        """
        text = (text or "").strip()

        if not text:
            logger.warning("Empty text provided for chunking")
            return []

        chunks = [c for c in self._split(text, self.separators) if c.strip()]

        logger.info(f"Created {len(chunks)} chunks from {len(text)} characters")
        return chunks

    def _split(self, text: str, separators: List[str]) -> List[str]:
        # Pick the coarsest separator that actually occurs in the text
        separator = separators[-1]
        finer: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "" or candidate in text:
                separator = candidate
                finer = separators[i + 1:]
                break

        chunks: List[str] = []
        fitting: List[str] = []

        for piece in split_keeping_separator(text, separator):
            if len(piece) < self.chunk_size:
                fitting.append(piece)
                continue

            if fitting:
                chunks.extend(self._merge(fitting))
                fitting = []

            if finer:
                chunks.extend(self._split(piece, finer))
            else:
                chunks.append(piece)

        if fitting:
            chunks.extend(self._merge(fitting))

        return chunks

    def _merge(self, pieces: List[str]) -> List[str]:
        """Merge small pieces into chunks, carrying overlap between them."""
        chunks: List[str] = []
        window: List[str] = []
        total = 0

        for piece in pieces:
            if window and total + len(piece) > self.chunk_size:
                chunks.append("".join(window))

                # Drop leading pieces until what is left fits the overlap
                # and leaves room for the incoming piece
                while window and (
                    total > self.chunk_overlap
                    or total + len(piece) > self.chunk_size
                ):
                    total -= len(window[0])
                    window.pop(0)

            window.append(piece)
            total += len(piece)

        if window:
            chunks.append("".join(window))

        return chunks


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """Convenience wrapper around RecursiveChunker."""
    return RecursiveChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap).chunk(text)
