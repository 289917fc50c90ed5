"""Deterministic overlapping text chunking."""


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    """Split text into overlapping fixed-size windows.

    Windows start at 0, chunk_size - chunk_overlap, ... and the last one ends
    at len(text). Whitespace-only windows are dropped and the rest are kept
    verbatim: when nothing is dropped, the first chunk followed by every later
    chunk minus its leading overlap gives back the input.

    Args:
        text (str): The full document text.
        chunk_size (int): Window length in characters.
        chunk_overlap (int): Characters shared by consecutive windows.

    Returns:
        list[str]: Ordered chunks; empty for empty or whitespace-only text.

    Raises:
        ValueError: If chunk_size <= 0 or chunk_overlap is outside [0, chunk_size).
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
    if not text:
        return []

    chunks: list[str] = []
    start = 0
    while True:
        end = min(start + chunk_size, len(text))
        window = text[start:end]
        if window.strip():
            chunks.append(window)
        if end >= len(text):
            break
        start = end - chunk_overlap
    return chunks
