import json
from typing import List, Sequence
from .models import TranscriptEntry
from .config import CHUNK_SIZE, MAX_CHUNK_BYTES

def _serialised_size(entries: Sequence[TranscriptEntry]) -> int:
    return len(json.dumps([e.to_dict() for e in entries], ensure_ascii=False).encode("utf-8"))

def _split_by_bytes(chunk: List[TranscriptEntry], max_bytes: int) -> List[List[TranscriptEntry]]:
    # Greedy pack entries until the serialised chunk would pass max_bytes.
    # An entry that is over the limit on its own still gets its own chunk.
    out: List[List[TranscriptEntry]] = []
    cur: List[TranscriptEntry] = []
    for e in chunk:
        if cur and _serialised_size(cur + [e]) > max_bytes:
            out.append(cur)
            cur = []
        cur.append(e)
    if cur:
        out.append(cur)
    return out

def chunk_transcript(entries: Sequence[TranscriptEntry], chunk_size: int = CHUNK_SIZE,
                     max_chunk_bytes: int = MAX_CHUNK_BYTES) -> List[List[TranscriptEntry]]:
    """Split a transcript into contiguous, order-preserving chunks.

    Chunks hold at most ``chunk_size`` entries. When ``max_chunk_bytes`` is set,
    a chunk whose JSON form is larger than that is split further.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    chunks: List[List[TranscriptEntry]] = []
    for i in range(0, len(entries), chunk_size):
        chunk = list(entries[i:i + chunk_size])
        if max_chunk_bytes and _serialised_size(chunk) > max_chunk_bytes:
            chunks.extend(_split_by_bytes(chunk, max_chunk_bytes))
        else:
            chunks.append(chunk)
    return chunks
