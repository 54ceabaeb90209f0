from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

MIB = 1024 * 1024
DEFAULT_CHUNK_SIZE = 64 * MIB


@dataclass(frozen=True)
class ChunkSpec:
    index: int
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass
class UploadSession:
    upload_id: str
    parent_id: str
    parent_type: str
    name: str
    size: int
    chunks: list[ChunkSpec] = field(default_factory=list)
    sent: int = 0


def plan_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[ChunkSpec]:
    if size < 0:
        raise ValueError(f"negative_size: {size}")
    if chunk_size <= 0:
        raise ValueError(f"invalid_chunk_size: {chunk_size}")

    chunks: list[ChunkSpec] = []
    offset = 0
    while offset < size:
        length = min(chunk_size, size - offset)
        chunks.append(ChunkSpec(index=len(chunks), offset=offset, size=length))
        offset += length
    return chunks


def read_chunks(path: Path, chunks: list[ChunkSpec]) -> Iterator[tuple[ChunkSpec, bytes]]:
    """Yield chunk payloads in order, holding at most one chunk in memory."""
    with path.open("rb") as fp:
        for chunk in chunks:
            fp.seek(chunk.offset)
            data = fp.read(chunk.size)
            if len(data) != chunk.size:
                raise RuntimeError(
                    f"short_read: {path} offset={chunk.offset} expected={chunk.size} got={len(data)}"
                )
            yield chunk, data
