"""
Deterministic synthetic content.

Every piece is generated from its own numpy RNG seeded with
(seed, piece index), so two nodes that "generate" the same content end up
byte-identical without ever talking to each other, and a single piece can
be regenerated without producing the ones before it.
"""
import hashlib
import os
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence, Tuple

import numpy as np

DEFAULT_NAME = "temporary"


def generate_piece(index: int, piece_size: int, seed: int = 0) -> bytes:
    rng = np.random.default_rng([seed, index])
    return rng.integers(0, 256, size=piece_size, dtype=np.uint8).tobytes()


def file_layout(file_sizes: Sequence[int], name: str = DEFAULT_NAME) -> List[Tuple[str, int]]:
    """(relative path, size) for each file.

    A single file is stored as `name`; multiple files go under
    name/test_dir<i // 5>/test<i>, five files per directory.
    """
    if len(file_sizes) == 1:
        return [(name, int(file_sizes[0]))]
    return [
        (os.path.join(name, f"test_dir{i // 5}", f"test{i}"), int(size))
        for i, size in enumerate(file_sizes)
    ]


@dataclass
class ContentDescriptor:
    name: str
    piece_size: int
    seed: int
    files: List[Tuple[str, int]]
    piece_hashes: List[bytes] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(size for _, size in self.files)

    @property
    def num_pieces(self) -> int:
        return (self.total_size + self.piece_size - 1) // self.piece_size

    def piece_length(self, index: int) -> int:
        if index < 0 or index >= self.num_pieces:
            raise IndexError(f"piece {index} out of range (0..{self.num_pieces - 1})")
        if index == self.num_pieces - 1:
            return self.total_size - index * self.piece_size
        return self.piece_size

    def piece(self, index: int) -> bytes:
        return generate_piece(index, self.piece_length(index), self.seed)

    def pieces(self) -> Iterator[bytes]:
        for i in range(self.num_pieces):
            yield self.piece(i)

    def write_files(self, root: str) -> None:
        """Write the content under `root`, laid out as in `files`."""
        pieces = self.pieces()
        pending = b""
        for path, size in self.files:
            full_path = os.path.join(root, path)
            os.makedirs(os.path.dirname(full_path) or root, exist_ok=True)
            with open(full_path, "wb") as f:
                remaining = size
                while remaining > 0:
                    if not pending:
                        pending = next(pieces)
                    chunk = pending[:remaining]
                    f.write(chunk)
                    pending = pending[len(chunk):]
                    remaining -= len(chunk)


def generate(
    file_sizes: Sequence[int], piece_size: int, seed: int = 0, name: str = DEFAULT_NAME
) -> ContentDescriptor:
    """Describe deterministic content: layout plus one SHA1 per piece."""
    if not file_sizes:
        raise ValueError("at least one file is required")
    if piece_size <= 0:
        raise ValueError(f"invalid piece size {piece_size}")
    descriptor = ContentDescriptor(
        name=name,
        piece_size=piece_size,
        seed=seed,
        files=file_layout(file_sizes, name),
    )
    descriptor.piece_hashes = [hashlib.sha1(p).digest() for p in descriptor.pieces()]
    return descriptor


def create_random_files(path: str, file_sizes: Sequence[int]) -> None:
    """Fill path/test_dir<i // 5>/test<i> with non-reproducible random data."""
    chunk_size = 300000
    for i, size in enumerate(file_sizes):
        dir_path = os.path.join(path, f"test_dir{i // 5}")
        os.makedirs(dir_path, exist_ok=True)
        file_path = os.path.join(dir_path, f"test{i}")
        with open(file_path, "wb") as f:
            remaining = size
            while remaining > 0:
                chunk_len = min(chunk_size, remaining)
                f.write(os.urandom(chunk_len))
                remaining -= chunk_len
