# services/chunk_planner.py
from dataclasses import dataclass
from typing import Tuple

CHUNK_SIZE = 5 * 1024 * 1024
MAX_PART_NUMBER = 10000


@dataclass(frozen=True)
class ChunkPlan:
    file_size: int
    chunk_size: int
    total_parts: int

    def part_range(self, part_number: int) -> Tuple[int, int]:
        """Return ``(start, length)`` of the 1-indexed part."""
        if not 1 <= part_number <= self.total_parts:
            raise ValueError(f"part {part_number} outside [1, {self.total_parts}]")
        start = (part_number - 1) * self.chunk_size
        return start, min(self.chunk_size, self.file_size - start)

    def part_length(self, part_number: int) -> int:
        return self.part_range(part_number)[1]


def plan(file_size: int, chunk_size: int = CHUNK_SIZE) -> ChunkPlan:
    if file_size <= 0:
        raise ValueError("file_size must be positive")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return ChunkPlan(file_size, chunk_size, -(-file_size // chunk_size))
