"""Positional train/validation/test splits over chronologically sorted rows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, List, Optional, Sequence, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class ChronologicalSplit(Generic[T]):
    """Represents contiguous train/validation/test slices, oldest first."""

    train: List[T]
    valid: List[T]
    test: List[T]

    def sizes(self) -> dict:
        return {"train": len(self.train), "valid": len(self.valid), "test": len(self.test)}


def split_chronological(rows: Sequence[T], train_fraction: float = 0.7, valid_fraction: float = 0.15) -> ChronologicalSplit[T]:
    """Split sorted rows by position; train and validation always keep at least one row each."""
    total = len(rows)
    train_end = max(1, int(total * train_fraction))
    valid_end = max(train_end + 1, int(total * (train_fraction + valid_fraction)))
    return ChronologicalSplit(
        train=list(rows[:train_end]),
        valid=list(rows[train_end:valid_end]),
        test=list(rows[valid_end:]),
    )


def generate_walk_forward_offsets(
    total: int,
    *,
    train_window: int,
    val_window: int,
    test_window: int,
    step: int,
    max_splits: Optional[int] = None,
) -> List[int]:
    """Start offsets of every full walk-forward window that fits in ``total`` rows."""
    if train_window <= 0 or val_window <= 0 or test_window <= 0 or step <= 0:
        raise ValueError("Window sizes and step must be positive integers.")
    size = train_window + val_window + test_window
    offsets: List[int] = []
    start = 0
    while start + size <= total:
        offsets.append(start)
        if max_splits and len(offsets) >= max_splits:
            break
        start += step
    return offsets


def slice_window(
    rows: Sequence[T],
    start: int,
    *,
    train_window: int,
    val_window: int,
    test_window: int,
) -> ChronologicalSplit[T]:
    train_end = start + train_window
    val_end = train_end + val_window
    test_end = val_end + test_window
    return ChronologicalSplit(
        train=list(rows[start:train_end]),
        valid=list(rows[train_end:val_end]),
        test=list(rows[val_end:test_end]),
    )
