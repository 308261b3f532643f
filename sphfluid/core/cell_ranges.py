"""
Cell range table built from the sorted hash entries.

cell_start[c] / cell_end[c] give the half-open range of sorted indices
whose key is c. Empty cells keep start = EMPTY_CELL and end = 0. A
range boundary is wherever two adjacent sorted keys differ, so every
sorted index writes at most the start of its own cell and the end of
its own cell: no two iterations touch the same slot.
"""

import numpy as np
import numba as nb

# Sentinel for hash padding and empty cells
EMPTY_CELL = np.uint32(0xFFFFFFFF)


def reset_cell_ranges(cell_start: np.ndarray, cell_end: np.ndarray):
    cell_start.fill(EMPTY_CELL)
    cell_end.fill(0)


def build_cell_ranges_vectorized(sorted_keys: np.ndarray, count: int,
                                 cell_start: np.ndarray, cell_end: np.ndarray):
    """Fill the range table from the first ``count`` sorted keys.

    Args:
        sorted_keys: Keys sorted ascending (padding at the tail)
        count: Number of valid entries
        cell_start: uint32 per-cell start, overwritten
        cell_end: uint32 per-cell end, overwritten
    """
    reset_cell_ranges(cell_start, cell_end)
    if count == 0:
        return

    keys = sorted_keys[:count].astype(np.int64)
    idx = np.arange(count, dtype=np.int64)

    is_first = np.empty(count, dtype=bool)
    is_first[0] = True
    is_first[1:] = keys[1:] != keys[:-1]

    is_last = np.empty(count, dtype=bool)
    is_last[-1] = True
    is_last[:-1] = keys[:-1] != keys[1:]

    cell_start[keys[is_first]] = idx[is_first]
    cell_end[keys[is_last]] = idx[is_last] + 1


@nb.njit(parallel=True, fastmath=True, cache=True)
def _build_cell_ranges_numba(sorted_keys: np.ndarray, count: int,
                             cell_start: np.ndarray, cell_end: np.ndarray):
    for i in nb.prange(count):
        key = sorted_keys[i]
        if i == 0 or sorted_keys[i - 1] != key:
            cell_start[key] = i
        if i == count - 1 or sorted_keys[i + 1] != key:
            cell_end[key] = i + 1


def build_cell_ranges_numba(sorted_keys: np.ndarray, count: int,
                            cell_start: np.ndarray, cell_end: np.ndarray):
    """Numba version: one parallel iteration per sorted index."""
    reset_cell_ranges(cell_start, cell_end)
    if count == 0:
        return
    _build_cell_ranges_numba(sorted_keys, count, cell_start, cell_end)


def cell_lengths(cell_start: np.ndarray, cell_end: np.ndarray) -> np.ndarray:
    """Number of entries per cell (0 for empty cells)."""
    occupied = cell_start != EMPTY_CELL
    lengths = np.zeros(len(cell_start), dtype=np.int64)
    lengths[occupied] = cell_end[occupied].astype(np.int64) - cell_start[occupied].astype(np.int64)
    return lengths
