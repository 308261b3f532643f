"""
Bitonic sort of (hash key, particle index) entries.

The sorting network has log2(n) stages; stage k runs compare passes at
strides k/2, k/4, ..., 1. Every pass compares and conditionally swaps
disjoint pairs (i, i ^ j), so a pass is one independent operation per
element with a barrier between passes.

Entries are ordered by (key, value). Values are unique particle
indices, so this is a total order and the result equals a stable sort
by key of entries whose values started out ascending.
"""

import numpy as np
import numba as nb


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def sort_stage_count(n: int) -> int:
    """Number of bitonic stages for a padded length n."""
    return int(n).bit_length() - 1


def _check_length(keys: np.ndarray, values: np.ndarray):
    if len(keys) != len(values):
        raise ValueError(f"keys and values differ in length: {len(keys)} != {len(values)}")
    if not is_power_of_two(len(keys)):
        raise ValueError(f"Bitonic sort needs a power-of-two length, got {len(keys)}")


def bitonic_sort_vectorized(keys: np.ndarray, values: np.ndarray):
    """Sort entries in place with NumPy, one vectorized op per pass.

    Args:
        keys: uint32 hash keys, power-of-two length
        values: uint32 particle indices, same length
    """
    _check_length(keys, values)
    n = len(keys)
    idx = np.arange(n, dtype=np.int64)

    k = 2
    while k <= n:
        j = k // 2
        while j > 0:
            partner = idx ^ j
            lower = idx[partner > idx]
            upper = lower ^ j

            ka, kb = keys[lower], keys[upper]
            va, vb = values[lower], values[upper]
            greater = (ka > kb) | ((ka == kb) & (va > vb))
            ascending = (lower & k) == 0
            swap = np.where(ascending, greater, ~greater)

            a, b = lower[swap], upper[swap]
            keys[a], keys[b] = keys[b], keys[a].copy()
            values[a], values[b] = values[b], values[a].copy()
            j //= 2
        k *= 2


@nb.njit(parallel=True, fastmath=True, cache=True)
def _bitonic_pass_numba(keys: np.ndarray, values: np.ndarray, j: int, k: int):
    """One compare-and-swap pass; iteration i owns the pair (i, i ^ j)."""
    n = keys.shape[0]
    for i in nb.prange(n):
        partner = i ^ j
        if partner > i:
            ka = keys[i]
            kb = keys[partner]
            greater = ka > kb or (ka == kb and values[i] > values[partner])
            ascending = (i & k) == 0
            if greater == ascending:
                keys[i] = kb
                keys[partner] = ka
                tmp = values[i]
                values[i] = values[partner]
                values[partner] = tmp


def bitonic_sort_numba(keys: np.ndarray, values: np.ndarray):
    """Sort entries in place, one parallel Numba pass per network step."""
    _check_length(keys, values)
    n = len(keys)
    k = 2
    while k <= n:
        j = k // 2
        while j > 0:
            _bitonic_pass_numba(keys, values, j, k)
            j //= 2
        k *= 2


def stable_sort(keys: np.ndarray, values: np.ndarray):
    """Sequential fallback producing the same (key, value) order."""
    order = np.lexsort((values, keys))
    keys[:] = keys[order]
    values[:] = values[order]


def is_sorted(keys: np.ndarray, count: int = None) -> bool:
    """True if keys[:count] is non-decreasing."""
    if count is None:
        count = len(keys)
    head = keys[:count]
    return bool(np.all(head[:-1] <= head[1:])) if count > 1 else True
