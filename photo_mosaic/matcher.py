"""Diversity-biased greedy tile matching.

For each target colour the matcher scores every eligible candidate by its
colour distance plus a usage term: unused tiles get a bonus, used tiles a
penalty growing with ``usage**1.5``. Among the best 20 scores, those within
twice the best are "similar" and the least-used of them wins, ties broken by
the raw colour distance.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

import numpy as np

from photo_mosaic.catalog import CandidatePool
from photo_mosaic.color_utils import color_distances

logger = logging.getLogger(__name__)

TOP_CANDIDATES = 20
SIMILARITY_FACTOR = 2.0


class UsageLedger(Mapping):
    """Immutable per-pass usage counts, candidate id → placements.

    :meth:`record` returns a new ledger; the one it was called on is left
    untouched, so a ledger can be threaded through the match loop as a
    plain value.
    """

    __slots__ = ("_counts", "_total")

    def __init__(self, counts: Mapping[int, int] | None = None) -> None:
        counts = dict(counts or {})
        self._counts = MappingProxyType(counts)
        self._total = sum(counts.values())

    def __getitem__(self, photo_id: int) -> int:
        return self._counts.get(photo_id, 0)

    def __contains__(self, photo_id: object) -> bool:
        return photo_id in self._counts

    def __iter__(self) -> Iterator[int]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __repr__(self) -> str:
        return f"UsageLedger({dict(self._counts)!r})"

    @property
    def total(self) -> int:
        return self._total

    def record(self, photo_id: int) -> UsageLedger:
        counts = dict(self._counts)
        counts[photo_id] = counts.get(photo_id, 0) + 1
        return UsageLedger(counts)

    def counts_for(self, ids: np.ndarray) -> np.ndarray:
        return np.fromiter((self._counts.get(int(i), 0) for i in ids), dtype=np.int64, count=len(ids))


def adjusted_scores(raw: np.ndarray, usage: np.ndarray, diversity_bonus: float) -> np.ndarray:
    """Raw distance plus the usage penalty (or the first-use bonus)."""
    u = np.asarray(usage, dtype=np.float64)
    penalty = np.where(u > 0, diversity_bonus * (1.0 + u ** 1.5), -0.5 * diversity_bonus)
    return np.asarray(raw, dtype=np.float64) + penalty


def fallback_tile(
    pool: CandidatePool,
    excluded: Iterable[int] = (),
    allowed: Iterable[int] | None = None,
) -> int:
    """Last-resort id: first allow-listed, non-excluded id in pool order, else 0."""
    excluded = set(excluded)
    allowed_set = set(allowed) if allowed is not None else None
    for pid in pool.ids:
        pid = int(pid)
        if pid in excluded:
            continue
        if allowed_set is None or pid in allowed_set:
            return pid
    if allowed_set:
        remaining = sorted(allowed_set - excluded)
        if remaining:
            return remaining[0]
    return 0


def select_tile(
    target: tuple[float, float, float],
    pool: CandidatePool,
    ledger: Mapping[int, int],
    excluded: Iterable[int] = (),
    allowed: Iterable[int] | None = None,
    usage_cap: int = 4,
    diversity_bonus: float = 5000.0,
    color_space: str = "rgb",
) -> int:
    """Pick the candidate id for one region.

    Args:
        target:          Sampled (r, g, b) of the region.
        pool:            Candidate pool.
        ledger:          Current usage counts (not modified).
        excluded:        Ids never to return (the hero itself).
        allowed:         Optional allow-list of ids with an existing tile.
        usage_cap:       Candidates used this many times are ineligible.
        diversity_bonus: Magnitude of the usage penalty / first-use bonus.
        color_space:     ``"rgb"`` or ``"lab"``.

    Returns:
        The chosen candidate id. When nothing is eligible the
        :func:`fallback_tile` placeholder is returned and a warning logged.
    """
    ids = pool.ids
    if isinstance(ledger, UsageLedger):
        usage = ledger.counts_for(ids)
    else:
        usage = np.fromiter((ledger.get(int(i), 0) for i in ids), dtype=np.int64, count=len(ids))

    excluded = set(excluded)
    eligible = usage < usage_cap
    if excluded:
        eligible &= ~np.isin(ids, np.fromiter(excluded, dtype=np.int64))
    if allowed is not None:
        allowed = set(allowed)
        eligible &= np.isin(ids, np.fromiter(allowed, dtype=np.int64, count=len(allowed)))

    if not eligible.any():
        pid = fallback_tile(pool, excluded, allowed)
        logger.warning("No eligible candidate (pool=%d, cap=%d); placeholder id %d", len(pool), usage_cap, pid)
        return pid

    cand_ids = ids[eligible]
    cand_usage = usage[eligible]
    raw = color_distances(target, pool.colors[eligible], color_space)
    score = adjusted_scores(raw, cand_usage, diversity_bonus)

    top = np.argsort(score, kind="stable")[:TOP_CANDIDATES]
    best = score[top[0]]
    with np.errstate(invalid="ignore"):
        # "within 2x the best" measured as a margin of |best| so it also
        # holds when the first-use bonus drives the best score negative
        similar = top[score[top] - best <= abs(best) * (SIMILARITY_FACTOR - 1.0)]
    if len(similar) == 0:
        similar = top[:1]

    order = np.lexsort((raw[similar], cand_usage[similar]))
    return int(cand_ids[similar[order[0]]])
