"""Dynamic programming over hits in part order.

Hits are arranged in lanes, one per part position, each sorted by local
start. ``sums[p][i]`` is the best score of a chain starting with hit
``i`` of lane ``p``:

    sums[p][i] = score[p][i] + max(end_cost[p][i], best transition)

A transition from ``(p, i)`` to ``(q, j)`` is valid when the local start
and end strictly increase, ``q > p`` (or ``q == p`` with a later fragment
start and end), the genomic gap is below ``max(1, q - p)`` intron
lengths, and ``q - p`` does not exceed ``MAX_PART_GAP``.

In coarse mode every valid transition scores 0, except same-part pairs
whose fragment overlap exceeds half of the shorter hit, which are
invalid. In splice mode the transition is scored by a
``TransitionScorer`` and memoised per ``(p, i, q, j)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import numpy as np

from projforge.core.cancellation import NEVER_CANCELLED, CancellationToken
from projforge.core.context import StrandedContig
from projforge.core.hits import Hit
from projforge.core.splice import SpliceSiteFinder
from projforge.core.transcript import ReferenceTranscript
from projforge.core.transitions import SpliceChoice, TransitionScorer

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Maximum number of part positions a single transition may skip ahead
MAX_PART_GAP = 5

# Backtracking nodes between two cancellation checks
CHECK_INTERVAL = 1024

_UNCOMPUTED = object()

Lanes = list[list[Hit]]
Cell = tuple[int, int]


class DPTable:
    """Forward DP over the lanes of one contig strand.

    Args:
        lanes: Hits per part position.
        view: Strand-local contig view.
        transcript: Reference transcript.
        intron_limit: Maximum intron length.
        scorer: Transition scorer; None selects coarse mode.
        finder: Splice-site finder providing border constraints (splice mode).
        gap_penalty: Gap scoring function (splice mode).
        intron_penalty: Penalty per missing part (splice mode).
        token: Cancellation token.

    Attributes:
        sums: Best chain score per cell.
        best: Best root value after ``fill``.
    """

    def __init__(
        self,
        lanes: Lanes,
        view: StrandedContig,
        transcript: ReferenceTranscript,
        intron_limit: int,
        scorer: TransitionScorer | None = None,
        finder: SpliceSiteFinder | None = None,
        gap_penalty: Callable[[int], int] | None = None,
        intron_penalty: int = 0,
        token: CancellationToken = NEVER_CANCELLED,
        memo: dict[tuple[int, int, int, int], SpliceChoice | None] | None = None,
    ) -> None:
        self.view = view
        self.transcript = transcript
        self.intron_limit = intron_limit
        self.scorer = scorer
        self.finder = finder
        self.gap_penalty = gap_penalty
        self.intron_penalty = intron_penalty
        self.token = token
        self.memo: dict[tuple[int, int, int, int], SpliceChoice | None] = memo if memo is not None else {}

        self.lanes: Lanes = [sorted(lane, key=self._sort_key) for lane in lanes] if memo is None else lanes
        self.size = len(self.lanes)
        spans = [[view.span(h) for h in lane] for lane in self.lanes]
        self.starts = [np.array([s[0] for s in lane], dtype=np.int64) for lane in spans]
        self.ends = [np.array([s[1] for s in lane], dtype=np.int64) for lane in spans]
        self.sums: list[np.ndarray] = [np.zeros(len(lane), dtype=np.int64) for lane in self.lanes]
        self._start_cost = [np.zeros(len(lane), dtype=np.int64) for lane in self.lanes]
        self._end_cost = [np.zeros(len(lane), dtype=np.int64) for lane in self.lanes]
        self.best: int | None = None

    @property
    def splice_mode(self) -> bool:
        return self.scorer is not None

    def _sort_key(self, hit: Hit) -> tuple:
        start, end = self.view.span(hit)
        return (start, end, hit.query_start, hit.query_end, -hit.score, hit.info)

    def __len__(self) -> int:
        return sum(len(lane) for lane in self.lanes)

    def hits(self) -> list[Hit]:
        return [hit for lane in self.lanes for hit in lane]

    # -------------------------------------------------------------------------
    # Boundary costs
    # -------------------------------------------------------------------------

    def _boundary_costs(self, p: int, hit: Hit) -> tuple[int, int]:
        if not self.splice_mode:
            return 0, 0
        transcript = self.transcript
        border = self.finder.annotate(hit).border
        if p == 0 and border.has_first:
            start = border.first_add_score
        else:
            start = self.gap_penalty(hit.query_start - 1 + transcript.residues_before(p)) - p * self.intron_penalty
        if p == self.size - 1 and border.has_last:
            end = border.last_add_score
        else:
            missing = hit.query_length - hit.query_end + transcript.residues_after(p)
            end = self.gap_penalty(missing) - (self.size - 1 - p) * self.intron_penalty
        return start, end

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, p: int, i: int, q: int, j: int) -> int | None:
        """Score of a valid transition, None when invalid."""
        first, second = self.lanes[p][i], self.lanes[q][j]
        if p == q:
            if second.query_start <= first.query_start or second.query_end <= first.query_end:
                return None
        if not self.splice_mode:
            if p == q:
                shorter = min(first.query_span, second.query_span)
                if 2 * first.query_overlap(second) > shorter:
                    return None
            return 0
        key = (p, i, q, j)
        choice = self.memo.get(key, _UNCOMPUTED)
        if choice is _UNCOMPUTED:
            choice = self.scorer.check(first, second)
            self.memo[key] = choice
        return None if choice is None else choice.score

    def successors(self, p: int, i: int):
        """Yield ``(q, j, transition score)`` for every valid transition."""
        start, end = self.starts[p][i], self.ends[p][i]
        for q in range(p, min(self.size, p + MAX_PART_GAP + 1)):
            starts, ends = self.starts[q], self.ends[q]
            if len(starts) == 0:
                continue
            limit = max(1, q - p) * self.intron_limit
            j = int(np.searchsorted(starts, start, side="right"))
            while j < len(starts):
                if starts[j] - (end + 1) >= limit:
                    break
                if ends[j] > end:
                    value = self._transition(p, i, q, j)
                    if value is not None:
                        yield q, j, value
                j += 1

    # -------------------------------------------------------------------------
    # Fill
    # -------------------------------------------------------------------------

    def fill(self) -> int | None:
        """Compute all sums.

        Returns:
            The best root value ``max(sums + start_cost)``, None if there
            are no hits.
        """
        best = None
        for p in range(self.size - 1, -1, -1):
            lane = self.lanes[p]
            for i in range(len(lane) - 1, -1, -1):
                self.token.check()
                hit = lane[i]
                start_cost, end_cost = self._boundary_costs(p, hit)
                self._start_cost[p][i] = start_cost
                self._end_cost[p][i] = end_cost
                follow = end_cost
                for q, j, value in self.successors(p, i):
                    follow = max(follow, int(self.sums[q][j]) + value)
                self.sums[p][i] = hit.score + follow
                root = int(self.sums[p][i]) + start_cost
                if best is None or root > best:
                    best = root
        self.best = best
        return best

    def root_value(self, p: int, i: int) -> int:
        return int(self.sums[p][i] + self._start_cost[p][i])

    def best_roots(self) -> list[Cell]:
        """All cells whose root value equals the best."""
        return [
            (p, i)
            for p in range(self.size)
            for i in range(len(self.lanes[p]))
            if self.root_value(p, i) == self.best
        ]

    # -------------------------------------------------------------------------
    # Reduction
    # -------------------------------------------------------------------------

    def mark_used(self, threshold: int) -> dict[Cell, int]:
        """Mark every cell on a chain whose root value reaches ``threshold``.

        Returns:
            The largest remaining slack per used cell.
        """
        used: dict[Cell, int] = {}
        stack = []
        for p in range(self.size):
            for i in range(len(self.lanes[p])):
                diff = self.root_value(p, i) - threshold
                if diff >= 0:
                    stack.append((p, i, diff))
        popped = 0
        while stack:
            p, i, diff = stack.pop()
            popped += 1
            if popped % CHECK_INTERVAL == 0:
                self.token.check()
            if diff < 0 or diff <= used.get((p, i), -1):
                continue
            used[(p, i)] = diff
            remaining = diff - int(self.sums[p][i] - self.lanes[p][i].score)
            for q, j, value in self.successors(p, i):
                child = remaining + value + int(self.sums[q][j])
                if child >= 0:
                    stack.append((q, j, child))
        return used

    def reduce(self, threshold: int) -> DPTable:
        """Return a table holding only the hits on chains reaching ``threshold``.

        Splice choices computed so far are carried over.
        """
        used = self.mark_used(threshold)
        remap: list[dict[int, int]] = []
        lanes: Lanes = []
        for p, lane in enumerate(self.lanes):
            mapping = {}
            kept = []
            for i, hit in enumerate(lane):
                if (p, i) in used:
                    mapping[i] = len(kept)
                    kept.append(hit)
            remap.append(mapping)
            lanes.append(kept)
        memo = {}
        for (p, i, q, j), choice in self.memo.items():
            if i in remap[p] and j in remap[q]:
                memo[(p, remap[p][i], q, remap[q][j])] = choice
        logger.debug(f"Reduced {len(self)} hits to {sum(len(lane) for lane in lanes)}")
        return DPTable(
            lanes,
            self.view,
            self.transcript,
            self.intron_limit,
            scorer=self.scorer,
            finder=self.finder,
            gap_penalty=self.gap_penalty,
            intron_penalty=self.intron_penalty,
            token=self.token,
            memo=memo,
        )

    # -------------------------------------------------------------------------
    # Backtracking
    # -------------------------------------------------------------------------

    def _tied_children(self, p: int, i: int) -> list[Cell]:
        total = int(self.sums[p][i]) - self.lanes[p][i].score
        return [(q, j) for q, j, value in self.successors(p, i) if total == value + int(self.sums[q][j])]

    def _chain(self, cells: list[Cell]) -> list[Hit]:
        return [self.lanes[p][i] for p, i in cells]

    def backtrack(self, key: Callable[[list[Hit]], tuple]) -> list[Hit] | None:
        """Return the best chain reaching the best root value.

        Only tied continuations are followed. Each cell keeps the first of
        its tied suffixes with the smallest ``key``, so ``key`` must rank
        chains sharing a prefix the way it ranks their suffixes. Among tied
        roots the chain with the smallest ``key`` wins.
        """
        if self.best is None:
            return None
        suffixes: dict[Cell, list[Cell]] = {}
        popped = 0
        best_cells: list[Cell] | None = None
        best_key = None
        for root in self.best_roots():
            stack: list[tuple[Cell, list[Cell] | None]] = [(root, None)]
            while stack:
                cell, children = stack.pop()
                popped += 1
                if popped % CHECK_INTERVAL == 0:
                    self.token.check()
                if cell in suffixes:
                    continue
                p, i = cell
                if children is None:
                    children = self._tied_children(p, i)
                    stack.append((cell, children))
                    stack.extend((child, None) for child in reversed(children) if child not in suffixes)
                    continue
                chosen: list[Cell] | None = None
                chosen_key = None
                if int(self.sums[p][i]) == self.lanes[p][i].score + int(self._end_cost[p][i]):
                    chosen = [cell]
                    chosen_key = key(self._chain(chosen))
                for child in children:
                    cells = [cell, *suffixes[child]]
                    cells_key = key(self._chain(cells))
                    if chosen_key is None or cells_key < chosen_key:
                        chosen, chosen_key = cells, cells_key
                suffixes[cell] = chosen
            root_key = key(self._chain(suffixes[root]))
            if best_key is None or root_key < best_key:
                best_cells, best_key = suffixes[root], root_key
        return self._chain(best_cells)


def build_lanes(hits: Sequence[Hit], transcript: ReferenceTranscript) -> Lanes:
    """Group hits by part position; hits of unknown parts are dropped."""
    lanes: Lanes = [[] for _ in range(transcript.size)]
    for hit in hits:
        position = transcript.position(hit.part)
        if position is not None:
            lanes[position].append(hit)
    return lanes
