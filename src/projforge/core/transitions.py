"""Scoring of transitions between two hits.

A transition joins a hit of part position ``p`` to a later hit of part
position ``q >= p``. Two kinds of joins are evaluated:

- intron loss: the hits are in frame with a stop-free gap between them
  and become one exon
- splice variants: a donor candidate of the first hit paired with an
  acceptor candidate of the second hit in compatible phase

The order of evaluation depends on the part distance ``d = q - p``:
intron loss first for ``d == 0``, splice variants first for ``d == 1``,
both for larger distances. The best choice has the highest score; ties
prefer the smaller total offset, and an intron loss loses ties against a
splice variant.
"""

from __future__ import annotations

import logging

import attrs
import numpy as np

from projforge.core.alignment import NEG, AlignmentKind, PairwiseAligner
from projforge.core.context import StrandedContig
from projforge.core.hits import Hit
from projforge.core.splice import HitAnnotation, SpliceSiteFinder
from projforge.core.transcript import ReferenceTranscript

logger = logging.getLogger(__name__)

KIND_SPLICE = "splice"
KIND_INTRON_LOSS = "intron_loss"


@attrs.define(slots=True, frozen=True)
class SpliceChoice:
    """Chosen join of two hits.

    Attributes:
        score: Transition score.
        donor: Offset applied to the end of the first hit.
        acceptor: Offset applied to the start of the second hit.
        kind: "splice" or "intron_loss".
    """

    score: int
    donor: int
    acceptor: int
    kind: str = KIND_SPLICE

    @property
    def tie_length(self) -> float:
        if self.kind == KIND_INTRON_LOSS:
            return float("inf")
        return abs(self.donor) + abs(self.acceptor)

    def better_than(self, other: SpliceChoice | None) -> bool:
        if other is None:
            return True
        if self.score != other.score:
            return self.score > other.score
        return self.tie_length < other.tie_length


class TransitionScorer:
    """Evaluates ``check_splice_sites`` for pairs of hits.

    Args:
        finder: Splice-site finder of the transcript.
        transcript: Reference transcript.
        aligner: Aligner owned by the current worker.
        intron_penalty: Penalty per gained or lost intron.
        min_intron_length: Minimum intron length in bp.
        approximate: Approximate scoring of intron gains within a part.
    """

    def __init__(
        self,
        finder: SpliceSiteFinder,
        transcript: ReferenceTranscript,
        aligner: PairwiseAligner,
        intron_penalty: int,
        min_intron_length: int,
        approximate: bool = True,
    ) -> None:
        self.finder = finder
        self.transcript = transcript
        self.aligner = aligner
        self.intron_penalty = intron_penalty
        self.min_intron_length = min_intron_length
        self.approximate = approximate
        self.checks = 0

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def protein_between(self, first: Hit, p: int, second: Hit, q: int) -> str:
        """Reference residues from the first hit's start to the second hit's end.

        Split residues of the crossed part boundaries are included.
        """
        fragments = self.transcript.fragments
        if p == q:
            return fragments[p][first.query_start - 1 : second.query_end]
        pieces = [fragments[p][first.query_start - 1 :]]
        for boundary in range(p, q):
            pieces.append(self.transcript.split_residue(boundary))
            if boundary + 1 < q:
                pieces.append(fragments[boundary + 1])
        pieces.append(fragments[q][: second.query_end])
        return "".join(pieces)

    def _translate(self, view: StrandedContig, local_start: int, local_end: int) -> str:
        return self.finder.translate(view, local_start, local_end)

    # -------------------------------------------------------------------------
    # Intron loss
    # -------------------------------------------------------------------------

    def _intron_loss(
        self,
        view: StrandedContig,
        first: Hit,
        a1: HitAnnotation,
        second: Hit,
        a2: HitAnnotation,
    ) -> SpliceChoice | None:
        gap = a2.local_start - 1 - a1.local_end
        if gap < 0 or gap % 3 != 0:
            return None
        if "*" in self._translate(view, a1.local_end + 1, a2.local_start - 1):
            return None
        reference = self.protein_between(first, a1.position, second, a2.position)
        target = self._translate(view, a1.local_start, a2.local_end)
        score = self.aligner.compute(AlignmentKind.GLOBAL, reference, target)
        distance = a2.position - a1.position
        score -= first.score + second.score + distance * self.intron_penalty
        return SpliceChoice(score, gap, 0, KIND_INTRON_LOSS)

    # -------------------------------------------------------------------------
    # Splice variants
    # -------------------------------------------------------------------------

    def _match_states(self, kind: AlignmentKind, query: str, target: str) -> np.ndarray:
        """Match-state values, NEG where the match state is not the unique best."""
        self.aligner.compute(kind, query, target)
        M, X, Y = self.aligner.states()
        return np.where((M > X) & (M > Y), M, NEG)

    def _splice_variants(
        self,
        view: StrandedContig,
        first: Hit,
        a1: HitAnnotation,
        second: Hit,
        a2: HitAnnotation,
    ) -> SpliceChoice | None:
        same_part = a1.position == a2.position
        distance = a2.position - a1.position
        gap_cost = 0
        if not same_part:
            missing = self.transcript.missing_residues(a1.position, a2.position)
            gap_cost = self.aligner.gap_penalty(missing) - (distance - 1) * self.intron_penalty

        approx = None
        if same_part and self.approximate:
            approx = self._approximate_tables(first, a1, second, a2)

        best: SpliceChoice | None = None
        for donor_class in a1.donors:
            for r in range(3):
                acceptors = a2.acceptors[r]
                donors = donor_class[(3 - r) % 3]
                if not acceptors or not donors:
                    continue
                for acc in acceptors:
                    x = a2.local_start - acc.offset
                    for don in donors:
                        y = a1.local_end + don.offset
                        if x - y - 1 < self.min_intron_length:
                            continue
                        if r != 0:
                            rf = 3 - r
                            codon = view.bases(y - rf + 1, y) + view.bases(x, x + r - 1)
                            if self.finder.code.codon(codon) == "*":
                                continue
                        if not same_part:
                            score = don.delta + acc.delta + gap_cost
                        elif approx is not None:
                            score = self._approximate_score(approx, a1, a2, don.offset, acc.offset)
                            if score is None:
                                continue
                            score -= self.intron_penalty + first.score + second.score
                        else:
                            score = self._exact_score(view, first, a1, second, a2, x, y)
                        choice = SpliceChoice(score, don.offset, acc.offset)
                        if choice.better_than(best):
                            best = choice
            if best is not None:
                break
        return best

    def _exact_score(
        self,
        view: StrandedContig,
        first: Hit,
        a1: HitAnnotation,
        second: Hit,
        a2: HitAnnotation,
        x: int,
        y: int,
    ) -> int:
        reference = self.protein_between(first, a1.position, second, a2.position)
        target = self.finder.code.translate(
            view.bases(a1.local_start, y) + view.bases(x, a2.local_end)
        )
        score = self.aligner.compute(AlignmentKind.GLOBAL, reference, target)
        return score - self.intron_penalty - first.score - second.score

    def _approximate_tables(
        self, first: Hit, a1: HitAnnotation, second: Hit, a2: HitAnnotation
    ) -> tuple[np.ndarray, np.ndarray, int]:
        reference = self.protein_between(first, a1.position, second, a2.position)
        extra_down = max(0, a1.max_donor_offset() // 3)
        target1 = a1.target + a1.clean_downstream[:extra_down]
        forward = self._match_states(AlignmentKind.GLOBAL, reference, target1)

        extra_up = max(0, a2.max_acceptor_offset() // 3)
        upstream = a2.clean_upstream
        target2 = (upstream[len(upstream) - extra_up :] if extra_up else "") + a2.target
        backward = self._match_states(AlignmentKind.GLOBAL, reference[::-1], target2[::-1])
        return forward, backward, len(reference)

    def _approximate_score(
        self,
        tables: tuple[np.ndarray, np.ndarray, int],
        a1: HitAnnotation,
        a2: HitAnnotation,
        donor: int,
        acceptor: int,
    ) -> int | None:
        forward, backward, n = tables
        if n < 2:
            return None
        end1 = (a1.local_end + donor - a1.local_start + 1) // 3
        end2 = (a2.local_end - (a2.local_start - acceptor) + 1) // 3
        if not (0 <= end1 < forward.shape[1] and 0 <= end2 < backward.shape[1]):
            return None
        first_rows = forward[1:n, end1]
        second_rows = backward[1:n, end2]
        rows = np.arange(1, n)
        uncovered = n - rows[:, None] - rows[None, :]
        gap = np.where(
            uncovered > 0,
            -(self.aligner.gap_open + uncovered * self.aligner.gap_extend),
            0,
        )
        total = first_rows[:, None] + second_rows[None, :] + gap
        valid = (uncovered >= 0) & (first_rows[:, None] > NEG) & (second_rows[None, :] > NEG)
        total = np.where(valid, total, NEG)
        best = int(total.max())
        if best <= NEG // 2:
            return None
        return best

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def check(self, first: Hit, second: Hit) -> SpliceChoice | None:
        """Return the best join of two hits, or None if none is valid.

        Args:
            first: Hit of the earlier part position.
            second: Hit of the same or a later part position.
        """
        self.checks += 1
        self.aligner.token.check()
        a1 = self.finder.annotate(first)
        a2 = self.finder.annotate(second)
        view = self.finder.view(first)
        distance = a2.position - a1.position

        if distance == 0:
            loss = self._intron_loss(view, first, a1, second, a2)
            if loss is not None:
                return loss
            return self._splice_variants(view, first, a1, second, a2)

        if distance == 1:
            splice = self._splice_variants(view, first, a1, second, a2)
            if splice is not None:
                return splice
            return self._intron_loss(view, first, a1, second, a2)

        loss = self._intron_loss(view, first, a1, second, a2)
        splice = self._splice_variants(view, first, a1, second, a2)
        if splice is not None and splice.better_than(loss):
            return splice
        return loss
