"""Hits: local alignments of reference fragments to genomic intervals.

A ``Hit`` is immutable. Everything derived from a hit during a run
(extensions, splice candidates, border constraints, evidence flags) lives
in a ``HitAnnotation`` kept in a side table, see
``projforge.core.splice``. Deriving a modified hit is ``attrs.evolve``.

Example:
    >>> hit = Hit("geneA_0", 0, "chr1", "+", 1, 3, 3, 100, 108, 14, "MKV", "MKV")
    >>> hit.length_bp
    9
"""

from __future__ import annotations

import logging

import attrs

from projforge.core.alignment import GAP, SubstitutionMatrix, score_aligned

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

STRANDS = ("+", "-")

INFO_SEARCH = "search;"
INFO_SPLIT = "split by '*';"


def _check_strand(instance: Hit, attribute: attrs.Attribute, value: str) -> None:
    if value not in STRANDS:
        raise ValueError(f"strand must be '+' or '-', got {value!r}")


# =============================================================================
# Hit
# =============================================================================


@attrs.define(slots=True, frozen=True, cache_hash=True)
class Hit:
    """Alignment of part of a reference fragment to a genomic interval.

    Coordinates are 1-based and inclusive; ``start <= end`` on both
    strands.

    Attributes:
        query_id: Fragment id (``<gene>_<part>``).
        part: Part index of the fragment.
        contig: Target contig.
        strand: "+" or "-".
        query_start: First aligned fragment residue.
        query_end: Last aligned fragment residue.
        query_length: Fragment length.
        start: Genomic start.
        end: Genomic end.
        score: Alignment score.
        query_aligned: Gapped fragment string.
        target_aligned: Gapped translated target string.
        info: Provenance tags, each terminated by ";".
    """

    query_id: str
    part: int
    contig: str
    strand: str = attrs.field(validator=_check_strand)
    query_start: int
    query_end: int
    query_length: int
    start: int
    end: int
    score: int
    query_aligned: str
    target_aligned: str
    info: str = INFO_SEARCH

    def __attrs_post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Hit {self.query_id}: start {self.start} > end {self.end}")
        if self.query_start > self.query_end + 1:
            raise ValueError(
                f"Hit {self.query_id}: query start {self.query_start} > end {self.query_end}"
            )

    @property
    def length_bp(self) -> int:
        return self.end - self.start + 1

    @property
    def query_span(self) -> int:
        return self.query_end - self.query_start + 1

    @property
    def target(self) -> str:
        """Ungapped translated target."""
        return self.target_aligned.replace(GAP, "")

    def query_overlap(self, other: Hit) -> int:
        """Number of fragment residues covered by both hits."""
        return max(0, min(self.query_end, other.query_end) - max(self.query_start, other.query_start) + 1)

    def sort_key(self) -> tuple:
        return (
            self.contig,
            self.strand,
            self.start,
            self.end,
            self.query_start,
            self.query_end,
            -self.score,
            self.info,
        )

    def to_dict(self) -> dict:
        return attrs.asdict(self)


# =============================================================================
# Stop codon splitting
# =============================================================================


def split_at_stops(
    hit: Hit,
    matrix: SubstitutionMatrix,
    gap_open: int,
    gap_extend: int,
) -> list[Hit]:
    """Split a hit at target stop codons aligned to non-stop residues.

    Each piece is trimmed of gap columns at its edges, gets recomputed
    fragment and genomic coordinates, and is rescored. Pieces with a
    score <= 0 are dropped.

    Args:
        hit: Hit to split.
        matrix: Substitution matrix used for rescoring.
        gap_open: Gap opening cost.
        gap_extend: Gap extension cost.

    Returns:
        The unchanged hit in a list if it contains no such stop, otherwise
        the surviving pieces in alignment order.
    """
    q_aln, t_aln = hit.query_aligned, hit.target_aligned
    cuts = [i for i, (a, b) in enumerate(zip(q_aln, t_aln)) if b == "*" and a != "*"]
    if not cuts:
        return [hit]

    pieces: list[Hit] = []
    bounds = [-1, *cuts, len(q_aln)]
    for left, right in zip(bounds, bounds[1:]):
        begin, stop = left + 1, right
        while begin < stop and (q_aln[begin] == GAP or t_aln[begin] == GAP):
            begin += 1
        while stop > begin and (q_aln[stop - 1] == GAP or t_aln[stop - 1] == GAP):
            stop -= 1
        if begin >= stop:
            continue

        q_piece, t_piece = q_aln[begin:stop], t_aln[begin:stop]
        score = score_aligned(q_piece, t_piece, matrix, gap_open, gap_extend)
        if score <= 0:
            continue

        q_before = len(q_aln[:begin].replace(GAP, ""))
        t_before = len(t_aln[:begin].replace(GAP, ""))
        q_len = len(q_piece.replace(GAP, ""))
        t_len = len(t_piece.replace(GAP, ""))
        if hit.strand == "+":
            start = hit.start + 3 * t_before
            end = start + 3 * t_len - 1
        else:
            end = hit.end - 3 * t_before
            start = end - 3 * t_len + 1

        pieces.append(
            attrs.evolve(
                hit,
                query_start=hit.query_start + q_before,
                query_end=hit.query_start + q_before + q_len - 1,
                start=start,
                end=end,
                score=score,
                query_aligned=q_piece,
                target_aligned=t_piece,
                info=hit.info + INFO_SPLIT,
            )
        )

    logger.debug(f"Split {hit.query_id} at {len(cuts)} stop(s) into {len(pieces)} piece(s)")
    return pieces
