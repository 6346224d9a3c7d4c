"""Solutions and their refinement into gene-model predictions.

A ``Solution`` is the chain of hits found by backtracking. Solutions of
all contig strands of a transcript are ranked in a ``SolutionPool``; the
best ones are refined:

1. the chosen splice offsets of every adjacent pair are re-derived and
   applied to the hit borders
2. start and stop extensions of the first and last part are applied
3. abutting exons are merged into CDS intervals, the protein is
   translated and the quality metrics are computed
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import attrs

from projforge.core.alignment import AlignmentKind, PairwiseAligner
from projforge.core.context import StrandedContig
from projforge.core.hits import Hit
from projforge.core.splice import SpliceSiteFinder
from projforge.core.transcript import ReferenceTranscript
from projforge.core.transitions import TransitionScorer

logger = logging.getLogger(__name__)

INFO_DONOR = "donor"
INFO_ACCEPTOR = "acceptor"
INFO_START = "START"
INFO_STOP = "STOP"


# =============================================================================
# Solution
# =============================================================================


@attrs.define(slots=True, frozen=True)
class Solution:
    """A chain of hits on one contig strand.

    Attributes:
        hits: Hits in transcription order.
        score: Chain score.
        contig: Contig name.
        strand: "+" or "-".
        starts_with_start_codon: First hit is on part 0 and reaches an M.
        backup: Found by analysing the whole hit set after no region qualified.
        cut: Gap filling had to discard recovered hits.
    """

    hits: tuple[Hit, ...]
    score: int
    contig: str
    strand: str
    starts_with_start_codon: bool = False
    backup: bool = False
    cut: bool = False

    @property
    def matched_parts(self) -> int:
        return len({hit.part for hit in self.hits})

    @property
    def start(self) -> int:
        return min(hit.start for hit in self.hits)

    @property
    def end(self) -> int:
        return max(hit.end for hit in self.hits)

    def key(self) -> tuple:
        """Total order; smaller is better."""
        return chain_key(self.hits, self.score, self.starts_with_start_codon, self.contig, self.strand)


def chain_key(
    hits: Sequence[Hit],
    score: int,
    starts_with_start_codon: bool,
    contig: str = "",
    strand: str = "",
) -> tuple:
    span = max(h.end for h in hits) - min(h.start for h in hits)
    return (
        -score,
        -len({h.part for h in hits}),
        len(hits),
        0 if starts_with_start_codon else 1,
        span,
        contig,
        strand,
        tuple((h.start, h.end, h.query_start, h.query_end) for h in hits),
    )


class SolutionPool:
    """Keeps the best ``capacity`` solutions by ``Solution.key``."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._solutions: list[Solution] = []

    def __len__(self) -> int:
        return len(self._solutions)

    def add(self, solution: Solution) -> None:
        self._solutions.append(solution)
        self._solutions.sort(key=Solution.key)
        del self._solutions[self.capacity :]

    def ranked(self) -> list[Solution]:
        return list(self._solutions)


# =============================================================================
# Predictions
# =============================================================================


@attrs.define(slots=True)
class CdsInterval:
    """One CDS interval, genomic coordinates.

    Attributes:
        start: Start (1-based, inclusive).
        end: End (inclusive).
        phase: GFF3 phase.
        acceptor_evidence: The acceptor is supported by RNA-seq.
        donor_evidence: The donor is supported by RNA-seq.
    """

    start: int
    end: int
    phase: int
    acceptor_evidence: bool = False
    donor_evidence: bool = False

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@attrs.define(slots=True)
class EvidenceMetrics:
    """RNA-seq support of a prediction; fractions are None when undefined."""

    tae: float | None = None
    tde: float | None = None
    tie: float | None = None
    min_split_reads: int | None = None
    tpc: float | None = None
    min_coverage: float | None = None
    avg_coverage: float | None = None


@attrs.define(slots=True)
class ProteinMetrics:
    """Agreement of the predicted protein with the reference protein."""

    identity: float
    positive: float
    max_gap: int


@attrs.define(slots=True)
class GeneModelPrediction:
    """A refined gene model.

    Attributes:
        transcript_id: Reference transcript.
        gene_id: Reference gene.
        rank: 1 for the best prediction.
        contig: Contig name.
        strand: "+" or "-".
        score: Chain score.
        cds: CDS intervals in transcription order.
        protein: Translated prediction.
        hits: Refined hits.
        matched_parts: Parts covered by hits.
        total_parts: Parts of the reference.
        backup: See ``Solution.backup``.
        cut: See ``Solution.cut``.
        premature_stops: Stop codons before the last codon.
        start_residue: First residue.
        stop_residue: Last residue.
        intron_gain: A part is split by an intron.
        intron_loss: Two parts share an exon.
        evidence: RNA-seq metrics, None without evidence.
        protein_metrics: Agreement with the reference protein, rebuilt from
            the parts and split residues when none was given.
    """

    transcript_id: str
    gene_id: str
    rank: int
    contig: str
    strand: str
    score: int
    cds: list[CdsInterval]
    protein: str
    hits: list[Hit]
    matched_parts: int
    total_parts: int
    backup: bool = False
    cut: bool = False
    premature_stops: int = 0
    start_residue: str = ""
    stop_residue: str = ""
    intron_gain: bool = False
    intron_loss: bool = False
    evidence: EvidenceMetrics | None = None
    protein_metrics: ProteinMetrics | None = None

    @property
    def start(self) -> int:
        return min(c.start for c in self.cds)

    @property
    def end(self) -> int:
        return max(c.end for c in self.cds)

    @property
    def prediction_id(self) -> str:
        return f"{self.transcript_id}_R{self.rank}"

    def to_dict(self) -> dict:
        return attrs.asdict(self)


# =============================================================================
# Refinement
# =============================================================================


def _apply_offset(hit: Hit, view: StrandedContig, offset: int, donor: bool) -> Hit:
    """Move one border of a hit by ``offset`` bp in transcription direction.

    Negative offsets trim aligned target residues and the matching
    fragment residues.
    """
    local_start, local_end = view.span(hit)
    query_aligned, target_aligned = hit.query_aligned, hit.target_aligned
    query_start, query_end = hit.query_start, hit.query_end
    if donor:
        local_end += offset
    else:
        local_start -= offset
    if offset < 0:
        remove = math.ceil(-offset / 3)
        removed_target = removed_query = 0
        columns = 0
        for q_char, t_char in zip(
            reversed(query_aligned) if donor else query_aligned,
            reversed(target_aligned) if donor else target_aligned,
        ):
            if removed_target == remove and t_char != "-":
                break
            columns += 1
            if t_char != "-":
                removed_target += 1
            if q_char != "-":
                removed_query += 1
        if donor:
            keep = len(query_aligned) - columns
            query_aligned, target_aligned = query_aligned[:keep], target_aligned[:keep]
            query_end -= removed_query
        else:
            query_aligned, target_aligned = query_aligned[columns:], target_aligned[columns:]
            query_start += removed_query
    start, end = view.to_genomic(local_start, local_end)
    tag = INFO_DONOR if donor else INFO_ACCEPTOR
    return attrs.evolve(
        hit,
        start=start,
        end=end,
        query_start=query_start,
        query_end=max(query_end, query_start - 1),
        query_aligned=query_aligned,
        target_aligned=target_aligned,
        info=f"{hit.info}{tag}={offset};",
    )


class SolutionRefiner:
    """Turns solutions into predictions.

    Args:
        finder: Splice-site finder of the transcript.
        scorer: Transition scorer of the transcript.
        transcript: Reference transcript.
        aligner: Aligner owned by the current worker.
    """

    def __init__(
        self,
        finder: SpliceSiteFinder,
        scorer: TransitionScorer,
        transcript: ReferenceTranscript,
        aligner: PairwiseAligner,
    ) -> None:
        self.finder = finder
        self.scorer = scorer
        self.transcript = transcript
        self.aligner = aligner

    def refine_hits(self, solution: Solution) -> list[Hit]:
        """Apply splice choices and start/stop extensions to the hits."""
        view = self.finder.context.view(solution.contig, solution.strand)
        original = list(solution.hits)
        refined = list(original)
        for k in range(1, len(original)):
            choice = self.scorer.check(original[k - 1], original[k])
            if choice is None:
                continue
            refined[k - 1] = _apply_offset(refined[k - 1], view, choice.donor, donor=True)
            refined[k] = _apply_offset(refined[k], view, choice.acceptor, donor=False)

        first_ann = self.finder.annotate(original[0])
        border = first_ann.border
        if border.has_first and border.first_offset != 0:
            local_start, local_end = view.span(refined[0])
            new_start = local_start - 3 * border.first_offset
            if new_start < local_end:
                start, end = view.to_genomic(new_start, local_end)
                refined[0] = attrs.evolve(
                    refined[0], start=start, end=end, info=refined[0].info + f"{INFO_START};"
                )
            else:
                logger.debug(f"{self.transcript.transcript_id}: start extension would empty the first exon")

        last_ann = self.finder.annotate(original[-1])
        border = last_ann.border
        if border.has_last and border.last_offset > 0:
            local_start, local_end = view.span(refined[-1])
            start, end = view.to_genomic(local_start, local_end + 3 * border.last_offset)
            refined[-1] = attrs.evolve(
                refined[-1], start=start, end=end, info=refined[-1].info + f"{INFO_STOP};"
            )
        return refined

    def refine(self, solution: Solution, rank: int) -> GeneModelPrediction:
        """Build the prediction of one solution."""
        view = self.finder.context.view(solution.contig, solution.strand)
        hits = self.refine_hits(solution)
        local = [view.span(h) for h in hits]

        # Merge abutting exons; abutting hits of different parts are an intron loss
        exons: list[list[int]] = []
        intron_gain = intron_loss = False
        for k, (start, end) in enumerate(local):
            if exons and exons[-1][1] + 1 >= start:
                exons[-1][1] = max(exons[-1][1], end)
                if hits[k].part != hits[k - 1].part:
                    intron_loss = True
                continue
            if k > 0 and hits[k].part == hits[k - 1].part:
                intron_gain = True
            exons.append([start, end])

        dna = "".join(view.bases(s, e) for s, e in exons)
        protein = self.finder.code.translate(dna)
        stops = protein[:-1].count("*")

        acceptor_sites = _site_set(view.acceptor_sites)
        donor_sites = _site_set(view.donor_sites)
        cds = []
        cumulative = 0
        for k, (s, e) in enumerate(exons):
            start, end = view.to_genomic(s, e)
            phase = (3 - cumulative % 3) % 3
            cds.append(
                CdsInterval(
                    start,
                    end,
                    phase,
                    acceptor_evidence=k > 0 and s - 1 in acceptor_sites,
                    donor_evidence=k < len(exons) - 1 and e + 1 in donor_sites,
                )
            )
            cumulative += e - s + 1

        prediction = GeneModelPrediction(
            transcript_id=self.transcript.transcript_id,
            gene_id=self.transcript.gene_id,
            rank=rank,
            contig=solution.contig,
            strand=solution.strand,
            score=solution.score,
            cds=cds,
            protein=protein,
            hits=hits,
            matched_parts=solution.matched_parts,
            total_parts=self.transcript.size,
            backup=solution.backup,
            cut=solution.cut,
            premature_stops=stops,
            start_residue=protein[:1],
            stop_residue=protein[-1:],
            intron_gain=intron_gain,
            intron_loss=intron_loss,
        )
        context = self.finder.context
        if context.evidence.has_introns or context.evidence.has_coverage:
            prediction.evidence = evidence_metrics(
                view, exons, context.evidence.has_introns, context.evidence.has_coverage
            )
        prediction.protein_metrics = self.protein_metrics(self.transcript.reference_protein(), protein)
        return prediction

    def protein_metrics(self, reference: str, protein: str) -> ProteinMetrics:
        result = self.aligner.align(AlignmentKind.GLOBAL, reference, protein)
        identical, positive, max_gap = result.identity_counts(self.aligner.matrix)
        length = max(1, result.length)
        return ProteinMetrics(identical / length, positive / length, max_gap)


def _site_set(sites) -> set[int]:
    return {int(s) for s in sites}


def evidence_metrics(
    view: StrandedContig,
    exons: Sequence[Sequence[int]],
    has_introns: bool,
    has_coverage: bool,
) -> EvidenceMetrics:
    """Compute RNA-seq support of merged exons given in local coordinates."""
    metrics = EvidenceMetrics()
    introns = len(exons) - 1
    if has_introns and introns > 0:
        acceptors = _site_set(view.acceptor_sites)
        donors = _site_set(view.donor_sites)
        supported_acceptors = supported_donors = supported_introns = 0
        reads = []
        for (_, end), (start, _) in zip(exons, exons[1:]):
            if end + 1 in donors:
                supported_donors += 1
            if start - 1 in acceptors:
                supported_acceptors += 1
            count = view.introns.get((end + 1, start - 1))
            if count is not None:
                supported_introns += 1
            reads.append(count or 0)
        metrics.tae = supported_acceptors / introns
        metrics.tde = supported_donors / introns
        metrics.tie = supported_introns / introns
        metrics.min_split_reads = min(reads)
    if has_coverage:
        length = covered = 0
        total = 0.0
        minimum = None
        for start, end in exons:
            c, t, m = view.coverage_over(start, end)
            length += end - start + 1
            covered += c
            total += t
            minimum = m if minimum is None else min(minimum, m)
        if length:
            metrics.tpc = covered / length
            metrics.avg_coverage = total / length
            metrics.min_coverage = minimum
    return metrics
