"""Splice-site candidates and border constraints of hits.

For every hit the ``SpliceSiteFinder`` derives, once per run:

- the open reading frame around the hit (residues upstream up to and
  including a stop codon, residues downstream up to and including a stop)
- acceptor candidates: offsets ``a`` that move the exon start to
  ``start - a``, with an ``AG`` directly before the new start
- donor candidates: offsets ``b`` that move the exon end to ``end + b``,
  with a ``GT`` (class 0) or ``GC`` (class 1) directly after the new end
- border constraints for the first and last part of a transcript:
  extension to a start codon and to the stop codon

All positions are strand-local (see ``projforge.core.context``).
RNA-seq introns take priority over motifs; motifs are used when there is
no intron evidence for the contig strand, or when the evidence gives no
candidate and the canonical fallback is enabled.

Every candidate carries a score delta: the score of a global realignment
of the fragment against the hit's target extended or trimmed to the
candidate, minus the hit's score.
"""

from __future__ import annotations

import logging

import attrs

from projforge.core.alignment import AlignmentKind, PairwiseAligner
from projforge.core.context import ProjectionContext, StrandedContig
from projforge.core.hits import Hit
from projforge.core.transcript import ReferenceTranscript

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Residues at the fragment edges that may be missing without penalty when
# locating start codons
MISSING_AA = 10

# Residues of a hit that a splice site may consume
IGNORE_AA_FOR_SPLICE_SITE = 30

ACCEPTOR_MOTIF = "AG"
DONOR_MOTIFS = ("GT", "GC")


def frame_class(offset: int) -> int:
    """Phase class of an offset."""
    return offset % 3


def inner_window(length_bp: int) -> int:
    """Bases of a hit a splice site may consume."""
    codons = length_bp // 3
    return min(3 * IGNORE_AA_FOR_SPLICE_SITE, codons - codons % 3)


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True, frozen=True)
class SpliceCandidate:
    """A candidate splice site.

    Attributes:
        offset: Signed offset in bp from the hit border.
        delta: Score change of the realignment against the hit score.
    """

    offset: int
    delta: int


@attrs.define(slots=True)
class BorderConstraints:
    """Start/stop extension of a first or last part.

    Attributes:
        has_first: A start codon was searched for this hit.
        first_offset: Codons to add upstream (negative: trim to an internal M).
        first_add_score: Score change of the realignment with the start.
        first_residue: First residue of the extended target.
        has_last: A stop codon was searched for this hit.
        last_offset: Codons to add downstream including the stop.
        last_add_score: Score change of the realignment with the stop.
    """

    has_first: bool = False
    first_offset: int = 0
    first_add_score: int = 0
    first_residue: str = ""
    has_last: bool = False
    last_offset: int = 0
    last_add_score: int = 0


@attrs.define(slots=True)
class HitAnnotation:
    """Derived data of one hit.

    Attributes:
        position: Part position in the transcript.
        local_start: Local start of the hit.
        local_end: Local end of the hit.
        target: Ungapped translated target.
        inner: Bases of the hit a splice site may consume.
        upstream: Residues upstream of the hit; may start with '*'.
        downstream: Residues downstream of the hit; may end with '*'.
        acceptors: Acceptor candidates per phase class.
        donors: Donor candidates per motif class and phase class.
        acceptor_evidence: Acceptor candidates come from RNA-seq introns.
        donor_evidence: Donor candidates come from RNA-seq introns.
        border: Start/stop constraints.
    """

    position: int
    local_start: int
    local_end: int
    target: str
    inner: int
    upstream: str
    downstream: str
    acceptors: list[list[SpliceCandidate]] = attrs.Factory(lambda: [[], [], []])
    donors: list[list[list[SpliceCandidate]]] = attrs.Factory(
        lambda: [[[], [], []], [[], [], []]]
    )
    acceptor_evidence: bool = False
    donor_evidence: bool = False
    border: BorderConstraints = attrs.Factory(BorderConstraints)

    @property
    def upstream_codons(self) -> int:
        """Non-stop residues upstream."""
        return len(self.upstream) - (1 if self.upstream.startswith("*") else 0)

    @property
    def downstream_codons(self) -> int:
        """Non-stop residues downstream."""
        return len(self.downstream) - (1 if self.downstream.endswith("*") else 0)

    @property
    def clean_upstream(self) -> str:
        return self.upstream[1:] if self.upstream.startswith("*") else self.upstream

    @property
    def clean_downstream(self) -> str:
        return self.downstream[:-1] if self.downstream.endswith("*") else self.downstream

    def max_acceptor_offset(self) -> int:
        return max((c.offset for frame in self.acceptors for c in frame), default=0)

    def max_donor_offset(self) -> int:
        return max((c.offset for cls in self.donors for frame in cls for c in frame), default=0)


# =============================================================================
# Finder
# =============================================================================


class SpliceSiteFinder:
    """Computes and caches ``HitAnnotation`` objects for one transcript.

    Args:
        context: Run context.
        transcript: Reference transcript the hits belong to.
        aligner: Aligner owned by the current worker.
        intron_limit: Maximum intron length for the transcript.
    """

    def __init__(
        self,
        context: ProjectionContext,
        transcript: ReferenceTranscript,
        aligner: PairwiseAligner,
        intron_limit: int,
    ) -> None:
        self.context = context
        self.transcript = transcript
        self.aligner = aligner
        self.intron_limit = intron_limit
        self.code = context.code
        self.canonical_fallback = context.config.search.canonical_fallback
        self._annotations: dict[Hit, HitAnnotation] = {}

    def __len__(self) -> int:
        return len(self._annotations)

    def view(self, hit: Hit) -> StrandedContig:
        return self.context.view(hit.contig, hit.strand)

    def annotate(self, hit: Hit) -> HitAnnotation:
        """Return the annotation of a hit, computing it on first use."""
        annotation = self._annotations.get(hit)
        if annotation is None:
            annotation = self._compute(hit)
            self._annotations[hit] = annotation
        return annotation

    def translate(self, view: StrandedContig, local_start: int, local_end: int) -> str:
        return self.code.translate(view.bases(local_start, local_end))

    # -------------------------------------------------------------------------
    # Reading frame
    # -------------------------------------------------------------------------

    def _upstream(self, view: StrandedContig, start: int) -> str:
        residues = []
        k = 1
        while 3 * k < self.intron_limit:
            low = start - 3 * k
            if low < 1:
                break
            aa = self.code.codon(view.sequence[low - 1 : low + 2])
            residues.append(aa)
            if aa == "*":
                break
            k += 1
        return "".join(reversed(residues))

    def _downstream(self, view: StrandedContig, end: int) -> str:
        residues = []
        k = 1
        while 3 * k < self.intron_limit:
            high = end + 3 * k
            if high > view.length:
                break
            aa = self.code.codon(view.sequence[high - 3 : high])
            residues.append(aa)
            if aa == "*":
                break
            k += 1
        return "".join(residues)

    # -------------------------------------------------------------------------
    # Candidate offsets
    # -------------------------------------------------------------------------

    def _acceptor_offsets(self, view: StrandedContig, ann: HitAnnotation) -> tuple[list[int], bool]:
        s = ann.local_start
        low, high = -ann.inner, 3 * ann.upstream_codons + 2
        if view.has_intron_evidence:
            sites = view.sites_between(view.acceptor_sites, s - high - 1, s - low - 1)
            offsets = [s - int(q) - 1 for q in sites]
            if offsets or not self.canonical_fallback:
                return sorted(offsets), bool(offsets)
        offsets = []
        for a in range(low, high + 1):
            x = s - a
            if x - 2 >= 1 and view.sequence[x - 3 : x - 1] == ACCEPTOR_MOTIF:
                offsets.append(a)
        return offsets, False

    def _donor_offsets(
        self, view: StrandedContig, ann: HitAnnotation
    ) -> tuple[list[list[int]], bool]:
        e = ann.local_end
        low, high = -ann.inner, 3 * ann.downstream_codons + 2
        if view.has_intron_evidence:
            sites = view.sites_between(view.donor_sites, e + low + 1, e + high + 1)
            offsets = [int(q) - 1 - e for q in sites]
            if offsets or not self.canonical_fallback:
                return [sorted(offsets), []], bool(offsets)
        gt: list[int] = []
        gc: list[int] = []
        for b in range(low, high + 1):
            y = e + b
            if y + 2 > view.length:
                break
            motif = view.sequence[y : y + 2]
            if motif == DONOR_MOTIFS[0]:
                gt.append(b)
            elif motif == DONOR_MOTIFS[1]:
                gc.append(b)
                if 0 <= b <= 2:
                    # A GC right at the hit border competes with GT donors
                    gt.append(b)
        return [gt, gc], False

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def _score_acceptors(self, hit: Hit, ann: HitAnnotation, offsets: list[int]) -> None:
        if not offsets:
            return
        fragment = self.transcript.fragment(ann.position)
        query = fragment[: hit.query_end]
        extra = max(0, max(offsets) // 3)
        upstream = ann.clean_upstream
        target = (upstream[len(upstream) - extra :] if extra else "") + ann.target
        self.aligner.compute(AlignmentKind.GLOBAL, query[::-1], target[::-1])
        for a in offsets:
            col = len(ann.target) + a // 3
            if 0 <= col <= len(target):
                delta = self.aligner.score(len(query), col) - hit.score
                ann.acceptors[frame_class(a)].append(SpliceCandidate(a, delta))

    def _score_donors(self, hit: Hit, ann: HitAnnotation, offsets: list[list[int]]) -> None:
        if not offsets[0] and not offsets[1]:
            return
        fragment = self.transcript.fragment(ann.position)
        query = fragment[hit.query_start - 1 :]
        extra = max(0, max(offsets[0] + offsets[1]) // 3)
        target = ann.target + ann.clean_downstream[:extra]
        self.aligner.compute(AlignmentKind.GLOBAL, query, target)
        for cls, class_offsets in enumerate(offsets):
            for b in class_offsets:
                col = len(ann.target) + b // 3
                if 0 <= col <= len(target):
                    delta = self.aligner.score(len(query), col) - hit.score
                    ann.donors[cls][frame_class(b)].append(SpliceCandidate(b, delta))

    # -------------------------------------------------------------------------
    # Border constraints
    # -------------------------------------------------------------------------

    def _first_border(self, view: StrandedContig, hit: Hit, ann: HitAnnotation) -> None:
        fragment = self.transcript.fragment(ann.position)
        border = ann.border
        border.has_first = True
        target = ann.target
        offset = 0
        if not (target.startswith("M") and hit.query_start == 1):
            upstream = ann.clean_upstream
            first_m = upstream.find("M")
            if first_m >= 0:
                prefix = fragment[: hit.query_start - 1]
                candidates = upstream[first_m:][::-1]
                self.aligner.compute(AlignmentKind.GLOBAL, prefix[::-1], candidates)
                best_idx, best_score = None, None
                if target.startswith("M"):
                    best_idx, best_score = -1, self.aligner.gap_penalty(len(prefix))
                for j, residue in enumerate(candidates):
                    if residue != "M":
                        continue
                    value = self.aligner.score(len(prefix), j + 1)
                    if best_score is None or value > best_score:
                        best_idx, best_score = j, value
                offset = best_idx + 1
            else:
                internal = target.find("M")
                if internal > 0 and ann.local_start + 3 * internal < ann.local_end:
                    offset = -internal
        border.first_offset = offset
        extended = self.translate(view, ann.local_start - 3 * offset, ann.local_end)
        score = self.aligner.compute(AlignmentKind.GLOBAL, fragment[: hit.query_end], extended)
        border.first_add_score = score - hit.score
        border.first_residue = extended[:1]

    def _last_border(self, view: StrandedContig, hit: Hit, ann: HitAnnotation) -> None:
        fragment = self.transcript.fragment(ann.position)
        border = ann.border
        border.has_last = True
        if ann.target.endswith("*") or not ann.downstream.endswith("*"):
            return
        border.last_offset = len(ann.downstream)
        extended = self.translate(view, ann.local_start, ann.local_end + 3 * border.last_offset)
        score = self.aligner.compute(AlignmentKind.GLOBAL, fragment[hit.query_start - 1 :], extended)
        border.last_add_score = score - hit.score

    # -------------------------------------------------------------------------

    def _compute(self, hit: Hit) -> HitAnnotation:
        position = self.transcript.position(hit.part)
        if position is None:
            raise ValueError(f"Hit {hit.query_id} is not a part of {self.transcript.transcript_id}")
        view = self.view(hit)
        local_start, local_end = view.span(hit)
        ann = HitAnnotation(
            position=position,
            local_start=local_start,
            local_end=local_end,
            target=hit.target,
            inner=inner_window(hit.length_bp),
            upstream=self._upstream(view, local_start),
            downstream=self._downstream(view, local_end),
        )

        acceptors, ann.acceptor_evidence = self._acceptor_offsets(view, ann)
        donors, ann.donor_evidence = self._donor_offsets(view, ann)
        self._score_acceptors(hit, ann, acceptors)
        self._score_donors(hit, ann, donors)

        fragment = self.transcript.fragment(position)
        if position == 0 and fragment.startswith("M"):
            self._first_border(view, hit, ann)
        if position == self.transcript.size - 1 and fragment.endswith("*"):
            self._last_border(view, hit, ann)
        return ann

    def first_residue_is_start(self, hit: Hit) -> bool:
        """Whether a first-part hit reaches a start codon."""
        border = self.annotate(hit).border
        return border.has_first and border.first_residue == "M"

