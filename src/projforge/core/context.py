"""Shared read-only state of a projection run.

The ``ProjectionContext`` bundles the genome, the RNA-seq evidence, the
substitution matrix, the genetic code and the configuration. It is
built once per run and shared by every worker.

All search code works in strand-local coordinates: a ``StrandedContig``
holds the contig sequence as read in transcription direction (the
reverse complement for "-"), and maps between genomic position ``p`` and
local position ``p' = L - p + 1`` on the reverse strand. Evidence is
converted to local coordinates when the view is built.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

import numpy as np

from projforge.config import Config
from projforge.core.alignment import PairwiseAligner, SubstitutionMatrix
from projforge.core.cancellation import NEVER_CANCELLED, CancellationToken
from projforge.core.hits import Hit
from projforge.core.transcript import ReferenceTranscript
from projforge.io.evidence import CoverageTrack, EvidenceIndex, IntronTrack
from projforge.utils.sequences import AmbiguityPolicy, GeneticCode, reverse_complement

logger = logging.getLogger(__name__)


# =============================================================================
# Strand-local contig view
# =============================================================================


class StrandedContig:
    """One contig strand in transcription direction.

    Attributes:
        contig: Contig name.
        strand: "+" or "-".
        length: Contig length.
        sequence: Upper-case sequence in transcription direction.
        donor_sites: Sorted local positions of the first base of evidenced introns.
        acceptor_sites: Sorted local positions of the last base of evidenced introns.
        introns: Reads per evidenced intron, keyed by local (first base, last base).
    """

    def __init__(
        self,
        contig: str,
        strand: str,
        sequence: str,
        introns: IntronTrack,
        coverage: CoverageTrack,
    ) -> None:
        self.contig = contig
        self.strand = strand
        self.length = len(sequence)
        upper = sequence.upper()
        self.sequence = upper if strand == "+" else reverse_complement(upper)

        L = self.length
        if strand == "+":
            donors, acceptors = introns.starts, introns.ends
            cov_starts, cov_ends, counts = coverage.starts, coverage.ends, coverage.counts
        else:
            donors, acceptors = L - introns.ends + 1, L - introns.starts + 1
            cov_starts = (L - coverage.ends + 1)[::-1]
            cov_ends = (L - coverage.starts + 1)[::-1]
            counts = coverage.counts[::-1]

        self.donor_sites = np.unique(donors)
        self.acceptor_sites = np.unique(acceptors)
        self.introns = {
            (int(d), int(a)): int(r) for d, a, r in zip(donors, acceptors, introns.reads)
        }
        self._cov_starts = np.ascontiguousarray(cov_starts)
        self._cov_ends = np.ascontiguousarray(cov_ends)
        self._cov_counts = np.ascontiguousarray(counts)

    @property
    def has_intron_evidence(self) -> bool:
        return bool(self.introns)

    @property
    def has_coverage(self) -> bool:
        return len(self._cov_starts) > 0

    def to_local(self, start: int, end: int) -> tuple[int, int]:
        """Map a genomic interval to local coordinates."""
        if self.strand == "+":
            return start, end
        return self.length - end + 1, self.length - start + 1

    def to_genomic(self, local_start: int, local_end: int) -> tuple[int, int]:
        """Map a local interval to genomic coordinates (start <= end)."""
        if self.strand == "+":
            return local_start, local_end
        return self.length - local_end + 1, self.length - local_start + 1

    def span(self, hit: Hit) -> tuple[int, int]:
        """Local start and end of a hit."""
        return self.to_local(hit.start, hit.end)

    def bases(self, local_start: int, local_end: int) -> str:
        """Local bases ``local_start..local_end`` (1-based, inclusive), clipped to the contig."""
        return self.sequence[max(0, local_start - 1) : max(0, local_end)]

    def sites_between(self, sites: np.ndarray, low: int, high: int) -> np.ndarray:
        """Sites within ``[low, high]``."""
        left = np.searchsorted(sites, low, side="left")
        right = np.searchsorted(sites, high, side="right")
        return sites[left:right]

    def coverage_over(self, local_start: int, local_end: int) -> tuple[int, float, float]:
        """Coverage statistics of a local interval.

        Returns:
            (covered bases, summed depth, minimum depth); uncovered bases
            have depth 0.
        """
        covered, total = 0, 0.0
        minimum = None
        idx = int(np.searchsorted(self._cov_ends, local_start, side="left"))
        while idx < len(self._cov_starts) and self._cov_starts[idx] <= local_end:
            lo = max(local_start, int(self._cov_starts[idx]))
            hi = min(local_end, int(self._cov_ends[idx]))
            if hi >= lo:
                n = hi - lo + 1
                depth = float(self._cov_counts[idx])
                covered += n
                total += n * depth
                minimum = depth if minimum is None else min(minimum, depth)
            idx += 1
        length = local_end - local_start + 1
        if minimum is None or covered < length:
            minimum = 0.0
        return covered, total, minimum


# =============================================================================
# Context
# =============================================================================


class ProjectionContext:
    """Read-only state shared by all transcripts of a run.

    Contig views are created on first use and cached; creation is
    serialised by a lock, everything else is read-only.

    Attributes:
        genome: Mapping of contig name to forward sequence.
        config: Run configuration.
        matrix: Substitution matrix.
        code: Genetic code.
        evidence: RNA-seq evidence (empty if none was given).
    """

    def __init__(
        self,
        genome: Mapping[str, str],
        config: Config,
        matrix: SubstitutionMatrix,
        code: GeneticCode,
        evidence: EvidenceIndex | None = None,
    ) -> None:
        self.genome = genome
        self.config = config
        self.matrix = matrix
        self.code = code
        self.evidence = evidence if evidence is not None else EvidenceIndex()
        self._views: dict[tuple[str, str], StrandedContig] = {}
        self._lock = threading.Lock()

    @classmethod
    def build(
        cls,
        genome: Mapping[str, str],
        config: Config | None = None,
        evidence: EvidenceIndex | None = None,
    ) -> ProjectionContext:
        """Create a context, loading the matrix and genetic code named by the config."""
        config = config if config is not None else Config()
        scoring = config.scoring
        if scoring.matrix.upper() == "BLOSUM62":
            matrix = SubstitutionMatrix.blosum62()
        else:
            matrix = SubstitutionMatrix.from_file(scoring.matrix)

        policy = AmbiguityPolicy(scoring.ambiguity)
        if scoring.genetic_code is None:
            code = GeneticCode.standard(policy, config.search.seed)
        else:
            code = GeneticCode.from_file(scoring.genetic_code, policy, config.search.seed)

        return cls(genome, config, matrix, code, evidence)

    def has_contig(self, contig: str) -> bool:
        return contig in self.genome

    def view(self, contig: str, strand: str) -> StrandedContig:
        """Return the strand-local view of a contig.

        Raises:
            KeyError: If the contig is not in the genome.
        """
        key = (contig, strand)
        view = self._views.get(key)
        if view is not None:
            return view
        with self._lock:
            view = self._views.get(key)
            if view is None:
                view = StrandedContig(
                    contig,
                    strand,
                    str(self.genome[contig]),
                    self.evidence.introns(contig, strand),
                    self.evidence.coverage(contig, strand),
                )
                self._views[key] = view
        return view

    def new_aligner(self, token: CancellationToken = NEVER_CANCELLED) -> PairwiseAligner:
        scoring = self.config.scoring
        return PairwiseAligner(self.matrix, scoring.gap_open, scoring.gap_extend, token)

    def intron_limit(self, transcript: ReferenceTranscript) -> int:
        """Maximum intron length used for a transcript."""
        return self.config.intron.limit_for(transcript.max_reference_intron)
