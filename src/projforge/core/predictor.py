"""Gene-model prediction for one reference transcript.

``TranscriptPredictor.predict`` runs the whole search for one
transcript:

1. Coarse DP over the hits of every contig strand (sorted order); strands
   scoring at least ``contig_threshold`` times the best are kept.
2. Per kept strand: reduce to hits on good chains, split them at stop
   codons, segment into regions, and analyse every region scoring at
   least ``region_threshold`` times the best region. When no region
   qualifies the whole reduced set is analysed and flagged ``backup``.
3. Per region: fill gaps of missing parts, run the splice-aware DP,
   reduce with the best value and backtrack the best chain.
4. Rank all solutions and refine the best ``predictions`` of them.

Example:
    >>> predictor = TranscriptPredictor(context, transcript)
    >>> predictions = predictor.predict(hits)
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Sequence

import attrs

from projforge.core.cancellation import NEVER_CANCELLED, CancellationToken
from projforge.core.context import ProjectionContext, StrandedContig
from projforge.core.dp import DPTable, Lanes, build_lanes
from projforge.core.hits import Hit, split_at_stops
from projforge.core.regions import GapFiller, segment_regions
from projforge.core.solution import (
    GeneModelPrediction,
    Solution,
    SolutionPool,
    SolutionRefiner,
    chain_key,
)
from projforge.core.splice import SpliceSiteFinder
from projforge.core.transcript import ReferenceTranscript
from projforge.core.transitions import TransitionScorer

logger = logging.getLogger(__name__)


@attrs.define(slots=True)
class PredictionStats:
    """Counters of one transcript run.

    Attributes:
        hits: Hits given for the transcript.
        strands_tested: Contig strands with hits.
        strands_analysed: Contig strands passing the contig threshold.
        regions_analysed: Regions given to the splice-aware DP.
        recovered_hits: Hits added by gap filling.
        alignments: Pairwise alignments computed.
        elapsed: Wall time in seconds.
    """

    hits: int = 0
    strands_tested: int = 0
    strands_analysed: int = 0
    regions_analysed: int = 0
    recovered_hits: int = 0
    alignments: int = 0
    elapsed: float = 0.0


class TranscriptPredictor:
    """Predicts gene models of one reference transcript.

    A predictor owns its aligner and caches; it is used by one thread.

    Args:
        context: Run context.
        transcript: Reference transcript.
        token: Cancellation token checked throughout the search.
    """

    def __init__(
        self,
        context: ProjectionContext,
        transcript: ReferenceTranscript,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> None:
        self.context = context
        self.transcript = transcript
        self.token = token
        self.config = context.config
        self.intron_limit = context.intron_limit(transcript)
        self.aligner = context.new_aligner(token)
        self.finder = SpliceSiteFinder(context, transcript, self.aligner, self.intron_limit)
        self.scorer = TransitionScorer(
            self.finder,
            transcript,
            self.aligner,
            intron_penalty=self.config.intron.intron_gain_loss_penalty,
            min_intron_length=self.config.intron.min_intron_length,
            approximate=self.config.search.approximate,
        )
        self.refiner = SolutionRefiner(self.finder, self.scorer, transcript, self.aligner)
        self.stats = PredictionStats()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def predict(self, hits: Sequence[Hit]) -> list[GeneModelPrediction]:
        """Predict gene models from the hits of this transcript's fragments.

        Args:
            hits: Hits of the transcript's gene; hits of other parts and of
                contigs missing from the genome are ignored.

        Returns:
            Predictions, best first; empty if no chain exists.

        Raises:
            TranscriptCancelled: If the token is cancelled.
        """
        started = time.perf_counter()
        self.stats.hits = len(hits)
        groups = self._group(hits)
        self.stats.strands_tested = len(groups)

        coarse: dict[tuple[str, str], DPTable] = {}
        for key in sorted(groups):
            self.token.check()
            view = self.context.view(*key)
            table = DPTable(
                build_lanes(groups[key], self.transcript),
                view,
                self.transcript,
                self.intron_limit,
                token=self.token,
            )
            if table.fill() is not None:
                coarse[key] = table

        pool = SolutionPool(self.config.search.predictions)
        if coarse:
            best = max(table.best for table in coarse.values())
            threshold = self.config.thresholds.contig_threshold * best
            for key in sorted(coarse):
                table = coarse[key]
                if table.best < threshold:
                    continue
                self.stats.strands_analysed += 1
                for solution in self._analyse_strand(table):
                    pool.add(solution)

        predictions = [
            self.refiner.refine(solution, rank) for rank, solution in enumerate(pool.ranked(), 1)
        ]
        self.stats.alignments = self.aligner.alignments
        self.stats.elapsed = time.perf_counter() - started
        logger.debug(
            f"{self.transcript.transcript_id}: {self.stats.hits} hits, "
            f"{self.stats.strands_tested} strands tested, "
            f"{self.stats.regions_analysed} regions analysed, "
            f"{self.stats.alignments} alignments, {self.stats.elapsed:.2f}s"
        )
        return predictions

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _group(self, hits: Sequence[Hit]) -> dict[tuple[str, str], list[Hit]]:
        groups: dict[tuple[str, str], list[Hit]] = defaultdict(list)
        missing = set()
        for hit in hits:
            if self.transcript.position(hit.part) is None:
                continue
            if not self.context.has_contig(hit.contig):
                missing.add(hit.contig)
                continue
            groups[(hit.contig, hit.strand)].append(hit)
        for contig in sorted(missing):
            logger.warning(f"{self.transcript.transcript_id}: contig {contig} not in genome, hits ignored")
        return groups

    def _split(self, lanes: Lanes) -> Lanes:
        scoring = self.config.scoring
        return [
            [
                piece
                for hit in lane
                for piece in split_at_stops(hit, self.context.matrix, scoring.gap_open, scoring.gap_extend)
            ]
            for lane in lanes
        ]

    def _coarse_table(self, lanes: Lanes, view: StrandedContig) -> DPTable:
        return DPTable(lanes, view, self.transcript, self.intron_limit, token=self.token)

    def _analyse_strand(self, table: DPTable) -> list[Solution]:
        view = table.view
        reduced = table.reduce(self.config.thresholds.hit_threshold * table.best)
        lanes = reduced.lanes
        if self.config.search.avoid_stop:
            lanes = self._split(lanes)

        regions = segment_regions(lanes, view, self.transcript)
        if len(regions) > 1:
            scored = []
            for region in regions:
                region_table = self._coarse_table(region, view)
                value = region_table.fill()
                if value is not None:
                    scored.append((value, region))
            if scored:
                best = max(value for value, _ in scored)
                threshold = self.config.thresholds.region_threshold * best
                solutions = []
                for value, region in scored:
                    if value >= threshold:
                        solution = self._analyse_region(view, region, backup=False)
                        if solution is not None:
                            solutions.append(solution)
                if solutions:
                    return solutions
            solution = self._analyse_region(view, lanes, backup=True)
        else:
            solution = self._analyse_region(view, lanes, backup=False)
        return [solution] if solution is not None else []

    def _analyse_region(self, view: StrandedContig, lanes: Lanes, backup: bool) -> Solution | None:
        self.stats.regions_analysed += 1
        thresholds, search = self.config.thresholds, self.config.search
        filler = GapFiller(
            view,
            self.transcript,
            self.aligner,
            self.context.code,
            self.intron_limit,
            thresholds.hit_threshold,
            search.max_new_hits_per_part,
            self.token,
            gap_penalty=self.aligner.gap_penalty,
            intron_penalty=self.config.intron.intron_gain_loss_penalty,
        )
        filled = filler.fill(lanes)
        self.stats.recovered_hits += filled.added

        table = DPTable(
            filled.lanes,
            view,
            self.transcript,
            self.intron_limit,
            scorer=self.scorer,
            finder=self.finder,
            gap_penalty=self.aligner.gap_penalty,
            intron_penalty=self.config.intron.intron_gain_loss_penalty,
            token=self.token,
        )
        best = table.fill()
        if best is None:
            return None
        reduced = table.reduce(best)
        reduced.fill()
        chain = reduced.backtrack(lambda hits: chain_key(hits, best, self._starts_with_start(hits)))
        if not chain:
            return None
        return Solution(
            hits=tuple(chain),
            score=best,
            contig=view.contig,
            strand=view.strand,
            starts_with_start_codon=self._starts_with_start(chain),
            backup=backup,
            cut=filled.cut,
        )

    def _starts_with_start(self, hits: Sequence[Hit]) -> bool:
        first = hits[0]
        return self.transcript.position(first.part) == 0 and self.finder.first_residue_is_start(first)
