"""Region segmentation and gap filling.

After the coarse DP has reduced the hits of a contig strand, the
retained hits may describe several gene copies. ``segment_regions``
splits them in transcription order: an informative hit (covering most of
its fragment) whose part does not advance over the previous informative
hit starts a new region.

``GapFiller`` then searches for parts without hits. Between two present
parts, hits that are close enough to be chained are grouped with a
union-find; the genomic gap of each group is translated in three frames
and every missing fragment is aligned locally against the stop-free
peptides. Missing leading or trailing parts are searched in windows
upstream of the first and downstream of the last present part.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import attrs

from projforge.core.alignment import GAP, AlignmentKind, PairwiseAligner
from projforge.core.cancellation import NEVER_CANCELLED, CancellationToken
from projforge.core.context import StrandedContig
from projforge.core.dp import Lanes
from projforge.core.hits import Hit
from projforge.core.splice import MISSING_AA
from projforge.core.transcript import ReferenceTranscript
from projforge.utils.sequences import GeneticCode

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Fraction of max(MIN_INFORMATIVE_LENGTH, fragment length) a hit must cover
# to delimit regions
INFORMATIVE_FRACTION = 0.9
MIN_INFORMATIVE_LENGTH = 20

INFO_INTERNAL = "internal"
INFO_UPSTREAM = "upstream"
INFO_DOWNSTREAM = "downstream"


# =============================================================================
# Segmentation
# =============================================================================


def is_informative(hit: Hit) -> bool:
    """Whether a hit covers enough of its fragment to delimit regions."""
    return hit.query_span / max(MIN_INFORMATIVE_LENGTH, hit.query_length) >= INFORMATIVE_FRACTION


def segment_regions(lanes: Lanes, view: StrandedContig, transcript: ReferenceTranscript) -> list[Lanes]:
    """Split retained hits into candidate gene regions.

    Args:
        lanes: Hits per part position.
        view: Strand-local contig view.
        transcript: Reference transcript.

    Returns:
        Lanes per region in transcription order; a single region when no
        split point exists.
    """
    ordered = []
    for position, lane in enumerate(lanes):
        for hit in lane:
            ordered.append((view.span(hit)[0], position, hit))
    ordered.sort(key=lambda item: (item[0], item[1]))

    regions: list[Lanes] = []
    current: Lanes = [[] for _ in range(transcript.size)]
    previous_part = None
    for _, position, hit in ordered:
        if is_informative(hit):
            if previous_part is not None and position <= previous_part:
                regions.append(current)
                current = [[] for _ in range(transcript.size)]
            previous_part = position
        current[position].append(hit)
    regions.append(current)
    return [region for region in regions if any(region)]


# =============================================================================
# Union-find
# =============================================================================


class UnionFind:
    """Disjoint sets over integer ids."""

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)

    def groups(self) -> list[list[int]]:
        out: dict[int, list[int]] = {}
        for x in range(len(self.parent)):
            out.setdefault(self.find(x), []).append(x)
        return [out[k] for k in sorted(out)]


# =============================================================================
# Gap filling
# =============================================================================


@attrs.define(slots=True)
class FillResult:
    """Outcome of gap filling.

    Attributes:
        lanes: Lanes including recovered hits.
        added: Number of recovered hits.
        cut: Recovered hits had to be truncated.
    """

    lanes: Lanes
    added: int = 0
    cut: bool = False


class GapFiller:
    """Recovers hits of parts the homology search missed.

    Args:
        view: Strand-local contig view.
        transcript: Reference transcript.
        aligner: Aligner owned by the current worker.
        code: Genetic code.
        intron_limit: Maximum intron length.
        hit_threshold: Recovered hits below this fraction of the best are dropped.
        max_new_hits_per_part: Cap on recovered hits per part.
        token: Cancellation token.
        gap_penalty: Gap scoring function of the splice DP. When given, a
            recovered hit must outscore leaving its part out of the chain,
            see ``min_score``.
        intron_penalty: Penalty per missing part in the splice DP.
    """

    def __init__(
        self,
        view: StrandedContig,
        transcript: ReferenceTranscript,
        aligner: PairwiseAligner,
        code: GeneticCode,
        intron_limit: int,
        hit_threshold: float,
        max_new_hits_per_part: int,
        token: CancellationToken = NEVER_CANCELLED,
        gap_penalty: Callable[[int], int] | None = None,
        intron_penalty: int = 0,
    ) -> None:
        self.view = view
        self.transcript = transcript
        self.aligner = aligner
        self.code = code
        self.intron_limit = intron_limit
        self.hit_threshold = hit_threshold
        self.max_new_hits_per_part = max_new_hits_per_part
        self.token = token
        self.gap_penalty = gap_penalty
        self.intron_penalty = intron_penalty

    def min_score(self, position: int) -> int:
        """Lowest score a recovered hit of a part position may have.

        Skipping a part costs the gap of its residues plus one intron
        penalty in the splice DP. Recovered hits must score at least that
        cost.
        """
        if self.gap_penalty is None:
            return 1
        fragment = self.transcript.fragment(position)
        return max(1, self.intron_penalty - self.gap_penalty(len(fragment)))

    def fill(self, lanes: Lanes) -> FillResult:
        """Search every missing part of the given lanes."""
        present = [p for p, lane in enumerate(lanes) if lane]
        if not present:
            return FillResult([list(lane) for lane in lanes])
        found: list[list[Hit]] = [[] for _ in lanes]

        for old, new in zip(present, present[1:]):
            if new > old + 1:
                self._fill_between(lanes, old, new, found)

        if present[0] > 0:
            self._extend(lanes, present[0], found, upstream=True)
        if present[-1] < len(lanes) - 1:
            self._extend(lanes, present[-1], found, upstream=False)

        cut = False
        result = [list(lane) for lane in lanes]
        added = 0
        for position, hits in enumerate(found):
            unique = sorted(set(hits), key=lambda h: (-h.score, h.start, h.end, h.query_start))
            if len(unique) > self.max_new_hits_per_part:
                logger.warning(
                    f"{self.transcript.transcript_id}: {len(unique)} hits recovered for part "
                    f"{self.transcript.parts[position]}, keeping the best {self.max_new_hits_per_part}"
                )
                unique = unique[: self.max_new_hits_per_part]
                cut = True
            result[position].extend(unique)
            added += len(unique)
        return FillResult(result, added, cut)

    # -------------------------------------------------------------------------

    def _fill_between(self, lanes: Lanes, old: int, new: int, found: list[list[Hit]]) -> None:
        previous = [self.view.span(h) for h in lanes[old]]
        current = [self.view.span(h) for h in lanes[new]]
        uf = UnionFind(len(previous) + len(current))
        limit = (new - old) * self.intron_limit
        for a, (start, _) in enumerate(current):
            for b, (_, end) in enumerate(previous):
                distance = start - end
                if 0 <= distance < limit:
                    uf.union(len(previous) + a, b)

        for group in uf.groups():
            ends = [previous[b][1] for b in group if b < len(previous)]
            starts = [current[a - len(previous)][0] for a in group if a >= len(previous)]
            if not ends or not starts:
                continue
            region_start, region_end = min(ends) + 1, max(starts) - 1
            if region_end - region_start + 1 < 3:
                continue
            for position in range(old + 1, new):
                self.token.check()
                found[position].extend(self.align_part(region_start, region_end, position, INFO_INTERNAL))

    def _extend(self, lanes: Lanes, anchor: int, found: list[list[Hit]], upstream: bool) -> None:
        window = max(1, self.intron_limit // 10)
        factor = 0
        anchors: list[int] = []
        index = anchor
        kind = INFO_UPSTREAM if upstream else INFO_DOWNSTREAM
        last = 0 if upstream else len(lanes) - 1
        while index != last:
            hits = lanes[index] if index == anchor else found[index]
            if hits:
                spans = [self.view.span(h) for h in hits]
                anchors = sorted(s[0] if upstream else s[1] for s in spans)
                factor = 1
            else:
                factor += 1
            index = index - 1 if upstream else index + 1
            for low, high in _cluster(anchors, window):
                self.token.check()
                if upstream:
                    region = (max(1, low - factor * window), high - 1)
                else:
                    region = (low + 1, min(self.view.length, high + factor * window))
                if region[1] - region[0] + 1 >= 3:
                    found[index].extend(self.align_part(region[0], region[1], index, kind))

    # -------------------------------------------------------------------------

    def align_part(self, region_start: int, region_end: int, position: int, kind: str) -> list[Hit]:
        """Locally align one fragment against the stop-free peptides of a region.

        Args:
            region_start: First local base of the region.
            region_end: Last local base of the region.
            position: Part position of the fragment.
            kind: Provenance tag of the new hits.

        Returns:
            New hits scoring at least ``min_score`` and at least
            ``hit_threshold`` times the best.
        """
        fragment = self.transcript.fragment(position)
        is_last = position == self.transcript.size - 1
        find_start = position == 0 and fragment.startswith("M")
        bases = self.view.bases(region_start, region_end)

        candidates: list[Hit] = []
        best = 0
        for frame in range(3):
            peptides = self.code.translate(bases[frame:]).split("*")
            offset = 0
            for k, piece in enumerate(peptides):
                has_stop = k < len(peptides) - 1
                peptide = piece + "*" if is_last and has_stop else piece
                if peptide and (not find_start or len(fragment) > 2 * MISSING_AA or "M" in peptide):
                    hits = self._align_peptide(
                        fragment, peptide, region_start + frame + 3 * offset, position, kind, find_start, best
                    )
                    for hit in hits:
                        best = max(best, hit.score)
                    candidates.extend(hits)
                offset += len(piece) + 1
        threshold = self.hit_threshold * best
        return [hit for hit in candidates if hit.score >= threshold]

    def _align_peptide(
        self,
        fragment: str,
        peptide: str,
        peptide_start: int,
        position: int,
        kind: str,
        find_start: bool,
        best: int,
    ) -> list[Hit]:
        result = self.aligner.align(AlignmentKind.LOCAL, fragment, peptide)
        if result.score < self.min_score(position) or result.score < self.hit_threshold * best:
            return []
        target = result.target_aligned.replace(GAP, "")
        first_m = peptide.find("M")
        hits = []
        idx = peptide.find(target)
        while idx >= 0:
            if not find_start or result.query_start > MISSING_AA or 0 <= first_m < idx + len(target):
                local_start = peptide_start + 3 * idx
                local_end = local_start + 3 * len(target) - 1
                start, end = self.view.to_genomic(local_start, local_end)
                hits.append(
                    Hit(
                        query_id=self.transcript.fragment_id(position),
                        part=self.transcript.parts[position],
                        contig=self.view.contig,
                        strand=self.view.strand,
                        query_start=result.query_start + 1,
                        query_end=result.query_end,
                        query_length=len(fragment),
                        start=start,
                        end=end,
                        score=result.score,
                        query_aligned=result.query_aligned,
                        target_aligned=result.target_aligned,
                        info=f"{kind};",
                    )
                )
            idx = peptide.find(target, idx + 1)
        return hits


def _cluster(positions: list[int], distance: int) -> list[tuple[int, int]]:
    """Group sorted positions whose neighbours are at most ``distance`` apart."""
    clusters: list[tuple[int, int]] = []
    for pos in positions:
        if clusters and pos - clusters[-1][1] <= distance:
            clusters[-1] = (clusters[-1][0], pos)
        else:
            clusters.append((pos, pos))
    return clusters
