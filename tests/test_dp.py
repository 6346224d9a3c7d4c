"""Tests for the chain dynamic programming."""

import attrs
import numpy as np
import pytest

from projforge.core.dp import MAX_PART_GAP, DPTable, build_lanes
from projforge.core.hits import Hit
from projforge.core.splice import SpliceSiteFinder
from projforge.core.transcript import ReferenceTranscript
from projforge.core.transitions import TransitionScorer


def residues_hit(part, start, residues, score, query_start=1, strand="+"):
    """Hit of ``residues`` alanines at a given position."""
    return Hit(
        query_id=f"geneA_{part}",
        part=part,
        contig="chr1",
        strand=strand,
        query_start=query_start,
        query_end=query_start + residues - 1,
        query_length=20,
        start=start,
        end=start + 3 * residues - 1,
        score=score,
        query_aligned="A" * residues,
        target_aligned="A" * residues,
    )


@pytest.fixture
def transcript():
    return ReferenceTranscript("geneA.t1", "geneA", (0, 1, 2), ("A" * 20, "A" * 20, "A" * 20))


@pytest.fixture
def view(make_context):
    return make_context({"chr1": "A" * 6000}).view("chr1", "+")


@pytest.fixture
def chain_hits():
    return {
        "first": residues_hit(0, 100, 5, 20),
        "second": residues_hit(1, 200, 5, 30),
        "stray": residues_hit(1, 5000, 5, 10),
        "third": residues_hit(2, 300, 6, 25),
    }


def splice_table(context, gene, hits):
    """Splice-mode table over the hits of a synthetic gene."""
    transcript = gene.transcript
    aligner = context.new_aligner()
    limit = context.intron_limit(transcript)
    finder = SpliceSiteFinder(context, transcript, aligner, limit)
    scorer = TransitionScorer(finder, transcript, aligner, intron_penalty=25, min_intron_length=30)
    return DPTable(
        build_lanes(hits, transcript),
        context.view(gene.contig, gene.strand),
        transcript,
        limit,
        scorer=scorer,
        finder=finder,
        gap_penalty=aligner.gap_penalty,
        intron_penalty=25,
    )


# =============================================================================
# Coarse mode
# =============================================================================


class TestCoarseDP:
    """Tests for the DP without splice scoring."""

    def test_build_lanes(self, transcript, chain_hits):
        other = residues_hit(7, 400, 5, 10)
        lanes = build_lanes([*chain_hits.values(), other], transcript)
        assert [len(lane) for lane in lanes] == [1, 2, 1]

    def test_best_chain_score(self, transcript, view, chain_hits):
        table = DPTable(build_lanes(chain_hits.values(), transcript), view, transcript, 1000)
        assert table.fill() == 75
        assert not table.splice_mode
        assert table.best_roots() == [(0, 0)]

    def test_no_hits(self, transcript, view):
        table = DPTable(build_lanes([], transcript), view, transcript, 1000)
        assert table.fill() is None
        assert table.backtrack(lambda hits: ()) is None

    def test_distant_hit_not_chained(self, transcript, view, chain_hits):
        """Test the stray copy is farther than one intron from everything."""
        table = DPTable(build_lanes(chain_hits.values(), transcript), view, transcript, 1000)
        table.fill()
        stray = table.lanes[1].index(chain_hits["stray"])
        assert int(table.sums[1][stray]) == 10
        assert list(table.successors(1, stray)) == []

    def test_reduce_keeps_best_chain(self, transcript, view, chain_hits):
        table = DPTable(build_lanes(chain_hits.values(), transcript), view, transcript, 1000)
        best = table.fill()
        reduced = table.reduce(best)
        assert len(reduced) == 3
        assert chain_hits["stray"] not in reduced.hits()

        assert reduced.fill() == 75
        chain = reduced.backtrack(lambda hits: ())
        assert chain == [chain_hits["first"], chain_hits["second"], chain_hits["third"]]

    def test_reduce_with_lower_threshold(self, transcript, view, chain_hits):
        """Test chains within the slack stay in the table."""
        table = DPTable(build_lanes(chain_hits.values(), transcript), view, transcript, 1000)
        table.fill()
        assert len(table.reduce(0)) == 4

    def test_same_part_overlap_invalid(self, transcript, view):
        """Test two hits sharing most of their fragment cannot chain."""
        first = residues_hit(0, 100, 6, 20, query_start=1)
        overlapping = residues_hit(0, 200, 6, 20, query_start=3)
        table = DPTable(build_lanes([first, overlapping], transcript), view, transcript, 1000)
        assert table.fill() == 20

    def test_same_part_split_chains(self, transcript, view):
        first = residues_hit(0, 100, 6, 20, query_start=1)
        second = residues_hit(0, 200, 6, 20, query_start=7)
        table = DPTable(build_lanes([first, second], transcript), view, transcript, 1000)
        assert table.fill() == 40

    def test_part_gap_limit(self, view):
        parts = tuple(range(MAX_PART_GAP + 2))
        transcript = ReferenceTranscript("t", "g", parts, tuple("A" * 20 for _ in parts))
        first = residues_hit(0, 100, 5, 20)
        last = residues_hit(parts[-1], 300, 5, 20)
        table = DPTable(build_lanes([first, last], transcript), view, transcript, 1000)
        assert table.fill() == 20


# =============================================================================
# Splice mode
# =============================================================================


class TestSpliceDP:
    """Tests for the splice-aware DP on a synthetic gene."""

    def test_exact_gene(self, forward_gene, make_context):
        table = splice_table(make_context(forward_gene.genome), forward_gene, forward_gene.hits)
        assert table.splice_mode
        assert table.fill() == sum(hit.score for hit in forward_gene.hits)
        assert table.backtrack(lambda hits: ()) == forward_gene.hits

    def test_transitions_memoised(self, forward_gene, make_context):
        table = splice_table(make_context(forward_gene.genome), forward_gene, forward_gene.hits)
        table.fill()
        assert (0, 0, 1, 0) in table.memo
        reduced = table.reduce(table.best)
        assert (0, 0, 1, 0) in reduced.memo

    def test_missing_first_part_costs_gap(self, forward_gene, make_context):
        """Test a chain starting at part 1 pays for the missing fragment."""
        hits = forward_gene.hits_without(0)
        table = splice_table(make_context(forward_gene.genome), forward_gene, hits)
        missing = len(forward_gene.transcript.fragments[0])
        expected = sum(hit.score for hit in hits) - (11 + missing) - 25
        assert table.fill() == expected

    def test_reverse_gene(self, reverse_gene, make_context):
        table = splice_table(make_context(reverse_gene.genome), reverse_gene, reverse_gene.hits)
        assert table.fill() == sum(hit.score for hit in reverse_gene.hits)
        assert table.backtrack(lambda hits: ()) == reverse_gene.hits

    def test_missing_first_part_counts_split_residues(self, forward_gene, make_context):
        """Test the split residue after a missing first part is part of the gap."""
        gene = attrs.evolve(forward_gene, transcript=attrs.evolve(forward_gene.transcript, split_residues=("G", "S")))
        hits = gene.hits_without(0)
        table = splice_table(make_context(gene.genome), gene, hits)
        missing = len(gene.transcript.fragments[0]) + 1
        expected = sum(hit.score for hit in hits) - (11 + missing) - 25
        assert table.fill() == expected


# =============================================================================
# Backtracking
# =============================================================================


class TestBacktrack:
    """Tests for choosing one chain among tied chains."""

    @pytest.fixture
    def ladder(self, make_context):
        """Two equal hits per part, so every combination ties."""
        parts = tuple(range(16))
        transcript = ReferenceTranscript("t", "g", parts, tuple("A" * 20 for _ in parts))
        view = make_context({"chr1": "A" * 20000}).view("chr1", "+")
        hits = [residues_hit(p, 1 + 1000 * p + offset, 5, 10) for p in parts for offset in (0, 100)]
        table = DPTable(build_lanes(hits, transcript), view, transcript, 2000)
        assert table.fill() == 160
        return table

    def test_tied_chains_not_enumerated(self, ladder):
        calls = []

        def key(hits):
            calls.append(len(hits))
            return tuple(h.start for h in hits)

        chain = ladder.backtrack(key)
        assert [h.start for h in chain] == [1 + 1000 * p for p in range(16)]
        assert len(calls) < 4 * len(ladder)

    def test_key_decides_every_part(self, ladder):
        chain = ladder.backtrack(lambda hits: tuple(-h.start for h in hits))
        assert [h.start for h in chain] == [101 + 1000 * p for p in range(16)]

    def test_first_tie_kept(self, ladder):
        """Test equal keys keep the first chain in lane order."""
        chain = ladder.backtrack(lambda hits: ())
        assert [h.start for h in chain] == [1 + 1000 * p for p in range(16)]


# =============================================================================
# Chain invariants
# =============================================================================


def random_hits(rng, parts, count, span=4000):
    hits = []
    for _ in range(count):
        residues = int(rng.integers(3, 11))
        query_start = int(rng.integers(1, 20 - residues + 2))
        hits.append(
            residues_hit(
                int(rng.integers(0, parts)),
                int(rng.integers(1, span)),
                residues,
                int(rng.integers(5, 60)),
                query_start=query_start,
            )
        )
    return hits


def assert_monotone(table):
    """Every valid edge satisfies sums[A] >= score(A) + transition + sums[B]."""
    for p, lane in enumerate(table.lanes):
        for i, hit in enumerate(lane):
            total = int(table.sums[p][i])
            follow = [value + int(table.sums[q][j]) for q, j, value in table.successors(p, i)]
            for candidate in follow:
                assert total >= hit.score + candidate
            assert total == hit.score + max([int(table._end_cost[p][i]), *follow])


class TestChainInvariants:
    """Randomised checks of the DP recurrence."""

    @pytest.mark.parametrize("seed", range(20))
    def test_coarse_sums_monotone(self, seed, view):
        rng = np.random.default_rng(seed)
        parts = int(rng.integers(1, 5))
        transcript = ReferenceTranscript("t", "g", tuple(range(parts)), tuple("A" * 20 for _ in range(parts)))
        hits = random_hits(rng, parts, int(rng.integers(1, 30)))
        table = DPTable(build_lanes(hits, transcript), view, transcript, int(rng.integers(50, 2000)))
        best = table.fill()
        assert_monotone(table)
        assert best == max(table.root_value(p, i) for p in range(parts) for i in range(len(table.lanes[p])))

        chain = table.backtrack(lambda hits: ())
        assert sum(hit.score for hit in chain) == best

    @pytest.mark.parametrize("drop", [None, 1])
    @pytest.mark.parametrize("strand", ["+", "-"])
    @pytest.mark.parametrize("seed", range(5))
    def test_splice_sums_monotone(self, seed, strand, drop, gene_factory, make_context):
        gene = gene_factory(seed=seed, strand=strand, lengths=(30, 25, 20, 25))
        hits = gene.hits if drop is None else gene.hits_without(drop)
        table = splice_table(make_context(gene.genome), gene, hits)
        table.fill()
        assert_monotone(table)
