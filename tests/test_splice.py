"""Tests for splice-site candidates and transition scoring.

Tests cover:
- Strand-local contig views and evidence mapping
- Acceptor and donor candidates from motifs and from RNA-seq introns
- Start and stop border constraints
- Transition choices between hits
"""

import attrs
import numpy as np
import pytest

from projforge.config import Config
from projforge.core.hits import Hit
from projforge.core.splice import SpliceCandidate, SpliceSiteFinder, frame_class, inner_window
from projforge.core.transcript import ReferenceTranscript
from projforge.core.transitions import KIND_INTRON_LOSS, KIND_SPLICE, SpliceChoice, TransitionScorer
from projforge.io.evidence import CoverageTrack, EvidenceIndex, IntronTrack


def intron_evidence(contig, strand, introns):
    """EvidenceIndex holding (start, end, reads) introns of one contig strand."""
    track = IntronTrack(
        starts=np.array([i[0] for i in introns], dtype=np.int64),
        ends=np.array([i[1] for i in introns], dtype=np.int64),
        reads=np.array([i[2] for i in introns], dtype=np.int64),
    )
    return EvidenceIndex(intron_tracks={(contig, strand): track})


def make_finder(context, transcript):
    return SpliceSiteFinder(context, transcript, context.new_aligner(), context.intron_limit(transcript))


# =============================================================================
# Context
# =============================================================================


class TestStrandedContig:
    """Tests for the strand-local contig view."""

    def test_forward_view(self, make_context):
        view = make_context({"chr1": "acgtTTGA"}).view("chr1", "+")
        assert view.sequence == "ACGTTTGA"
        assert view.to_local(2, 4) == (2, 4)
        assert view.bases(1, 3) == "ACG"

    def test_reverse_view(self, make_context):
        """Test the reverse view reads the reverse complement."""
        view = make_context({"chr1": "AACCGGTTTA"}).view("chr1", "-")
        assert view.sequence == "TAAACCGGTT"
        assert view.to_local(1, 3) == (8, 10)
        assert view.to_genomic(8, 10) == (1, 3)

    def test_bases_clipped(self, make_context):
        view = make_context({"chr1": "ACGT"}).view("chr1", "+")
        assert view.bases(-1, 2) == "AC"
        assert view.bases(3, 10) == "GT"

    def test_reverse_evidence_mapping(self, make_context):
        """Test intron borders swap roles on the reverse strand."""
        evidence = intron_evidence("chr1", "-", [(11, 50, 7)])
        view = make_context({"chr1": "A" * 100}, evidence=evidence).view("chr1", "-")
        assert list(view.donor_sites) == [51]
        assert list(view.acceptor_sites) == [90]
        assert view.introns == {(51, 90): 7}

    def test_coverage_over(self, make_context):
        coverage = CoverageTrack(
            np.array([1, 11], dtype=np.int64),
            np.array([5, 20], dtype=np.int64),
            np.array([2.0, 4.0]),
        )
        evidence = EvidenceIndex(coverage_tracks={("chr1", "+"): coverage})
        view = make_context({"chr1": "A" * 30}, evidence=evidence).view("chr1", "+")
        covered, total, minimum = view.coverage_over(3, 12)
        assert covered == 5
        assert total == 3 * 2.0 + 2 * 4.0
        assert minimum == 0.0
        assert view.coverage_over(11, 15) == (5, 20.0, 4.0)

    def test_view_cached(self, make_context):
        context = make_context({"chr1": "ACGT"})
        assert context.view("chr1", "+") is context.view("chr1", "+")

    def test_unknown_contig(self, make_context):
        with pytest.raises(KeyError):
            make_context({"chr1": "ACGT"}).view("chrX", "+")

    def test_intron_limit_dynamic(self, make_context):
        config = Config().with_overrides("intron", static_intron_length=False)
        context = make_context({"chr1": "ACGT"}, config)
        transcript = ReferenceTranscript("t", "g", (0,), ("MKV",), max_reference_intron=100)
        assert context.intron_limit(transcript) == 500
        transcript = ReferenceTranscript("t", "g", (0,), ("MKV",), max_reference_intron=4000)
        assert context.intron_limit(transcript) == 8000


# =============================================================================
# Splice candidates
# =============================================================================


class TestSpliceSiteFinder:
    """Tests for SpliceSiteFinder on an exactly matching gene."""

    def test_helpers(self):
        assert frame_class(-1) == 2
        assert frame_class(4) == 1
        assert inner_window(120) == 39
        assert inner_window(600) == 90

    def test_donor_at_exon_end(self, forward_gene, make_context):
        """Test the true donor is a GT candidate with no score change."""
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        ann = finder.annotate(forward_gene.hits[0])
        assert SpliceCandidate(0, 0) in ann.donors[0][0]
        assert ann.downstream == "VN*"
        assert not ann.donor_evidence

    def test_acceptor_at_exon_start(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        ann = finder.annotate(forward_gene.hits[1])
        assert SpliceCandidate(0, 0) in ann.acceptors[0]
        assert ann.upstream == "*Q"
        assert ann.upstream_codons == 1

    def test_candidates_inside_exon_cost_score(self, forward_gene, make_context):
        """Test trimmed candidates never score better than the hit border."""
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        ann = finder.annotate(forward_gene.hits[1])
        for frame in ann.acceptors:
            for candidate in frame:
                if candidate.offset < 0:
                    assert candidate.delta < 0

    def test_reverse_strand_candidates(self, reverse_gene, make_context):
        context = make_context(reverse_gene.genome)
        finder = make_finder(context, reverse_gene.transcript)
        assert SpliceCandidate(0, 0) in finder.annotate(reverse_gene.hits[0]).donors[0][0]
        assert SpliceCandidate(0, 0) in finder.annotate(reverse_gene.hits[1]).acceptors[0]

    def test_border_constraints(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        first = finder.annotate(forward_gene.hits[0]).border
        assert first.has_first
        assert first.first_offset == 0
        assert first.first_add_score == 0
        assert first.first_residue == "M"
        assert finder.first_residue_is_start(forward_gene.hits[0])

        last = finder.annotate(forward_gene.hits[2]).border
        assert last.has_last
        assert last.last_offset == 0
        assert last.last_add_score == 0

        middle = finder.annotate(forward_gene.hits[1]).border
        assert not middle.has_first and not middle.has_last

    def test_start_extension(self, forward_gene, make_context, protein_self_score):
        """Test a hit missing its first residues is extended to the M."""
        hit = forward_gene.hits[0]
        fragment = forward_gene.transcript.fragments[0]
        trimmed = attrs.evolve(
            hit,
            query_start=4,
            start=hit.start + 9,
            score=protein_self_score(fragment[3:]),
            query_aligned=fragment[3:],
            target_aligned=fragment[3:],
        )
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        border = finder.annotate(trimmed).border
        assert border.first_offset == 3
        assert border.first_residue == "M"
        assert border.first_add_score > 0

    def test_stop_extension(self, forward_gene, make_context, protein_self_score):
        """Test a hit ending before the stop codon is extended to it."""
        hit = forward_gene.hits[2]
        fragment = forward_gene.transcript.fragments[2]
        trimmed = attrs.evolve(
            hit,
            query_end=len(fragment) - 1,
            end=hit.end - 3,
            score=protein_self_score(fragment[:-1]),
            query_aligned=fragment[:-1],
            target_aligned=fragment[:-1],
        )
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        border = finder.annotate(trimmed).border
        assert border.last_offset == 1
        assert border.last_add_score == 1

    def test_annotation_cached(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        assert finder.annotate(forward_gene.hits[0]) is finder.annotate(forward_gene.hits[0])
        assert len(finder) == 1

    def test_hit_of_foreign_part(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        finder = make_finder(context, forward_gene.transcript)
        with pytest.raises(ValueError):
            finder.annotate(attrs.evolve(forward_gene.hits[0], part=9))

    def test_evidence_candidates(self, forward_gene, make_context):
        """Test RNA-seq introns replace motif candidates."""
        (_, e1), (s2, _) = forward_gene.exons[0], forward_gene.exons[1]
        evidence = intron_evidence("chr1", "+", [(e1 + 1, s2 - 1, 12)])
        context = make_context(forward_gene.genome, evidence=evidence)
        finder = make_finder(context, forward_gene.transcript)

        first = finder.annotate(forward_gene.hits[0])
        assert first.donor_evidence
        assert first.donors == [[[SpliceCandidate(0, 0)], [], []], [[], [], []]]

        second = finder.annotate(forward_gene.hits[1])
        assert second.acceptor_evidence
        assert second.acceptors == [[SpliceCandidate(0, 0)], [], []]
        # No evidenced intron after the second exon: motifs are used
        assert not second.donor_evidence
        assert SpliceCandidate(0, 0) in second.donors[0][0]

    def test_evidence_without_fallback(self, forward_gene, make_context):
        (_, e1), (s2, _) = forward_gene.exons[0], forward_gene.exons[1]
        evidence = intron_evidence("chr1", "+", [(e1 + 1, s2 - 1, 12)])
        config = Config().with_overrides("search", canonical_fallback=False)
        context = make_context(forward_gene.genome, config, evidence)
        finder = make_finder(context, forward_gene.transcript)
        second = finder.annotate(forward_gene.hits[1])
        assert not second.donor_evidence
        assert all(not frame for cls in second.donors for frame in cls)


# =============================================================================
# Transitions
# =============================================================================


class TestTransitionScorer:
    """Tests for TransitionScorer.check."""

    def make_scorer(self, context, transcript, min_intron_length=30):
        finder = make_finder(context, transcript)
        return TransitionScorer(
            finder,
            transcript,
            finder.aligner,
            intron_penalty=25,
            min_intron_length=min_intron_length,
        )

    def test_adjacent_parts(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        scorer = self.make_scorer(context, forward_gene.transcript)
        h0, h1, h2 = forward_gene.hits
        assert scorer.check(h0, h1) == SpliceChoice(0, 0, 0, KIND_SPLICE)
        assert scorer.check(h1, h2) == SpliceChoice(0, 0, 0, KIND_SPLICE)

    def test_skipped_part(self, forward_gene, make_context):
        """Test skipping a part costs its residues and one intron penalty."""
        context = make_context(forward_gene.genome)
        scorer = self.make_scorer(context, forward_gene.transcript)
        h0, _, h2 = forward_gene.hits
        missing = len(forward_gene.transcript.fragments[1])
        assert scorer.check(h0, h2) == SpliceChoice(-(11 + missing) - 25, 0, 0, KIND_SPLICE)

    def test_short_intron_rejected(self, forward_gene, make_context):
        context = make_context(forward_gene.genome)
        scorer = self.make_scorer(context, forward_gene.transcript, min_intron_length=1000)
        h0, h1, _ = forward_gene.hits
        assert scorer.check(h0, h1) is None

    def test_intron_loss_within_part(self, make_context, gene_factory, protein_self_score):
        """Test two abutting hits of one part rejoin without penalty."""
        gene = gene_factory(lengths=(60,))
        fragment = gene.transcript.fragments[0]
        hit = gene.hits[0]
        first = attrs.evolve(
            hit,
            query_end=30,
            end=hit.start + 89,
            score=protein_self_score(fragment[:30]),
            query_aligned=fragment[:30],
            target_aligned=fragment[:30],
        )
        second = attrs.evolve(
            hit,
            query_start=31,
            start=hit.start + 90,
            score=protein_self_score(fragment[30:]),
            query_aligned=fragment[30:],
            target_aligned=fragment[30:],
        )
        context = make_context(gene.genome)
        scorer = self.make_scorer(context, gene.transcript)
        assert scorer.check(first, second) == SpliceChoice(0, 0, 0, KIND_INTRON_LOSS)

    def test_protein_between_includes_split_residues(self, make_context):
        transcript = ReferenceTranscript(
            "t", "g", (0, 1, 2), ("MKV", "LA", "W*"), split_residues=("G", "S")
        )
        context = make_context({"chr1": "A" * 100})
        scorer = self.make_scorer(context, transcript)
        first = attrs.evolve(_stub_hit(0), query_start=2)
        second = attrs.evolve(_stub_hit(2), query_end=1)
        assert scorer.protein_between(first, 0, second, 2) == "KVGLASW"

    def test_tie_prefers_splice_over_loss(self):
        splice = SpliceChoice(0, 3, 3)
        loss = SpliceChoice(0, 0, 0, KIND_INTRON_LOSS)
        assert splice.better_than(loss)
        assert not loss.better_than(splice)
        assert SpliceChoice(0, 0, 0).better_than(splice)
        assert SpliceChoice(1, 9, 9).better_than(splice)


def _stub_hit(part):
    return Hit(f"g_{part}", part, "chr1", "+", 1, 2, 3, 10, 15, 5, "MK", "MK")
