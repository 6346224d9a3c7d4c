"""Pytest configuration and shared fixtures for ProjForge tests.

This module contains fixtures that are shared across multiple test modules.
Fixtures are organized by category:

- Sequence helpers: deterministic coding sequences and introns
- Synthetic genes: genomes with a known exon structure plus matching hits
- File fixtures: the same data written as input files
"""

from __future__ import annotations

from pathlib import Path

import attrs
import numpy as np
import pytest

from projforge.config import Config
from projforge.core.alignment import SubstitutionMatrix, score_aligned
from projforge.core.context import ProjectionContext
from projforge.core.hits import Hit
from projforge.core.transcript import ReferenceTranscript
from projforge.utils.sequences import reverse_complement

# =============================================================================
# Sequence helpers
# =============================================================================

# One codon per residue
CODON_FOR = {
    "A": "GCA", "C": "TGC", "D": "GAC", "E": "GAA", "F": "TTC",
    "G": "GGA", "H": "CAC", "I": "ATC", "K": "AAA", "L": "CTC",
    "M": "ATG", "N": "AAC", "P": "CCA", "Q": "CAA", "R": "CGA",
    "S": "TCA", "T": "ACA", "V": "GTC", "W": "TGG", "Y": "TAC",
    "*": "TAA",
}  # fmt: skip

RESIDUES = "ACDEFGHIKLNPQRSTVWY"

# "TAAC" repeats contain no AG, GT or GC and a stop codon in every frame
INTRON_FILLER = "TAAC"


def encode(protein: str) -> str:
    """Back-translate a protein with one fixed codon per residue."""
    return "".join(CODON_FOR[aa] for aa in protein)


def make_intron(repeats: int = 20) -> str:
    """Canonical GT...AG intron of ``4 * repeats + 4`` bp."""
    return "GT" + INTRON_FILLER * repeats + "AG"


def random_protein(rng: np.random.Generator, length: int) -> str:
    return "".join(rng.choice(list(RESIDUES), length))


def random_dna(rng: np.random.Generator, length: int) -> str:
    return "".join(rng.choice(list("ACGT"), length))


def self_score(protein: str) -> int:
    """BLOSUM62 score of a protein aligned to itself."""
    return score_aligned(protein, protein, SubstitutionMatrix.blosum62(), 11, 1)


# =============================================================================
# Synthetic genes
# =============================================================================


@attrs.define
class SyntheticGene:
    """A gene placed in a synthetic contig.

    Attributes:
        contig: Contig name.
        sequence: Forward contig sequence.
        strand: Strand of the gene.
        transcript: Reference transcript.
        exons: Expected CDS intervals (genomic, transcription order).
        hits: One exact hit per part, transcription order.
    """

    contig: str
    sequence: str
    strand: str
    transcript: ReferenceTranscript
    exons: list[tuple[int, int]]
    hits: list[Hit]

    @property
    def genome(self) -> dict[str, str]:
        return {self.contig: self.sequence}

    def hits_without(self, part: int) -> list[Hit]:
        return [hit for hit in self.hits if hit.part != part]


def build_gene(
    seed: int = 7,
    lengths: tuple[int, ...] = (40, 35, 30),
    strand: str = "+",
    contig: str = "chr1",
    gene_id: str = "geneA",
    transcript_id: str = "geneA.t1",
    flank: int = 300,
    intron_repeats: int = 20,
    intron_length: int | None = None,
    drop_exon: int | None = None,
) -> SyntheticGene:
    """Build a contig holding one multi-exon gene and its exact hits.

    The first part starts with M, the last part ends with a stop codon;
    every exon holds whole codons (phase 0 introns).

    Args:
        seed: RNG seed for proteins and flanks.
        lengths: Residues per part (including M and the stop).
        strand: Strand of the gene.
        contig: Contig name.
        gene_id: Gene id (fragment id prefix).
        transcript_id: Transcript id.
        flank: Random bases on both sides of the gene.
        intron_repeats: Size of every intron (see ``make_intron``).
        intron_length: Use random GT...AG introns of this length instead.
        drop_exon: Leave this part out of the genome (and its hit).
    """
    rng = np.random.default_rng(seed)
    fragments = []
    for k, length in enumerate(lengths):
        if k == 0:
            fragments.append("M" + random_protein(rng, length - 1))
        elif k == len(lengths) - 1:
            fragments.append(random_protein(rng, length - 1) + "*")
        else:
            fragments.append(random_protein(rng, length))

    pieces = [random_dna(rng, flank)]
    position = flank
    local_exons: list[tuple[int, int] | None] = []
    included = [k for k in range(len(fragments)) if k != drop_exon]
    for n, k in enumerate(included):
        if n > 0:
            if intron_length is None:
                intron = make_intron(intron_repeats)
            else:
                intron = "GT" + random_dna(rng, intron_length - 4) + "AG"
            pieces.append(intron)
            position += len(intron)
        coding = encode(fragments[k])
        pieces.append(coding)
        local_exons.append((position + 1, position + len(coding)))
        position += len(coding)
    pieces.append(random_dna(rng, flank))
    local_sequence = "".join(pieces)
    length = len(local_sequence)

    if strand == "+":
        sequence = local_sequence
        exons = list(local_exons)
    else:
        sequence = reverse_complement(local_sequence)
        exons = [(length - e + 1, length - s + 1) for s, e in local_exons]

    transcript = ReferenceTranscript(
        transcript_id=transcript_id,
        gene_id=gene_id,
        parts=tuple(range(len(fragments))),
        fragments=tuple(fragments),
    )
    hits = []
    for k, (start, end) in zip(included, exons):
        fragment = fragments[k]
        hits.append(
            Hit(
                query_id=f"{gene_id}_{k}",
                part=k,
                contig=contig,
                strand=strand,
                query_start=1,
                query_end=len(fragment),
                query_length=len(fragment),
                start=start,
                end=end,
                score=self_score(fragment),
                query_aligned=fragment,
                target_aligned=fragment,
            )
        )
    return SyntheticGene(contig, sequence, strand, transcript, exons, hits)


@pytest.fixture
def forward_gene() -> SyntheticGene:
    """Three-part gene on the forward strand of chr1."""
    return build_gene(seed=7, strand="+")


@pytest.fixture
def reverse_gene() -> SyntheticGene:
    """Three-part gene on the reverse strand of chr2."""
    return build_gene(
        seed=11,
        strand="-",
        contig="chr2",
        gene_id="geneB",
        transcript_id="geneB.t1",
    )


@pytest.fixture
def gene_factory():
    """Factory building synthetic genes, see ``build_gene``."""
    return build_gene


@pytest.fixture
def protein_self_score():
    """BLOSUM62 self score of a protein."""
    return self_score


@pytest.fixture
def make_context():
    """Factory for a ProjectionContext over a genome mapping."""

    def _make(genome: dict[str, str], config: Config | None = None, evidence=None) -> ProjectionContext:
        return ProjectionContext.build(genome, config or Config(), evidence)

    return _make


# =============================================================================
# File fixtures
# =============================================================================


def write_fasta(path: Path, sequences: dict[str, str], width: int = 60) -> Path:
    """Write sequences as FASTA with fixed line width."""
    with open(path, "w") as f:
        for name, seq in sequences.items():
            f.write(f">{name}\n")
            for i in range(0, len(seq), width):
                f.write(seq[i : i + width] + "\n")
    return path


def hit_line(hit: Hit, evalue: float = 1e-20) -> str:
    """Format a hit as a 23-column tabular search line."""
    sstart, send = (hit.start, hit.end) if hit.strand == "+" else (hit.end, hit.start)
    fields = [
        hit.query_id,
        hit.contig,
        "100.0",
        str(len(hit.query_aligned)),
        "0",
        "0",
        str(hit.query_start),
        str(hit.query_end),
        str(sstart),
        str(send),
        f"{evalue:g}",
        "100.0",
        hit.contig,
        str(hit.score),
        str(len(hit.query_aligned)),
        str(len(hit.query_aligned)),
        "0",
        "100.0",
        "0",
        "1" if hit.strand == "+" else "-1",
        hit.query_aligned,
        hit.target_aligned,
        str(hit.query_length),
    ]
    return "\t".join(fields)


@pytest.fixture
def fasta_writer():
    """Write sequences as FASTA, see ``write_fasta``."""
    return write_fasta


@pytest.fixture
def hit_formatter():
    """Format a hit as a tabular search line, see ``hit_line``."""
    return hit_line


@pytest.fixture
def project_files(tmp_path: Path, forward_gene: SyntheticGene, reverse_gene: SyntheticGene) -> dict[str, Path]:
    """Input files for a run over the forward and reverse genes."""
    genes = (forward_gene, reverse_gene)
    genome = write_fasta(tmp_path / "genome.fa", {g.contig: g.sequence for g in genes})
    fragments = write_fasta(
        tmp_path / "fragments.fa",
        {
            f"{g.transcript.gene_id}_{part}": fragment
            for g in genes
            for part, fragment in zip(g.transcript.parts, g.transcript.fragments)
        },
    )
    assignment = tmp_path / "assignment.tsv"
    with open(assignment, "w") as f:
        f.write("# gene\ttranscript\tparts\n")
        for g in genes:
            parts = ",".join(str(p) for p in g.transcript.parts)
            f.write(f"{g.transcript.gene_id}\t{g.transcript.transcript_id}\t{parts}\n")
    hits = tmp_path / "hits.tsv"
    with open(hits, "w") as f:
        for g in genes:
            for hit in g.hits:
                f.write(hit_line(hit) + "\n")
    return {"genome": genome, "fragments": fragments, "assignment": assignment, "hits": hits}
