"""Reference transcripts split into CDS parts.

A reference transcript is the ordered list of its coding fragments
("parts"), one per reference exon, translated to amino acids. Hits are
produced per fragment and the projection chains them back together in
part order.
"""

from __future__ import annotations

import attrs

# Part ids in the fragment FASTA are "<gene>_<part index>"
PART_SEPARATOR = "_"


def fragment_id(gene_id: str, part: int) -> str:
    """Return the fragment id of one part of a gene."""
    return f"{gene_id}{PART_SEPARATOR}{part}"


def split_fragment_id(query_id: str) -> tuple[str, int]:
    """Split a fragment id into gene id and part index.

    Raises:
        ValueError: If the id does not end in ``_<integer>``.
    """
    gene_id, sep, part = query_id.rpartition(PART_SEPARATOR)
    if not sep or not gene_id:
        raise ValueError(f"Fragment id {query_id!r} has no part suffix")
    try:
        return gene_id, int(part)
    except ValueError as e:
        raise ValueError(f"Fragment id {query_id!r} has a non-numeric part suffix") from e


@attrs.define(slots=True, frozen=True)
class ReferenceTranscript:
    """One reference transcript.

    Attributes:
        transcript_id: Transcript identifier.
        gene_id: Gene identifier (prefix of the fragment ids).
        parts: Part indices in transcription order.
        fragments: Amino-acid sequence of each part.
        split_residues: Residue encoded across each part boundary ("" if none);
            one entry per boundary.
        max_reference_intron: Longest intron of the gene in the reference.
        protein: Full reference protein, if known.
    """

    transcript_id: str
    gene_id: str
    parts: tuple[int, ...] = attrs.field(converter=tuple)
    fragments: tuple[str, ...] = attrs.field(converter=tuple)
    split_residues: tuple[str, ...] = attrs.field(converter=tuple, default=())
    max_reference_intron: int | None = None
    protein: str | None = None

    lengths: tuple[int, ...] = attrs.field(init=False)
    cumulative: tuple[int, ...] = attrs.field(init=False)
    reverse_cumulative: tuple[int, ...] = attrs.field(init=False)

    @lengths.default
    def _lengths(self) -> tuple[int, ...]:
        return tuple(len(f) for f in self.fragments)

    @cumulative.default
    def _cumulative(self) -> tuple[int, ...]:
        # Residues of all parts before each part
        out, total = [], 0
        for length in self.lengths:
            out.append(total)
            total += length
        return tuple(out)

    @reverse_cumulative.default
    def _reverse_cumulative(self) -> tuple[int, ...]:
        # Residues of all parts after each part
        total = sum(self.lengths)
        return tuple(total - c - n for c, n in zip(self.cumulative, self.lengths))

    def __attrs_post_init__(self) -> None:
        if not self.parts:
            raise ValueError(f"Transcript {self.transcript_id} has no parts")
        if len(self.parts) != len(self.fragments):
            raise ValueError(
                f"Transcript {self.transcript_id}: {len(self.parts)} parts but "
                f"{len(self.fragments)} fragments"
            )
        if len(set(self.parts)) != len(self.parts):
            raise ValueError(f"Transcript {self.transcript_id} lists a part twice")
        if self.split_residues and len(self.split_residues) != len(self.parts) - 1:
            raise ValueError(
                f"Transcript {self.transcript_id}: expected {len(self.parts) - 1} split residues, "
                f"got {len(self.split_residues)}"
            )

    @property
    def size(self) -> int:
        """Number of parts."""
        return len(self.parts)

    def position(self, part: int) -> int | None:
        """Return the position of a part index in this transcript."""
        try:
            return self.parts.index(part)
        except ValueError:
            return None

    def fragment(self, position: int) -> str:
        return self.fragments[position]

    def fragment_id(self, position: int) -> str:
        return fragment_id(self.gene_id, self.parts[position])

    def split_residue(self, boundary: int) -> str:
        """Residue spanning the boundary after part position ``boundary``."""
        if not self.split_residues:
            return ""
        return self.split_residues[boundary]

    def split_count(self, first: int, last: int) -> int:
        """Split residues on the boundaries ``first`` to ``last - 1``."""
        return sum(len(self.split_residue(b)) for b in range(first, last))

    def residues_before(self, position: int) -> int:
        """Reference residues before a part, split residues included."""
        return self.cumulative[position] + self.split_count(0, position)

    def residues_after(self, position: int) -> int:
        """Reference residues after a part, split residues included."""
        return self.reverse_cumulative[position] + self.split_count(position, self.size - 1)

    def missing_residues(self, first: int, second: int) -> int:
        """Residues of the parts strictly between two part positions.

        The split codon at the junction stands in for the split residue
        after ``first``; the split residues of the later crossed boundaries
        are missing.
        """
        if second <= first + 1:
            return 0
        return self.cumulative[second] - self.cumulative[first + 1] + self.split_count(first + 1, second)

    def reference_protein(self) -> str:
        """Return the reference protein, reconstructed from the parts if unknown."""
        if self.protein is not None:
            return self.protein
        pieces = []
        for pos, fragment in enumerate(self.fragments):
            pieces.append(fragment)
            if pos < self.size - 1:
                pieces.append(self.split_residue(pos))
        return "".join(pieces)
