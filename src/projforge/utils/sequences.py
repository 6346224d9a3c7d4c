"""Sequence manipulation utilities.

This module provides utilities for working with nucleotide and protein
sequences:

- Reverse complement
- Translation with a configurable genetic code
- Handling of ambiguous bases

Example:
    >>> from projforge.utils.sequences import GeneticCode, reverse_complement
    >>> rc = reverse_complement("ATGCATGC")
    >>> GeneticCode.standard().translate("ATGAAATAG")
    'MK*'
"""

from __future__ import annotations

import random
from enum import Enum
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

# Complement table (handles case and IUPAC codes)
COMPLEMENT_TABLE = str.maketrans(
    "ACGTRYSWKMBDHVNacgtryswkmbdhvn",
    "TGCAYRSWMKVHDBNtgcayrswmkvhdbn",
)

# IUPAC ambiguity codes resolved to their concrete bases
IUPAC_BASES = {
    "R": "AG",
    "Y": "CT",
    "S": "CG",
    "W": "AT",
    "K": "GT",
    "M": "AC",
    "B": "CGT",
    "D": "AGT",
    "H": "ACT",
    "V": "ACG",
    "N": "ACGT",
}

_BASES = "TCAG"
_STANDARD_AMINO_ACIDS = "FFLLSSSSYY**CC*WLLLLPPPPHHQQRRRRIIIMTTTTNNKKSSRRVVVVAAAADDEEGGGG"

# Standard genetic code (NCBI Table 1)
CODON_TABLE_STANDARD = {
    a + b + c: _STANDARD_AMINO_ACIDS[16 * i + 4 * j + k]
    for i, a in enumerate(_BASES)
    for j, b in enumerate(_BASES)
    for k, c in enumerate(_BASES)
}

# Stop codons
STOP_CODONS = {"TAA", "TAG", "TGA"}


def _iupac_codons() -> list[str]:
    """Every codon of ACGT and IUPAC codes with at least one ambiguous base."""
    bases = "ACGT" + "".join(IUPAC_BASES)
    codons = (a + b + c for a in bases for b in bases for c in bases)
    return [codon for codon in codons if any(base in IUPAC_BASES for base in codon)]


class AmbiguityPolicy(Enum):
    """How codons containing ambiguous bases are translated."""

    FAIL = "fail"
    UNKNOWN = "unknown"
    RANDOM = "random"


class AmbiguousBaseError(ValueError):
    """Raised when an ambiguous base is translated under the FAIL policy."""


class GeneticCodeError(ValueError):
    """Raised when a codon table file is malformed."""


# =============================================================================
# Complement and Reverse Complement
# =============================================================================


def complement(sequence: str) -> str:
    """Get the complement of a DNA sequence."""
    return sequence.translate(COMPLEMENT_TABLE)


def reverse_complement(sequence: str) -> str:
    """Get the reverse complement of a DNA sequence.

    Args:
        sequence: DNA sequence string.

    Returns:
        Reverse complement sequence.
    """
    return sequence.translate(COMPLEMENT_TABLE)[::-1]


# =============================================================================
# Translation
# =============================================================================


class GeneticCode:
    """Codon to amino-acid mapping with a policy for ambiguous bases.

    Codons containing bases outside ACGT translate to ``X`` under
    ``UNKNOWN``, raise ``AmbiguousBaseError`` under ``FAIL`` and are
    resolved to a concrete codon under ``RANDOM``. Random resolution is
    seeded per codon, so the same codon always yields the same residue
    regardless of thread scheduling.

    Attributes:
        table: Mapping of upper-case codons to one-letter residues.
        policy: Ambiguity policy.
        seed: Seed used by the RANDOM policy.
    """

    def __init__(
        self,
        table: dict[str, str] | None = None,
        policy: AmbiguityPolicy = AmbiguityPolicy.UNKNOWN,
        seed: int = 0,
    ) -> None:
        self.table = dict(table if table is not None else CODON_TABLE_STANDARD)
        self.policy = policy
        self.seed = seed
        # Resolved IUPAC codons, fixed at construction
        self._ambiguous: dict[str, str] = {}
        if policy is AmbiguityPolicy.RANDOM:
            self._ambiguous = {codon: self._resolve(codon) for codon in _iupac_codons()}

    @classmethod
    def standard(cls, policy: AmbiguityPolicy = AmbiguityPolicy.UNKNOWN, seed: int = 0) -> GeneticCode:
        return cls(CODON_TABLE_STANDARD, policy, seed)

    @classmethod
    def from_file(
        cls,
        path: Path | str,
        policy: AmbiguityPolicy = AmbiguityPolicy.UNKNOWN,
        seed: int = 0,
    ) -> GeneticCode:
        """Load a codon table.

        The file holds one ``codon<TAB>residue`` pair per line; lines
        starting with ``#`` are ignored. Codons missing from the file keep
        their standard translation.

        Raises:
            GeneticCodeError: If a line is malformed.
        """
        table = dict(CODON_TABLE_STANDARD)
        with open(path) as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                fields = line.split()
                if len(fields) != 2 or len(fields[0]) != 3 or len(fields[1]) != 1:
                    raise GeneticCodeError(f"Line {line_num}: expected 'codon residue', got {line!r}")
                codon = fields[0].upper().replace("U", "T")
                if any(base not in "ACGT" for base in codon):
                    raise GeneticCodeError(f"Line {line_num}: invalid codon {fields[0]!r}")
                table[codon] = fields[1].upper()
        return cls(table, policy, seed)

    def codon(self, triplet: str) -> str:
        """Translate one codon."""
        triplet = triplet.upper()
        aa = self.table.get(triplet)
        if aa is not None:
            return aa
        if len(triplet) != 3:
            raise ValueError(f"Codon must have length 3, got {triplet!r}")
        if self.policy is AmbiguityPolicy.FAIL:
            raise AmbiguousBaseError(f"Ambiguous codon {triplet!r}")
        if self.policy is AmbiguityPolicy.UNKNOWN:
            return "X"
        aa = self._ambiguous.get(triplet)
        if aa is not None:
            return aa
        return self._resolve(triplet)

    def _resolve(self, triplet: str) -> str:
        rng = random.Random(f"{self.seed}:{triplet}")
        resolved = "".join(
            base if base in "ACGT" else rng.choice(IUPAC_BASES.get(base, "ACGT")) for base in triplet
        )
        return self.table[resolved]

    def translate(self, sequence: str) -> str:
        """Translate a DNA sequence; a trailing partial codon is ignored.

        Args:
            sequence: DNA sequence.

        Returns:
            Amino acid sequence, stop codons as ``*``.
        """
        end = len(sequence) - len(sequence) % 3
        return "".join(self.codon(sequence[i : i + 3]) for i in range(0, end, 3))

    def is_stop(self, triplet: str) -> bool:
        return self.codon(triplet) == "*"
