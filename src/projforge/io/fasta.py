"""FASTA file handling for genome and protein sequences.

This module provides access to sequences stored in FASTA format, using
pyfaidx for indexed random access.

Features:
    - Genome access as a read-only mapping of contig name to sequence
    - Contig length lookup without reading sequences
    - Protein FASTA reading (fragments and reference proteins)

Example:
    >>> from projforge.io.fasta import GenomeAccessor
    >>> genome = GenomeAccessor("genome.fa")
    >>> seq = genome["chr1"]
    >>> print(seq[:50])
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import pyfaidx

logger = logging.getLogger(__name__)


# =============================================================================
# Genome
# =============================================================================


class GenomeAccessor(Mapping[str, str]):
    """Indexed FASTA access using pyfaidx.

    Indexing by contig name returns the whole upper-case contig
    sequence; the projection context reads each contig strand at most
    once.

    Attributes:
        path: Path to the FASTA file.

    Example:
        >>> genome = GenomeAccessor("genome.fa")
        >>> print(f"Contigs: {list(genome)[:5]}")
        >>> genome.contig_lengths["chr1"]
    """

    def __init__(self, fasta_path: Path | str) -> None:
        """Initialize the genome accessor.

        Args:
            fasta_path: Path to FASTA file. Will create .fai index if needed.

        Raises:
            FileNotFoundError: If FASTA file doesn't exist.
        """
        self.path = Path(fasta_path)
        if not self.path.exists():
            raise FileNotFoundError(f"FASTA file not found: {self.path}")

        self._fasta: pyfaidx.Fasta | None = pyfaidx.Fasta(
            str(self.path),
            sequence_always_upper=True,
            read_ahead=10000,
            rebuild=False,
        )
        self._order = list(self._fasta.keys())
        self._lengths = {name: len(self._fasta[name]) for name in self._order}

        logger.info(
            f"Opened FASTA: {self.path.name}, "
            f"{len(self._order)} contigs, "
            f"{sum(self._lengths.values()):,} bp total"
        )

    @property
    def contig_lengths(self) -> dict[str, int]:
        """Return {contig: length} mapping."""
        return dict(self._lengths)

    def __getitem__(self, contig: str) -> str:
        if self._fasta is None:
            raise RuntimeError("FASTA file not opened")
        if contig not in self._lengths:
            raise KeyError(contig)
        return self._fasta[contig][:].seq

    def __contains__(self, contig: object) -> bool:
        return contig in self._lengths

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __enter__(self) -> GenomeAccessor:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the FASTA file."""
        if self._fasta is not None:
            self._fasta.close()
            self._fasta = None


# =============================================================================
# Proteins
# =============================================================================


def read_protein_fasta(path: Path | str) -> dict[str, str]:
    """Read all sequences of a protein FASTA file.

    Args:
        path: FASTA file; ids are the first word of each header.

    Returns:
        Upper-case sequences keyed by id, in file order.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FASTA file not found: {path}")
    with pyfaidx.Fasta(str(path), sequence_always_upper=True, rebuild=False) as fasta:
        sequences = {name: fasta[name][:].seq for name in fasta.keys()}
    logger.info(f"Read {len(sequences)} sequences from {path.name}")
    return sequences
