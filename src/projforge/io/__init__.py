"""Input/output handlers for ProjForge.

- FASTA: genome and protein sequences (pyfaidx)
- Search hits: tabular homology search output
- Reference: transcript assignment table
- Evidence: intron and coverage tables
- GFF3: predicted gene models and the run report
"""

from projforge.io.evidence import EvidenceIndex, EvidenceParseError
from projforge.io.fasta import GenomeAccessor, read_protein_fasta
from projforge.io.hits import HitParseError, read_search_hits
from projforge.io.reference import AssignmentParseError, load_transcripts, read_assignment

__all__ = [
    "AssignmentParseError",
    "EvidenceIndex",
    "EvidenceParseError",
    "GenomeAccessor",
    "HitParseError",
    "load_transcripts",
    "read_assignment",
    "read_protein_fasta",
    "read_search_hits",
]
