"""ProjForge: homology-based gene model projection.

ProjForge predicts protein-coding gene models in a target genome from
local alignments of reference CDS fragments, optionally guided by
RNA-seq intron and coverage evidence.

Example:
    >>> import projforge
    >>> projforge.__version__
    '0.1.0'

Modules:
    core: Alignment, splice sites, dynamic programming and refinement
    io: Readers for hits, references, genome and evidence; GFF3 output
    parallel: Per-transcript scheduling and batch execution
    utils: Logging and sequence utilities
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
