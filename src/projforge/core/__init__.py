"""Core projection logic for ProjForge.

This module contains the search that turns hits into gene models:

- Pairwise alignment with affine gaps
- Splice-site candidates per hit
- Forward dynamic programming over part-ordered hits
- Region segmentation and gap filling
- Solution refinement and metrics
"""

from projforge.core.context import ProjectionContext, StrandedContig
from projforge.core.hits import Hit, split_at_stops
from projforge.core.predictor import PredictionStats, TranscriptPredictor
from projforge.core.solution import GeneModelPrediction, Solution
from projforge.core.transcript import ReferenceTranscript

__all__ = [
    "GeneModelPrediction",
    "Hit",
    "PredictionStats",
    "ProjectionContext",
    "ReferenceTranscript",
    "Solution",
    "StrandedContig",
    "TranscriptPredictor",
    "split_at_stops",
]
