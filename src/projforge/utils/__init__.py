"""General utilities for ProjForge."""
