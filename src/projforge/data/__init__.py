"""Package data files for projforge.

This package contains data files used by projforge, including:
- blosum62.txt: BLOSUM62 substitution matrix in NCBI text format
"""

from importlib import resources
from importlib.resources.abc import Traversable


def get_data_path(filename: str) -> Traversable:
    """Get the path to a data file.

    Args:
        filename: Name of the data file.

    Returns:
        Path to the data file.
    """
    return resources.files(__name__).joinpath(filename)


def read_data_text(filename: str) -> str:
    """Read a packaged text file."""
    return get_data_path(filename).read_text()


__all__ = ["get_data_path", "read_data_text"]
