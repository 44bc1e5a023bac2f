"""Utility functions."""
import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def resolve_under_root(root: Path, relative: str) -> Path:
    """Join ``relative`` onto ``root``, refusing paths that escape the root."""
    root = root.resolve()
    real = (root / relative).resolve()
    if root not in real.parents and real != root:
        raise ValueError(f"Path is outside root: {relative}")
    return real


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # PIL logs every plugin it tries at DEBUG
    logging.getLogger("PIL").setLevel(logging.INFO)
