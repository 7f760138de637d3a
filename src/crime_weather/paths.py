"""
Project-root discovery and the directory layout every stage reads and writes.

Scripts take their locations from here rather than from relative paths, so
they behave the same from any working directory.
"""

from pathlib import Path
from typing import Optional

# Markers to detect project root (in priority order)
ROOT_MARKERS = [".project-root", "pyproject.toml", ".git"]


def find_project_root(start_path: Optional[Path] = None) -> Path:
    """
    Walk upward from `start_path` (default: this package) to the first
    directory holding one of ROOT_MARKERS.

    Raises:
        FileNotFoundError: If no ancestor carries a marker.
    """
    start = Path(start_path) if start_path is not None else Path(__file__).resolve().parent
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in ROOT_MARKERS):
            return candidate

    raise FileNotFoundError(f"No project root marker {ROOT_MARKERS} above {start}")


def _resolve_project_root() -> Path:
    """Resolve from the package location, then from the working directory."""
    try:
        return find_project_root()
    except FileNotFoundError:
        # Non-editable installs live in site-packages; run from the checkout
        return find_project_root(Path.cwd().resolve())


# =============================================================================
# Canonical paths (resolved at import time)
# =============================================================================

PROJECT_ROOT = _resolve_project_root()

# Config
CONFIG_DIR = PROJECT_ROOT / "configs"
PARAMS_FILE = CONFIG_DIR / "params.yml"

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

# Processed subdirectories (one per pipeline stage)
CRIME_DIR = PROCESSED_DIR / "crime"
WEATHER_DIR = PROCESSED_DIR / "weather"
CLUSTERS_DIR = PROCESSED_DIR / "clusters"
FEATURES_DIR = PROCESSED_DIR / "features"
MODELS_DIR = PROCESSED_DIR / "models"
METADATA_DIR = PROCESSED_DIR / "metadata"

# Logs
LOGS_DIR = PROJECT_ROOT / "logs"


def resolve_input(path_str: str) -> Path:
    """Resolve a config-supplied input path against PROJECT_ROOT if relative."""
    path = Path(path_str)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return path


if __name__ == "__main__":
    print(f"PROJECT_ROOT:  {PROJECT_ROOT}")
    print(f"RAW_DIR:       {RAW_DIR}")
    print(f"PROCESSED_DIR: {PROCESSED_DIR}")
    print(f"CONFIG_DIR:    {CONFIG_DIR}")
    print(f"LOGS_DIR:      {LOGS_DIR}")
