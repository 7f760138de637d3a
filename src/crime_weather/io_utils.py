"""
Table / JSON / YAML I/O for pipeline stages.

Stage outputs are never written in place: data goes to a hidden temp file
next to the target and is renamed over it only once fully written, so an
interrupted run leaves the previous output (or nothing) behind.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Union

import pandas as pd
import yaml


PathLike = Union[str, Path]

TABLE_FORMATS = (".parquet", ".csv")


# =============================================================================
# Atomic Writes
# =============================================================================

@contextmanager
def _staged_path(target: Path) -> Iterator[Path]:
    """
    Yield a temp path beside `target`; promote it to `target` on success.

    The temp file lives in the target's directory so the final replace is a
    same-filesystem rename.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        prefix=f".{target.stem}_",
        suffix=target.suffix or ".tmp",
        dir=target.parent,
    )
    os.close(fd)
    tmp_path = Path(tmp)

    try:
        yield tmp_path
        tmp_path.replace(target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


@contextmanager
def atomic_write(target_path: PathLike, mode: str = "w"):
    """
    Open a file handle whose contents replace `target_path` on clean exit.

    Usage:
        with atomic_write(path) as f:
            f.write(text)
    """
    with _staged_path(Path(target_path)) as tmp_path:
        encoding = None if "b" in mode else "utf-8"
        with open(tmp_path, mode, encoding=encoding) as f:
            yield f


def atomic_write_df(df: pd.DataFrame, target_path: PathLike, **kwargs) -> None:
    """
    Write a table as Parquet or CSV depending on the target's extension.

    CSV is written without the index unless `index=True` is passed.

    Raises:
        ValueError: For any other extension (nothing is written)
    """
    target_path = Path(target_path)
    suffix = target_path.suffix.lower()
    if suffix not in TABLE_FORMATS:
        raise ValueError(f"Unsupported table format '{suffix}' for {target_path.name}")

    with _staged_path(target_path) as tmp_path:
        if suffix == ".parquet":
            df.to_parquet(tmp_path, **kwargs)
        else:
            kwargs.setdefault("index", False)
            df.to_csv(tmp_path, **kwargs)


def atomic_write_json(data: Any, target_path: PathLike, **kwargs) -> None:
    """Pretty-printed JSON; Timestamps and other non-JSON values go through str()."""
    kwargs.setdefault("indent", 2)
    kwargs.setdefault("default", str)

    with atomic_write(target_path) as f:
        json.dump(data, f, **kwargs)


# =============================================================================
# Reads
# =============================================================================

def read_yaml(path: PathLike) -> dict:
    """Parse a YAML file; an empty file gives {}."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def read_json(path: PathLike) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_df(path: PathLike, **kwargs) -> pd.DataFrame:
    """Read a Parquet or CSV table by extension."""
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".parquet":
        return pd.read_parquet(path, **kwargs)
    if suffix == ".csv":
        return pd.read_csv(path, **kwargs)
    raise ValueError(f"Unsupported table format '{suffix}' for {path.name}")


def require_file(path: PathLike, produced_by: str) -> Path:
    """
    Fail fast on a missing upstream output, naming the script that builds it.

    Raises:
        FileNotFoundError: If path does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {path}. Run {produced_by} first.")
    return path
