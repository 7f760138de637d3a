"""
Provenance sidecars and hash-aware stage caching.

Every primary stage output `X.ext` gets `data/processed/metadata/X_metadata.json`
recording what produced it:

    inputs         {name: {"path", "hash"}} (SHA-256 of each input file)
    config_digest  SHA-256 of the stage's config section
    git            commit and dirty flag, when run from a checkout
    versions       python + library versions
    run_id, timestamp
    extra          stage payload: anomaly counts, K, seeds, elbow scores, ...

A stage may skip its work only when the output exists and both the config
digest and every input hash match the sidecar; "the file exists" is never
enough.
"""

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from crime_weather.io_utils import atomic_write_json, read_json
from crime_weather.logging_utils import get_versions
from crime_weather.paths import METADATA_DIR


PathLike = Union[str, Path]

CHUNK_SIZE = 1 << 20


# =============================================================================
# Digests
# =============================================================================

def hash_file(path: PathLike, algorithm: str = "sha256") -> str:
    """
    Hex digest of a file's bytes, read in 1 MiB chunks.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {path}")

    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def hash_string(s: str, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, s.encode("utf-8")).hexdigest()


def hash_dict(d: Mapping[str, Any], algorithm: str = "sha256") -> str:
    """Digest of the canonical (sorted-key) JSON form, so key order never matters."""
    return hash_string(json.dumps(d, sort_keys=True, default=str), algorithm)


# =============================================================================
# Code Version
# =============================================================================

def _git(*args: str) -> Optional[str]:
    try:
        result = subprocess.run(["git", *args], capture_output=True, text=True, timeout=5)
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def get_git_info() -> Dict[str, Any]:
    """Current commit and whether the tree has uncommitted changes (None outside git)."""
    status = _git("status", "--porcelain")
    return {
        "commit": _git("rev-parse", "HEAD"),
        "dirty": None if status is None else bool(status),
    }


# =============================================================================
# Metadata Sidecar
# =============================================================================

def _sidecar_path(output_path: PathLike, metadata_dir: Optional[Path] = None) -> Path:
    return Path(metadata_dir or METADATA_DIR) / f"{Path(output_path).stem}_metadata.json"


def _describe_inputs(inputs: Mapping[str, PathLike]) -> Dict[str, Dict[str, Any]]:
    described = {}
    for name, path in inputs.items():
        path = Path(path)
        if path.exists():
            described[name] = {"path": str(path), "hash": hash_file(path)}
        else:
            described[name] = {"path": str(path), "hash": None, "missing": True}
    return described


def create_metadata_sidecar(
    output_path: PathLike,
    inputs: Mapping[str, PathLike],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build (without writing) the provenance record for one output."""
    metadata = {
        "output_file": str(output_path),
        "run_id": run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "inputs": _describe_inputs(inputs),
        "config_digest": hash_dict(config),
        "config": config,
        "git": get_git_info(),
        "versions": get_versions(),
    }
    if extra:
        metadata["extra"] = extra
    return metadata


def write_metadata_sidecar(
    output_path: PathLike,
    inputs: Mapping[str, PathLike],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
    metadata_dir: Optional[Path] = None,
) -> Path:
    """Write the sidecar for `output_path`; returns the sidecar's path."""
    sidecar = _sidecar_path(output_path, metadata_dir)
    atomic_write_json(create_metadata_sidecar(output_path, inputs, config, run_id, extra), sidecar)
    return sidecar


def read_metadata_sidecar(
    output_path: PathLike,
    metadata_dir: Optional[Path] = None,
) -> Optional[Dict[str, Any]]:
    """The sidecar for `output_path`, or None if it was never written."""
    sidecar = _sidecar_path(output_path, metadata_dir)
    return read_json(sidecar) if sidecar.exists() else None


# =============================================================================
# Cache Validation
# =============================================================================

def get_cache_status(
    output_path: PathLike,
    inputs: Mapping[str, PathLike],
    config: Dict[str, Any],
    metadata_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Decide whether a stage output can be reused.

    Returns:
        {"valid": bool, "reason": str}; reason is one of output_missing,
        metadata_missing, config_changed, input_not_cached:<name>,
        input_missing:<name>, input_changed:<name>, all_hashes_match
    """
    def invalid(reason: str) -> Dict[str, Any]:
        return {"valid": False, "reason": reason}

    if not Path(output_path).exists():
        return invalid("output_missing")

    metadata = read_metadata_sidecar(output_path, metadata_dir)
    if metadata is None:
        return invalid("metadata_missing")

    if metadata.get("config_digest") != hash_dict(config):
        return invalid("config_changed")

    cached = metadata.get("inputs", {})
    for name, path in inputs.items():
        if name not in cached:
            return invalid(f"input_not_cached:{name}")
        if not Path(path).exists():
            return invalid(f"input_missing:{name}")
        if cached[name].get("hash") != hash_file(path):
            return invalid(f"input_changed:{name}")

    return {"valid": True, "reason": "all_hashes_match"}


def validate_cache(
    output_path: PathLike,
    inputs: Mapping[str, PathLike],
    config: Dict[str, Any],
    metadata_dir: Optional[Path] = None,
) -> bool:
    """True when the cached output can be reused."""
    return get_cache_status(output_path, inputs, config, metadata_dir)["valid"]
