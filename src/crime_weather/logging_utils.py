"""
Per-run structured logging for pipeline scripts.

Each script run writes `logs/<script>_<run_id>.jsonl`: one JSON object per
line with UTC timestamp, script name, run id, level, message and optional
structured `extra` payload (config, inputs, outputs, metrics, anomaly
counts). Human-readable lines go to stdout through the stdlib `logging`
module at the same time.
"""

import importlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from crime_weather.paths import LOGS_DIR


# import name → distribution name reported in logs / sidecars
TRACKED_LIBRARIES = {
    "pandas": "pandas",
    "numpy": "numpy",
    "sklearn": "scikit-learn",
    "pytz": "pytz",
    "pyarrow": "pyarrow",
    "yaml": "pyyaml",
}

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def generate_run_id() -> str:
    """UTC timestamp plus a short random suffix, e.g. 20240101_120000_1a2b3c4d."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex[:8]}"


def get_versions() -> dict[str, str]:
    """Python and tracked library versions (libraries that fail to import are left out)."""
    versions = {"python": sys.version.split()[0]}
    for module_name, dist_name in TRACKED_LIBRARIES.items():
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            continue
        versions[dist_name] = getattr(module, "__version__", "unknown")
    return versions


class JSONLLogger:
    """
    Structured run logger; use as a context manager so the file is closed and
    any exception is recorded before it propagates.

        with JSONLLogger("01_build_crime_daily") as logger:
            logger.info("Loaded 1,000 incidents")
            logger.log_anomalies("crime", {"duplicate_rows": 3})
    """

    def __init__(
        self,
        script_name: str,
        run_id: Optional[str] = None,
        log_dir: Optional[Path] = None,
    ):
        self.script_name = script_name
        self.run_id = run_id or generate_run_id()
        self.log_dir = Path(log_dir) if log_dir is not None else LOGS_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"{script_name}_{self.run_id}.jsonl"

        self._file_handle = open(self.log_file, "a", encoding="utf-8")

        self._console_handler = logging.StreamHandler(sys.stdout)
        self._console_handler.setLevel(logging.INFO)
        self._console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

        self._logger = logging.getLogger(f"crime_weather.{script_name}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.addHandler(self._console_handler)

        self._write_record("INFO", "Logger initialized", {
            "log_file": str(self.log_file),
            "versions": get_versions(),
        })

    def _write_record(self, level: str, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "script_name": self.script_name,
            "run_id": self.run_id,
            "level": level,
            "message": message,
        }
        if extra:
            record["extra"] = extra

        self._file_handle.write(json.dumps(record, default=str) + "\n")
        self._file_handle.flush()

    def _emit(self, level: int, message: str, extra: Optional[dict[str, Any]]) -> None:
        self._write_record(logging.getLevelName(level), message, extra)
        self._logger.log(level, message)

    def debug(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.ERROR, message, extra)

    # Structured records (file only)

    def log_config(self, config: dict[str, Any], config_digest: Optional[str] = None) -> None:
        self._write_record("INFO", "Configuration loaded", {"config": config, "config_digest": config_digest})

    def log_inputs(self, inputs: dict[str, str]) -> None:
        self._write_record("INFO", "Inputs registered", {"inputs": inputs})

    def log_outputs(self, outputs: dict[str, str]) -> None:
        self._write_record("INFO", "Outputs registered", {"outputs": outputs})

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self._write_record("INFO", "Metrics recorded", {"metrics": metrics})

    def log_anomalies(self, stage: str, anomalies: dict[str, Any]) -> None:
        """
        Record a stage's data-quality counts.

        Every non-zero numeric count is also echoed to the console as a
        warning, so rows silently dropped by a policy show up in the run output.
        """
        self._write_record("INFO", "Anomalies recorded", {"stage": stage, "anomalies": anomalies})
        for name, value in anomalies.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
                self._logger.warning(f"[{stage}] {name}: {value:,}")

    def close(self) -> None:
        self._write_record("INFO", "Logger closing")
        self._file_handle.close()
        self._logger.removeHandler(self._console_handler)

    def __enter__(self) -> "JSONLLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.error(f"Exception occurred: {exc_type.__name__}: {exc_val}")
        self.close()


def get_logger(script_name: str, run_id: Optional[str] = None) -> JSONLLogger:
    """Logger writing to the project's logs/ directory."""
    return JSONLLogger(script_name=script_name, run_id=run_id)
