"""
Tests for the structured JSONL run logger.
"""

import json

import pytest

from crime_weather.logging_utils import JSONLLogger, generate_run_id, get_versions


def read_records(logger):
    with open(logger.log_file, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


class TestJSONLLogger:

    def test_records_carry_run_metadata(self, tmp_path):
        with JSONLLogger("99_test", run_id="run1", log_dir=tmp_path) as logger:
            logger.info("hello")

        records = read_records(logger)
        assert records[0]["message"] == "Logger initialized"
        assert "pandas" in records[0]["extra"]["versions"]
        assert all(r["run_id"] == "run1" and r["script_name"] == "99_test" for r in records)
        assert records[-1]["message"] == "Logger closing"

    def test_log_anomalies(self, tmp_path):
        with JSONLLogger("99_test", log_dir=tmp_path) as logger:
            logger.log_anomalies("crime", {"duplicate_rows": 2, "unmapped_descriptions": ["X"]})

        anomaly = [r for r in read_records(logger) if r["message"] == "Anomalies recorded"]
        assert anomaly[0]["extra"] == {
            "stage": "crime",
            "anomalies": {"duplicate_rows": 2, "unmapped_descriptions": ["X"]},
        }

    def test_exception_logged_and_propagated(self, tmp_path):
        with pytest.raises(RuntimeError):
            with JSONLLogger("99_test", log_dir=tmp_path) as logger:
                raise RuntimeError("boom")

        errors = [r for r in read_records(logger) if r["level"] == "ERROR"]
        assert "boom" in errors[0]["message"]


def test_run_ids_unique():
    assert generate_run_id() != generate_run_id()


def test_versions_include_stack():
    versions = get_versions()
    for lib in ["python", "pandas", "numpy", "scikit-learn"]:
        assert lib in versions
