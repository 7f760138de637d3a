"""
Tests for the paths module.

Verify that project root detection and canonical paths work correctly.
"""

import pytest
from pathlib import Path

from crime_weather.paths import (
    PROJECT_ROOT,
    find_project_root,
    resolve_input,
    RAW_DIR,
    PROCESSED_DIR,
    CONFIG_DIR,
    PARAMS_FILE,
    LOGS_DIR,
    CRIME_DIR,
    WEATHER_DIR,
    CLUSTERS_DIR,
    FEATURES_DIR,
    MODELS_DIR,
    METADATA_DIR,
)


class TestProjectRoot:
    """Tests for project root detection."""

    def test_project_root_exists(self):
        """PROJECT_ROOT should be a valid directory."""
        assert PROJECT_ROOT.exists()
        assert PROJECT_ROOT.is_dir()

    def test_project_root_marker_exists(self):
        """The .project-root marker file should exist."""
        marker = PROJECT_ROOT / ".project-root"
        assert marker.exists(), "Missing .project-root marker file"

    def test_find_project_root_from_subdir(self):
        """find_project_root should work from any subdirectory."""
        subdir = PROJECT_ROOT / "src" / "crime_weather"
        found_root = find_project_root(subdir)
        assert found_root == PROJECT_ROOT

    def test_find_project_root_from_marker_dir(self, tmp_path):
        """A directory holding .project-root is its own root."""
        (tmp_path / ".project-root").touch()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path


class TestCanonicalPaths:
    """Tests for canonical path definitions."""

    def test_raw_dir_under_data(self):
        assert RAW_DIR.name == "raw"
        assert RAW_DIR.parent.name == "data"

    def test_stage_dirs_under_processed(self):
        for d in [CRIME_DIR, WEATHER_DIR, CLUSTERS_DIR, FEATURES_DIR, MODELS_DIR, METADATA_DIR]:
            assert d.parent == PROCESSED_DIR, f"{d} not under {PROCESSED_DIR}"

    def test_params_file_exists(self):
        assert PARAMS_FILE.parent == CONFIG_DIR
        assert PARAMS_FILE.exists(), f"Missing: {PARAMS_FILE}"

    def test_logs_dir_under_root(self):
        assert LOGS_DIR.parent == PROJECT_ROOT

    def test_all_paths_are_absolute(self):
        for p in [PROJECT_ROOT, RAW_DIR, PROCESSED_DIR, CONFIG_DIR, LOGS_DIR]:
            assert p.is_absolute(), f"{p} is not absolute"


class TestResolveInput:
    """Tests for config-supplied input paths."""

    def test_relative_path_resolved_against_root(self):
        assert resolve_input("data/raw/x.csv") == PROJECT_ROOT / "data" / "raw" / "x.csv"

    def test_absolute_path_unchanged(self, tmp_path):
        target = tmp_path / "crime.csv"
        assert resolve_input(str(target)) == Path(target)
