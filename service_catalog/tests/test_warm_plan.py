"""
Unit tests for the warm plan loader.
"""

import json

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.caching.warm_plan import DEFAULT_DATA_FILE, WarmPlanLoader


class TestWarmPlanLoader:
    """Test cases for WarmPlanLoader."""

    def test_default_plan_file(self):
        loader = WarmPlanLoader()
        entries = loader.entries()

        assert loader.path == DEFAULT_DATA_FILE
        assert entries[0].key == "categories:visible"
        assert "category:1:products:100:0" in [entry.key for entry in entries]
        weights = [entry.weight for entry in entries]
        assert weights == sorted(weights, reverse=True)

    def test_entries_sorted_and_limited(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps({
            "entries": [
                {"key": "products:featured", "weight": 0.2},
                {"category_id": 4, "limit": 50, "weight": 0.9, "ttl_seconds": 120},
                {"key": "categories:all", "weight": 0.5},
            ]
        }))

        entries = WarmPlanLoader(plan_file).entries(limit=2)

        assert [entry.key for entry in entries] == ["category:4:products:50:0", "categories:all"]
        assert entries[0].ttl_seconds == 120

    def test_duplicates_and_bad_rows_skipped(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps({
            "entries": [
                {"key": "products:featured"},
                {"key": "products:featured"},
                {"category_id": "not-a-number"},
                "junk",
                {},
            ]
        }))

        entries = WarmPlanLoader(plan_file).entries()

        assert [entry.key for entry in entries] == ["products:featured"]

    def test_max_entries_from_file(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps({
            "max_entries": 1,
            "entries": [{"key": "a:1", "weight": 1}, {"key": "b:1", "weight": 2}],
        }))

        assert [entry.key for entry in WarmPlanLoader(plan_file).entries()] == ["b:1"]

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"entries": {}}'])
    def test_malformed_file_falls_back_to_categories(self, tmp_path, content):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(content)

        entries = WarmPlanLoader(plan_file, popular_category_ids=[9, 8]).entries()

        assert [entry.key for entry in entries] == ["category:9:products:100:0", "category:8:products:100:0"]

    def test_missing_file_falls_back_to_categories(self, tmp_path):
        loader = WarmPlanLoader(tmp_path / "missing.json")

        assert len(loader.entries()) == 5

    def test_refresh_reloads_file(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps({"entries": [{"key": "a:1"}]}))
        loader = WarmPlanLoader(plan_file)

        plan_file.write_text(json.dumps({"entries": [{"key": "b:1"}]}))
        loader.refresh()

        assert [entry.key for entry in loader.entries()] == ["b:1"]

    def test_unparseable_weight_and_limit_ignored(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps({
            "max_entries": "lots",
            "entries": [
                {"key": "categories:all", "weight": "high"},
                {"key": "products:featured", "weight": 0.4, "ttl_seconds": "soon"},
                {"key": "categories:visible"},
            ],
        }))

        entries = WarmPlanLoader(plan_file).entries()

        assert [entry.key for entry in entries] == ["products:featured", "categories:visible"]
        assert entries[0].ttl_seconds is None
        assert entries[1].weight == 0.0
