"""Unit tests for configuration dataclasses and JSON loading."""

import json

import pytest

from regen_de.config import (
    N_JOBS_ENV,
    ComparisonConfig,
    DEConfig,
    FilterConfig,
    config_from_dict,
    load_config,
)
from regen_de.errors import ConfigError


def _make_payload(**overrides):
    payload = {
        "counts_path": "counts.tsv",
        "comparisons": [
            {
                "name": "D5",
                "factor": "tissue",
                "level_a": "ear",
                "level_b": "skin",
                "time_points": ["D5"],
            },
            {
                "name": "D10",
                "factor": "tissue",
                "level_a": "ear",
                "level_b": "skin",
                "time_points": ["D10"],
                "alpha": 0.10,
                "annotation_feed": "feeds/D10.tsv",
            },
        ],
    }
    payload.update(overrides)
    return payload


class TestDEConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        config = DEConfig()
        assert config.min_total_count == 10
        assert config.significance_source == "pvalue"
        assert config.n_jobs == 1

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv(N_JOBS_ENV, "4")
        assert DEConfig().n_jobs == 4

    def test_env_override_invalid(self, monkeypatch):
        monkeypatch.setenv(N_JOBS_ENV, "many")
        with pytest.raises(ConfigError):
            DEConfig()

    def test_invalid_significance_source(self):
        with pytest.raises(ConfigError):
            DEConfig(significance_source="qvalue")

    def test_n_jobs_must_be_positive(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        with pytest.raises(ConfigError):
            DEConfig(n_jobs=0)


class TestComparisonConfig:

    def test_filter_overrides(self):
        base = FilterConfig(alpha=0.05, lfc_threshold=1.0, top_n=50)
        comparison = ComparisonConfig(
            name="D10", factor="tissue", level_a="ear", level_b="skin", alpha=0.10
        )
        merged = comparison.filter_config(base)
        assert merged.alpha == 0.10
        assert merged.lfc_threshold == 1.0
        assert merged.top_n == 50
        assert base.alpha == 0.05

    def test_no_overrides(self):
        base = FilterConfig()
        comparison = ComparisonConfig(
            name="D5", factor="tissue", level_a="ear", level_b="skin"
        )
        assert comparison.filter_config(base) == base


class TestConfigFromDict:

    def test_comparisons(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        config = config_from_dict(_make_payload())
        assert [c.name for c in config.comparisons] == ["D5", "D10"]
        assert config.comparisons[0].time_points == ("D5",)
        assert config.comparisons[1].alpha == 0.10

    def test_sections(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        config = config_from_dict(
            _make_payload(
                de={"min_total_count": 20},
                filter={"top_n": 10},
                metadata={"tissues": ["ear", "skin"]},
                enrichment={"directions": ["up", "down", "all"]},
            )
        )
        assert config.de.min_total_count == 20
        assert config.filter.top_n == 10
        assert config.metadata.tissues == ("ear", "skin")
        assert config.enrichment.directions == ("up", "down", "all")

    def test_categories(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        config = config_from_dict(
            _make_payload(
                categories={
                    "categories": [
                        {"label": "Fibrosis", "keywords": ["collagen"]},
                        {"label": "Regeneration", "keywords": ["wound healing"]},
                    ],
                    "default": "Unclassified",
                }
            )
        )
        assert config.categories.categories[0] == ("Fibrosis", ("collagen",))
        assert config.categories.default == "Unclassified"

    def test_malformed_category(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        with pytest.raises(ConfigError):
            config_from_dict(_make_payload(categories={"categories": [{"label": "X"}]}))

    @pytest.mark.parametrize(
        "categories",
        [
            [{"label": "Fibrosis", "keywords": ["collagen"]}],
            {"categories": {"label": "Fibrosis"}},
            {"categories": 3},
        ],
    )
    def test_categories_wrong_type(self, monkeypatch, categories):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        with pytest.raises(ConfigError, match="categories"):
            config_from_dict(_make_payload(categories=categories))

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="unknown keys"):
            config_from_dict(_make_payload(colour="blue"))

    def test_unknown_comparison_key(self):
        payload = _make_payload()
        payload["comparisons"][0]["reference"] = "skin"
        with pytest.raises(ConfigError):
            config_from_dict(payload)

    def test_missing_counts_path(self):
        payload = _make_payload()
        del payload["counts_path"]
        with pytest.raises(ConfigError):
            config_from_dict(payload)

    def test_missing_required_comparison_field(self):
        payload = _make_payload()
        del payload["comparisons"][0]["level_b"]
        with pytest.raises(ConfigError):
            config_from_dict(payload)

    def test_duplicate_comparison_names(self, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        payload = _make_payload()
        payload["comparisons"][1]["name"] = "D5"
        with pytest.raises(ConfigError, match="Duplicate"):
            config_from_dict(payload)


class TestLoadConfig:

    def test_relative_paths_resolve_against_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv(N_JOBS_ENV, raising=False)
        path = tmp_path / "run.json"
        path.write_text(json.dumps(_make_payload(go_reference_path="go.tsv")))
        config = load_config(path)
        assert config.counts_path == str(tmp_path / "counts.tsv")
        assert config.go_reference_path == str(tmp_path / "go.tsv")
        assert config.comparisons[1].annotation_feed == str(tmp_path / "feeds" / "D10.tsv")
        assert config.comparisons[0].annotation_feed is None

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(path)
