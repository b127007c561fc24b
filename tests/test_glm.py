"""Unit tests for the per-gene NB GLM and Wald contrasts."""

import math
import threading
import warnings

import numpy as np
import pandas as pd
import pytest

from regen_de.config import DEConfig
from regen_de.de.counts import CountMatrix
from regen_de.de.fit_warnings import SUPPRESSED_WARNINGS, suppress_fit_warnings
from regen_de.de.glm import (
    STATUS_FAILED,
    STATUS_OK,
    ContrastSpec,
    DesignSpec,
    GLMTester,
)
from regen_de.de.metadata import SampleMetadata, SampleRecord
from regen_de.errors import DegenerateInputError


def _make_metadata(tissues):
    return SampleMetadata(
        records=tuple(
            SampleRecord(f"S{i}", f"M{i}", tissue, "D5", "treated")
            for i, tissue in enumerate(tissues)
        )
    )


def _make_counts(rows, n_samples):
    return CountMatrix(
        pd.DataFrame(
            rows,
            index=[f"Gene{i}" for i in range(len(rows))],
            columns=[f"S{j}" for j in range(n_samples)],
        )
    )


def _fit(counts, metadata, design, dispersion=0.01, config=None):
    size_factors = pd.Series(1.0, index=counts.samples)
    dispersions = pd.Series(dispersion, index=counts.genes)
    tester = GLMTester(config or DEConfig(n_jobs=1))
    return tester, tester.fit(counts, size_factors, dispersions, metadata, design)


class TestDesignMatrix:

    def test_reference_first(self):
        metadata = _make_metadata(["ear", "skin", "ear", "skin"])
        matrix, levels = GLMTester.design_matrix(metadata, DesignSpec("tissue", "skin"))
        assert levels == ("skin", "ear")
        np.testing.assert_array_equal(matrix[:, 0], 1.0)
        np.testing.assert_array_equal(matrix[:, 1], [1.0, 0.0, 1.0, 0.0])

    def test_missing_reference(self):
        metadata = _make_metadata(["ear", "ear", "tail", "tail"])
        with pytest.raises(DegenerateInputError):
            GLMTester.design_matrix(metadata, DesignSpec("tissue", "skin"))

    def test_single_level(self):
        metadata = _make_metadata(["ear", "ear"])
        with pytest.raises(DegenerateInputError):
            GLMTester.design_matrix(metadata, DesignSpec("tissue", "ear"))

    def test_missing_factor_value(self):
        metadata = SampleMetadata(
            records=(
                SampleRecord("S0", "M0", "ear", "D5", "treated"),
                SampleRecord("S1", "M1", None, "D5", "treated"),
            )
        )
        with pytest.raises(DegenerateInputError):
            GLMTester.design_matrix(metadata, DesignSpec("tissue", "ear"))


class TestFitAndTest:

    def test_recovers_fold_change(self):
        counts = _make_counts(
            [[100, 110, 200, 220], [50, 55, 50, 55], [400, 380, 100, 95]], 4
        )
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        tester, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        stats = tester.test(model, ContrastSpec("tissue", "ear", "skin"))

        assert stats.loc["Gene0", "log2FoldChange"] == pytest.approx(math.log2(105 / 210), abs=1e-4)
        assert stats.loc["Gene1", "log2FoldChange"] == pytest.approx(0.0, abs=1e-4)
        assert stats.loc["Gene2", "log2FoldChange"] == pytest.approx(math.log2(390 / 97.5), abs=1e-4)
        assert (stats["status"] == STATUS_OK).all()
        assert stats.loc["Gene2", "pvalue"] < 0.001
        assert stats.loc["Gene1", "pvalue"] > 0.5

    def test_wald_statistic(self):
        counts = _make_counts([[100, 110, 200, 220]], 4)
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        tester, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        row = tester.test(model, ContrastSpec("tissue", "ear", "skin")).iloc[0]
        assert row["stat"] == pytest.approx(row["log2FoldChange"] / row["lfcSE"])
        assert row["pvalue"] == pytest.approx(2 * (1 - 0.5 * (1 + math.erf(abs(row["stat"]) / math.sqrt(2)))), rel=1e-6)

    def test_reversed_contrast_does_not_touch_model(self):
        counts = _make_counts([[100, 110, 200, 220], [400, 380, 100, 95]], 4)
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        tester, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        coefficients = model.coefficients.copy()

        forward = tester.test(model, ContrastSpec("tissue", "ear", "skin"))
        backward = tester.test(model, ContrastSpec("tissue", "skin", "ear"))

        np.testing.assert_allclose(forward["log2FoldChange"], -backward["log2FoldChange"])
        np.testing.assert_allclose(forward["pvalue"], backward["pvalue"])
        np.testing.assert_array_equal(model.coefficients, coefficients)

    def test_contrast_between_non_reference_levels(self):
        counts = _make_counts([[100, 100, 200, 200, 400, 400]], 6)
        metadata = _make_metadata(["skin", "skin", "ear", "ear", "tail", "tail"])
        tester, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        stats = tester.test(model, ContrastSpec("tissue", "tail", "ear"))
        assert stats.iloc[0]["log2FoldChange"] == pytest.approx(1.0, abs=1e-4)

    def test_model_is_read_only(self):
        counts = _make_counts([[100, 110, 200, 220]], 4)
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        _, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        with pytest.raises(ValueError):
            model.coefficients[0, 0] = 0.0
        with pytest.raises(AttributeError):
            model.levels = ("ear", "skin")

    def test_contrast_validation(self):
        counts = _make_counts([[100, 110, 200, 220]], 4)
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        tester, model = _fit(counts, metadata, DesignSpec("tissue", "skin"))
        with pytest.raises(ValueError):
            tester.test(model, ContrastSpec("condition", "ear", "skin"))
        with pytest.raises(ValueError):
            tester.test(model, ContrastSpec("tissue", "tail", "skin"))

    def test_failed_gene_recorded_as_na(self):
        counts = _make_counts([[100, 110, 200, 220], [50, 55, 60, 65]], 4)
        metadata = _make_metadata(["ear", "ear", "skin", "skin"])
        size_factors = pd.Series(1.0, index=counts.samples)
        dispersions = pd.Series([0.01, np.nan], index=counts.genes)
        tester = GLMTester(DEConfig(n_jobs=1))
        model = tester.fit(counts, size_factors, dispersions, metadata, DesignSpec("tissue", "skin"))
        stats = tester.test(model, ContrastSpec("tissue", "ear", "skin"))

        assert "Gene1" in model.failure_reasons
        assert stats.loc["Gene1", "status"] == STATUS_FAILED
        assert stats.loc["Gene1", ["log2FoldChange", "lfcSE", "stat", "pvalue"]].isna().all()
        assert stats.loc["Gene0", "status"] == STATUS_OK

    def test_parallel_matches_sequential(self):
        rng = np.random.RandomState(3)
        rows = rng.poisson(lam=200, size=(30, 6)).tolist()
        counts = _make_counts(rows, 6)
        metadata = _make_metadata(["ear"] * 3 + ["skin"] * 3)
        design = DesignSpec("tissue", "skin")
        contrast = ContrastSpec("tissue", "ear", "skin")

        seq_tester, seq_model = _fit(counts, metadata, design, config=DEConfig(n_jobs=1))
        par_tester, par_model = _fit(counts, metadata, design, config=DEConfig(n_jobs=4))
        pd.testing.assert_frame_equal(
            seq_tester.test(seq_model, contrast), par_tester.test(par_model, contrast)
        )

    def test_misaligned_metadata(self):
        counts = _make_counts([[100, 110, 200, 220]], 4)
        metadata = _make_metadata(["ear", "ear", "skin"])
        with pytest.raises(DegenerateInputError):
            _fit(counts, metadata, DesignSpec("tissue", "skin"))


def _suppressed(category):
    return any(
        action == "ignore" and cat is category
        for action, _, cat, _, _ in warnings.filters
    )


class TestFitWarnings:

    def test_nested_entry(self):
        before = list(warnings.filters)
        with suppress_fit_warnings():
            with suppress_fit_warnings():
                assert all(_suppressed(c) for c in SUPPRESSED_WARNINGS)
            assert all(_suppressed(c) for c in SUPPRESSED_WARNINGS)
        assert list(warnings.filters) == before

    def test_overlapping_threads(self):
        before = list(warnings.filters)
        first_in = threading.Event()
        second_in = threading.Event()
        first_out = threading.Event()
        seen = []

        def first():
            with suppress_fit_warnings():
                first_in.set()
                second_in.wait(timeout=10)
            first_out.set()

        def second():
            first_in.wait(timeout=10)
            with suppress_fit_warnings():
                second_in.set()
                first_out.wait(timeout=10)
                seen.append(all(_suppressed(c) for c in SUPPRESSED_WARNINGS))

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert seen == [True]
        assert list(warnings.filters) == before
