"""Unit tests for LFC shrinkage and Benjamini-Hochberg adjustment."""

import numpy as np
import pandas as pd
import pytest

from regen_de.de.correction import MultipleTestingCorrector
from regen_de.de.shrinkage import ShrinkageEstimator


def _make_effects(seed=7):
    rng = np.random.RandomState(seed)
    n = 300
    se = np.full(n, 0.3)
    lfc = rng.normal(0.0, 0.3, size=n)
    lfc[:20] = rng.choice([-3.0, 3.0], size=20) + rng.normal(0.0, 0.3, size=20)
    index = [f"Gene{i}" for i in range(n)]
    return pd.Series(lfc, index=index), pd.Series(se, index=index)


def _bh_by_hand(pvalues):
    p = np.asarray(pvalues, dtype=float)
    m = len(p)
    order = np.argsort(p)
    ranked = p[order] * m / np.arange(1, m + 1)
    ranked = np.minimum.accumulate(ranked[::-1])[::-1]
    out = np.empty(m)
    out[order] = np.minimum(ranked, 1.0)
    return out


class TestMultipleTestingCorrector:

    def test_uniform_pvalues_unchanged(self):
        assert MultipleTestingCorrector().adjust([0.5] * 8) == pytest.approx([0.5] * 8)

    def test_matches_hand_rolled(self):
        rng = np.random.RandomState(0)
        pvalues = rng.uniform(size=50) ** 3
        adjusted = MultipleTestingCorrector().adjust(list(pvalues))
        np.testing.assert_allclose(adjusted, _bh_by_hand(pvalues))

    def test_adjusted_not_below_raw_and_monotone(self):
        rng = np.random.RandomState(1)
        pvalues = rng.uniform(size=40)
        adjusted = np.array(MultipleTestingCorrector().adjust(list(pvalues)))
        assert np.all(adjusted >= pvalues - 1e-15)
        order = np.argsort(pvalues)
        assert np.all(np.diff(adjusted[order]) >= -1e-15)

    def test_missing_excluded_from_count(self):
        adjusted = MultipleTestingCorrector().adjust([0.01, None, 0.04, float("nan")])
        assert adjusted[1] is None
        assert adjusted[3] is None
        assert adjusted[0] == pytest.approx(0.02)
        assert adjusted[2] == pytest.approx(0.04)

    def test_ties_share_value(self):
        adjusted = MultipleTestingCorrector().adjust([0.03, 0.01, 0.03, 0.2])
        assert adjusted[0] == adjusted[2]

    def test_all_missing(self):
        assert MultipleTestingCorrector().adjust([None, None]) == [None, None]

    def test_empty(self):
        assert MultipleTestingCorrector().adjust([]) == []


class TestShrinkageEstimator:

    def test_grid(self):
        lfc, se = _make_effects()
        grid = ShrinkageEstimator.mixture_grid(lfc.to_numpy(), se.to_numpy())
        assert grid[0] == 0.0
        assert grid[1] == pytest.approx(0.03, rel=0.5)
        assert np.all(np.diff(grid) > 0)
        np.testing.assert_allclose(grid[2:] / grid[1:-1], np.sqrt(2.0))

    def test_grid_without_excess_variance(self):
        grid = ShrinkageEstimator.mixture_grid(np.array([0.1, -0.1]), np.array([1.0, 1.0]))
        assert grid[-1] == pytest.approx(0.8)

    def test_posterior_never_exceeds_raw(self):
        lfc, se = _make_effects()
        result = ShrinkageEstimator().shrink(lfc, se)
        assert np.all(np.abs(result.posterior_mean) <= np.abs(lfc) + 1e-12)
        assert np.all(np.sign(result.posterior_mean[lfc.abs() > 1]) == np.sign(lfc[lfc.abs() > 1]))

    def test_large_se_shrinks_more(self):
        lfc, se = _make_effects()
        lfc["precise"] = 2.0
        se["precise"] = 0.2
        lfc["noisy"] = 2.0
        se["noisy"] = 2.0
        result = ShrinkageEstimator().shrink(lfc, se)
        assert abs(result.posterior_mean["noisy"]) < abs(result.posterior_mean["precise"])
        assert result.posterior_mean["precise"] > 1.5
        assert result.svalue["noisy"] > result.svalue["precise"]

    def test_strong_effects_have_small_svalue(self):
        lfc, se = _make_effects()
        result = ShrinkageEstimator().shrink(lfc, se)
        assert np.all((result.svalue >= 0) & (result.svalue <= 1))
        assert result.svalue.iloc[:20].max() < 0.01
        assert result.svalue.iloc[20:].median() > 0.1

    def test_weights_form_distribution(self):
        lfc, se = _make_effects()
        result = ShrinkageEstimator().shrink(lfc, se)
        assert result.weights.sum() == pytest.approx(1.0)
        assert len(result.weights) == len(result.grid)
        assert np.all(result.weights >= 0)
        assert result.weights[0] > 0

    def test_missing_values_pass_through(self):
        lfc, se = _make_effects()
        lfc.iloc[5] = np.nan
        se.iloc[6] = np.nan
        result = ShrinkageEstimator().shrink(lfc, se)
        assert np.isnan(result.posterior_mean.iloc[5])
        assert np.isnan(result.svalue.iloc[6])
        assert list(result.posterior_mean.index) == list(lfc.index)
        assert result.posterior_mean.drop(lfc.index[[5, 6]]).notna().all()

    def test_nothing_usable(self):
        lfc = pd.Series([np.nan, np.nan], index=["a", "b"])
        se = pd.Series([np.nan, 1.0], index=["a", "b"])
        result = ShrinkageEstimator().shrink(lfc, se)
        assert result.posterior_mean.isna().all()
        assert result.n_iterations == 0
