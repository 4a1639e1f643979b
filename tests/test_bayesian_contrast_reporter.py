"""
Unit tests for the Bayesian contrast reporter.

Model fits come from the deterministic stub backend in conftest.py, so these
tests exercise the summaries, caching, checks and artifacts without sampling.
"""

import os

import numpy as np
import pytest

from bayesian_contrast_reporter import (
    FitConvergenceError,
    check_convergence,
    classify_rope,
    credible_interval,
    data_fingerprint,
    inside_rope,
    ppc_ks_distance,
    probability_of_direction,
    report,
    rope_decision,
    rope_fraction,
    summarize_contrast,
)
from glial_density_metrics import build, model_subset
from robust_regression_backend import DEFAULT_SAMPLER


@pytest.fixture
def clean_table(raw_table):
    return build(raw_table)


class TestRopeClassification:

    def test_bounds_are_inclusive(self):
        mask = inside_rope([-75.0, -75.01, 0.0, 75.0, 75.01], 75)
        assert mask.tolist() == [True, False, True, True, False]

    def test_labels(self):
        labels = classify_rope([-200.0, 10.0, 144.0], 144)
        assert labels.tolist() == ["Outside ROPE", "Inside ROPE", "Inside ROPE"]

    def test_fraction_monotonic_in_half_width(self):
        draws = np.random.default_rng(1).normal(30.0, 60.0, size=5000)
        for ci in (0.95, 1.0):
            fractions = [rope_fraction(draws, r, ci) for r in (0, 10, 50, 75, 144, 500)]
            assert fractions == sorted(fractions)
            assert fractions[-1] == 1.0

    def test_fraction_with_all_draws(self):
        draws = np.array([-100.0, -50.0, 0.0, 50.0, 100.0])
        assert rope_fraction(draws, 75, ci=1.0) == pytest.approx(0.6)

    def test_ci_inside_rope_gives_full_fraction(self):
        draws = np.random.default_rng(2).normal(5.0, 15.0, size=4000)
        lo, hi = credible_interval(draws)
        assert -75 <= lo and hi <= 75
        assert rope_fraction(draws, 75) == 1.0
        assert rope_decision(lo, hi, 75) == "Accepted"


class TestPosteriorSummaries:

    def test_probability_of_direction(self):
        assert probability_of_direction([1.0, 2.0, 3.0]) == 1.0
        assert probability_of_direction([-3.0, -2.0, -1.0, 4.0]) == pytest.approx(0.75)

    def test_rope_decision(self):
        assert rope_decision(100.0, 300.0, 75) == "Rejected"
        assert rope_decision(-300.0, -80.0, 75) == "Rejected"
        assert rope_decision(-20.0, 120.0, 75) == "Undecided"

    def test_summary_values(self):
        draws = np.random.default_rng(3).normal(200.0, 20.0, size=4000)
        summary = summarize_contrast(draws, 144)
        assert summary["ci_low"] < summary["median"] < summary["ci_high"]
        assert summary["hdi_low"] < summary["hdi_high"]
        assert summary["probability_of_direction"] == 1.0
        assert summary["rope_percentage"] < 0.05

    def test_ppc_ks_distance(self):
        observed = np.linspace(0, 1, 50)
        assert ppc_ks_distance(observed, np.array([observed, observed])) == 0.0
        assert ppc_ks_distance(observed, np.array([observed + 10])) == 1.0


class TestConvergence:

    def test_passes(self):
        check_convergence({"max_rhat": 1.0, "min_ess_bulk": 2000, "min_ess_tail": 2000, "divergences": 0},
                          {"max_rhat": 1.05, "min_ess_bulk": 400, "min_ess_tail": 400}, "GFAP")

    def test_high_rhat_raises(self):
        with pytest.raises(FitConvergenceError, match="GFAP.*R-hat"):
            check_convergence({"max_rhat": 1.2, "min_ess_bulk": 2000, "min_ess_tail": 2000, "divergences": 0},
                              {"max_rhat": 1.05, "min_ess_bulk": 400, "min_ess_tail": 400}, "GFAP")

    def test_low_ess_raises(self):
        with pytest.raises(FitConvergenceError, match="ess tail"):
            check_convergence({"max_rhat": 1.0, "min_ess_bulk": 2000, "min_ess_tail": 50, "divergences": 3},
                              {"max_rhat": 1.05, "min_ess_bulk": 400, "min_ess_tail": 400}, "PDGFRb")

    def test_nan_rhat_raises(self):
        with pytest.raises(FitConvergenceError, match="max rhat is nan"):
            check_convergence({"max_rhat": float("nan"), "min_ess_bulk": 2000, "min_ess_tail": 2000, "divergences": 0},
                              {"max_rhat": 1.05, "min_ess_bulk": 400, "min_ess_tail": 400}, "GFAP")

    def test_nan_ess_raises(self):
        with pytest.raises(FitConvergenceError, match="min ess bulk is nan"):
            check_convergence({"max_rhat": 1.0, "min_ess_bulk": float("nan"), "min_ess_tail": 2000, "divergences": 0},
                              {"max_rhat": 1.05, "min_ess_bulk": 400, "min_ess_tail": 400}, "GFAP")


class TestFingerprint:

    def test_changes_with_data_and_seed(self, clean_table, fast_sampler):
        data = model_subset(clean_table)
        base = data_fingerprint("Gfap_IntDen", "Gfap_IntDen ~ Genotype", data, fast_sampler, {}, "stub")
        changed = data.copy()
        changed.loc[0, "Gfap_IntDen"] += 1.0
        assert data_fingerprint("Gfap_IntDen", "Gfap_IntDen ~ Genotype", changed, fast_sampler, {}, "stub") != base
        reseeded = {**fast_sampler, "random_seed": 1}
        assert data_fingerprint("Gfap_IntDen", "Gfap_IntDen ~ Genotype", data, reseeded, {}, "stub") != base

    def test_ignores_cores(self, clean_table, fast_sampler):
        data = model_subset(clean_table)
        more_cores = {**fast_sampler, "cores": 8}
        assert (data_fingerprint("Gfap_IntDen", "f", data, fast_sampler, {}, "stub")
                == data_fingerprint("Gfap_IntDen", "f", data, more_cores, {}, "stub"))


class TestReport:

    def run_report(self, clean_table, backend, tmp_path, sampler, theme, response="Pdgfrb_IntDen", rope=75):
        return report(
            clean_table, response, rope,
            plot_limits={"label": "PDGFRβ", "xlim": (-300, 300), "xbreaks": [-300, -75, 0, 75, 300]},
            backend=backend,
            output_dir=str(tmp_path / "results"),
            fits_dir=str(tmp_path / "fits"),
            sampler=sampler,
            ppc_draws=20,
            theme=theme,
            marker="PDGFRb",
        )

    def test_writes_artifacts(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        result = self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme)
        for key in ("fit", "ppc_plot", "contrast_plot", "conditional_means_plot",
                    "contrast_summary_csv", "contrast_summary_md", "contrast_summary_tex",
                    "parameter_summary_md", "parameter_summary_tex"):
            assert os.path.exists(result.artifacts[key]), key
        assert result.formula == "Pdgfrb_IntDen ~ Genotype"
        assert result.rope_half_width == 75.0
        assert "Genotype" in open(result.artifacts["contrast_summary_md"], encoding="utf-8").read()

    def test_fits_only_injured_sections(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme)
        n_injured = int((clean_table["Condition"] == "MCAO").sum())
        assert stub_backend.fit_calls == [("Pdgfrb_IntDen", n_injured)]

    def test_rerun_reuses_cached_fit(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        first = self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme)
        second = self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme)
        assert len(stub_backend.fit_calls) == 1
        assert not first.from_cache and second.from_cache
        assert first.artifacts["fit"] == second.artifacts["fit"]
        assert second.median == first.median
        assert (second.ci_low, second.ci_high) == (first.ci_low, first.ci_high)
        assert second.rope_percentage == first.rope_percentage
        assert second.ppc_ks == first.ppc_ks

    def test_changed_data_refits(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme)
        changed = clean_table.copy()
        changed.loc[0, "Pdgfrb_IntDen"] *= 2
        self.run_report(changed, stub_backend, tmp_path, fast_sampler, test_theme)
        assert len(stub_backend.fit_calls) == 2

    def test_contrast_within_rope(self, clean_table, stub_backend_cls, tmp_path, fast_sampler, test_theme):
        draws = np.random.default_rng(4).normal(0.0, 20.0, size=4000)
        backend = stub_backend_cls(contrast_draws=draws)
        result = self.run_report(clean_table, backend, tmp_path, fast_sampler, test_theme)
        assert -75 <= result.ci_low and result.ci_high <= 75
        assert result.rope_percentage == 1.0
        assert result.rope_decision == "Accepted"

    def test_convergence_failure_surfaces(self, clean_table, stub_backend_cls, tmp_path, fast_sampler, test_theme):
        backend = stub_backend_cls(failing_responses=["Pdgfrb_IntDen"])
        with pytest.raises(FitConvergenceError, match="PDGFRb"):
            self.run_report(clean_table, backend, tmp_path, fast_sampler, test_theme)
        assert not os.path.exists(tmp_path / "results" / "Pdgfrb_IntDen_contrast_summary.csv")

    def test_missing_genotype_raises(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        only_ctr = clean_table[clean_table["Genotype"] == "Ctr25"]
        with pytest.raises(ValueError, match="KO25"):
            self.run_report(only_ctr, stub_backend, tmp_path, fast_sampler, test_theme)
        assert stub_backend.fit_calls == []

    def test_unknown_response_raises(self, clean_table, stub_backend, tmp_path, fast_sampler, test_theme):
        with pytest.raises(KeyError, match="Iba1_IntDen"):
            self.run_report(clean_table, stub_backend, tmp_path, fast_sampler, test_theme, response="Iba1_IntDen")

    def test_default_sampler_settings(self, clean_table, stub_backend, tmp_path, test_theme):
        result = report(clean_table, "Pdgfrb_IntDen", 75, backend=stub_backend,
                        output_dir=str(tmp_path / "results"), fits_dir=str(tmp_path / "fits"),
                        ppc_draws=10, theme=test_theme)
        assert stub_backend.samplers == [DEFAULT_SAMPLER]
        assert stub_backend.samplers[0]["random_seed"] == 8807
        assert stub_backend.samplers[0]["draws"] == 2500
        assert os.path.exists(result.artifacts["contrast_summary_csv"])

    def test_sampler_overrides_merge_with_defaults(self, clean_table, stub_backend, tmp_path, test_theme):
        self.run_report(clean_table, stub_backend, tmp_path, {"draws": 50, "random_seed": 1}, test_theme)
        used = stub_backend.samplers[0]
        assert used["draws"] == 50
        assert used["random_seed"] == 1
        assert used["tune"] == DEFAULT_SAMPLER["tune"]
        assert used["target_accept"] == 0.99
