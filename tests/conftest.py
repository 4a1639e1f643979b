"""
Pytest configuration and shared fixtures.

Provides:
- A small raw segmentation export (Ctr25 / KO25 x Sham / MCAO)
- A deterministic modeling backend so the reports run without MCMC sampling
- Fast sampler / theme settings
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from robust_regression_backend import CONTRAST_TERM, INTERCEPT_TERM

GOOD_DIAGNOSTICS = {"max_rhat": 1.001, "min_ess_bulk": 3500.0, "min_ess_tail": 3000.0, "divergences": 0}


class StubContrastBackend:
    """
    Deterministic stand-in for the PyMC backend.

    Draws come from a seeded numpy generator; `contrast_draws` fixes the
    genotype contrast and `failing_responses` makes the diagnostics of the
    listed response columns fail the convergence check.
    """

    name = "stub"

    def __init__(self, contrast_draws=None, failing_responses=()):
        self.contrast_draws = contrast_draws
        self.failing_responses = set(failing_responses)
        self.fit_calls = []
        self.samplers = []

    def fit(self, formula, data, priors, sampler):
        response = formula.split("~")[0].strip()
        self.fit_calls.append((response, len(data)))
        self.samplers.append(dict(sampler))
        rng = np.random.default_rng(sampler.get("random_seed", 0))
        observed = data[response].to_numpy(dtype=float)
        contrast = (np.asarray(self.contrast_draws, dtype=float) if self.contrast_draws is not None
                    else rng.normal(10.0, 20.0, size=4000))
        return {
            "response": response,
            "n_obs": len(data),
            "observed_sd": float(observed.std()) or 1.0,
            INTERCEPT_TERM: rng.normal(float(observed.mean()), 1.0, size=contrast.size),
            CONTRAST_TERM: contrast,
        }

    def posterior_draws(self, fit, parameter):
        return np.asarray(fit[parameter], dtype=float)

    def posterior_predictive(self, fit, n, seed):
        rng = np.random.default_rng(seed)
        center = float(np.mean(fit[INTERCEPT_TERM]))
        return rng.normal(center, fit["observed_sd"], size=(n, fit["n_obs"]))

    def diagnostics(self, fit):
        if fit["response"] in self.failing_responses:
            return {**GOOD_DIAGNOSTICS, "max_rhat": 1.32, "min_ess_bulk": 12.0}
        return dict(GOOD_DIAGNOSTICS)

    def parameter_summary(self, fit):
        rows = {name: fit[name] for name in (INTERCEPT_TERM, CONTRAST_TERM)}
        return pd.DataFrame(
            {"mean": [np.mean(v) for v in rows.values()], "sd": [np.std(v) for v in rows.values()]},
            index=list(rows),
        )


def make_raw_row(filename, pdgfrb_area, pdgfrb_intensity, gfap_area, gfap_intensity):
    return {
        "ImageNumber": 1,
        "FileName_Gfap": filename,
        "FileName_Pdgfrb": filename.replace("img", "pdgfrb"),
        "Intensity_MeanIntensity_Pdgfrb_Masked": pdgfrb_intensity,
        "Intensity_MeanIntensity_Gfap_Masked": gfap_intensity,
        "Intensity_TotalArea_Pdgfrb_Masked": pdgfrb_area,
        "Intensity_TotalArea_Gfap_Masked": gfap_area,
    }


@pytest.fixture
def raw_table():
    """Twelve sections: 2 genotypes x (4 MCAO + 2 Sham)."""
    rows = []
    index = 1
    for genotype, shift in (("Ctr25", 0.0), ("KO25", 400.0)):
        for condition, n in (("MCAO", 4), ("Sham", 2)):
            for k in range(n):
                rows.append(make_raw_row(
                    f"img_{index:03d}_M{index}_{genotype}_{condition}.tif",
                    pdgfrb_area=50000.0 + 1000.0 * k + shift * 10,
                    pdgfrb_intensity=0.05 + 0.01 * k,
                    gfap_area=80000.0 + 2000.0 * k + shift * 20,
                    gfap_intensity=0.04 + 0.005 * k,
                ))
                index += 1
    return pd.DataFrame(rows)


@pytest.fixture
def raw_csv(tmp_path, raw_table):
    path = tmp_path / "raw" / "measurements.csv"
    path.parent.mkdir()
    raw_table.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def stub_backend():
    return StubContrastBackend()


@pytest.fixture
def fast_sampler():
    return {"chains": 2, "cores": 1, "draws": 50, "tune": 50,
            "target_accept": 0.99, "max_treedepth": 15, "random_seed": 8807}


@pytest.fixture
def test_theme():
    return {
        "style": "whitegrid",
        "context": "paper",
        "font_scale": 1.0,
        "figsize": (4, 3),
        "dpi": 50,
        "palette": {"Ctr25": "#ADD8E6", "KO25": "#00008B"},
    }


@pytest.fixture
def raw_row():
    """Factory for a single raw measurement row."""
    return make_raw_row


@pytest.fixture
def stub_backend_cls():
    return StubContrastBackend
