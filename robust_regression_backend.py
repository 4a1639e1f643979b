"""

Author: Sailaja Kuruvada
Date: 2026

Robust Bayesian Regression Backend (PyMC)

Student-t linear regression used for the genotype contrasts. The design matrix is
built from a model formula with the statsmodels/patsy formula machinery, so
`Gfap_IntDen ~ Genotype` with Genotype as an ordered categorical (Ctr25 first)
gives the treatment-coded coefficient `Genotype[T.KO25]`, i.e. the KO-vs-WT
difference.

The contrast reporter only talks to this module through five methods (fit,
posterior_draws, posterior_predictive, diagnostics, parameter_summary), so any
object implementing them can stand in for PyMC, e.g. a deterministic stub in tests.

Model:
    y_i        ~ StudentT(nu, Intercept + X_i * beta, sigma)
    Intercept  ~ StudentT(3, median(y), scale)
    beta       ~ Normal(0, slope_scale * scale)
    sigma      ~ HalfStudentT(3, scale)
    nu         ~ Gamma(2, 0.1)
where scale = max(1.4826 * MAD(y), 2.5).

Required Libraries and Versions:
- pymc>=5.10: Probabilistic programming library for model definition (pm.Model, pm.StudentT, pm.Normal), NUTS sampling (pm.sample) and posterior predictive draws (pm.sample_posterior_predictive)
- arviz>=0.17,<1.0: Posterior analysis library for convergence diagnostics (az.rhat, az.ess) and posterior summaries (az.summary)
- statsmodels>=0.14.0: Statistical modeling library whose formula interface (ols) builds the design matrix and gives the least-squares reference estimates
- numpy>=1.23.0: Array operations on draws and design matrices (np.median, np.linspace)
- pandas>=1.5.0: Tabular summaries returned to the reporter

"""

from collections import namedtuple
from typing import Dict, List, Tuple

import numpy as np                    # Used for robust scale estimates (np.median), draw flattening and evenly spaced draw selection (np.linspace)
import pandas as pd                   # Used for the parameter summary and OLS reference tables
import pymc as pm                     # Used for the Student-t regression model, NUTS sampling and posterior predictive simulation
import arviz as az                    # Used for R-hat / ESS diagnostics (az.rhat, az.ess) and posterior summaries (az.summary)
from statsmodels.formula.api import ols  # Used to turn the model formula into a design matrix and for least-squares reference fits

CONTRAST_TERM = "Genotype[T.KO25]"
INTERCEPT_TERM = "Intercept"
MIN_SCALE = 2.5

DEFAULT_PRIORS = {
    "intercept_nu": 3,
    "slope_scale": 10.0,
    "sigma_nu": 3,
    "nu_alpha": 2.0,
    "nu_beta": 0.1,
}

DEFAULT_SAMPLER = {
    "chains": 4,
    "cores": 4,
    "draws": 2500,
    "tune": 2500,
    "target_accept": 0.99,
    "max_treedepth": 15,
    "random_seed": 8807,
}

FittedModel = namedtuple("FittedModel", ["formula", "data", "priors", "idata"])


def build_formula(response: str, terms: List[str]) -> str:
    if not terms:
        return f"{response} ~ 1"
    return f"{response} ~ " + " + ".join(terms)


def design_matrix(formula: str, data: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray, List[str]]:
    """Response vector, design matrix and column names for `formula`."""
    mod = ols(formula, data=data)
    names = list(mod.exog_names)
    if not names or names[0] != INTERCEPT_TERM:
        raise ValueError(f"Formula '{formula}' must keep the intercept")
    return np.asarray(mod.endog, dtype=float), np.asarray(mod.exog, dtype=float), names


def robust_scale(y: np.ndarray) -> float:
    mad = 1.4826 * np.median(np.abs(y - np.median(y)))
    return float(max(mad, MIN_SCALE))


def ols_reference(formula: str, data: pd.DataFrame) -> pd.Series:
    """Least-squares estimates for each coefficient (reported next to the posterior)."""
    return ols(formula, data=data).fit().params


def _flatten_draws(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1)


def _extreme(dataset, reducer) -> float:
    values = []
    for var in dataset.data_vars:
        arr = np.asarray(dataset[var].values, dtype=float)
        values.append(float(reducer(arr)))
    return reducer(np.asarray(values))


class PymcStudentTRegression:
    """Student-t linear regression sampled with PyMC's NUTS."""

    name = "pymc-studentt"

    def build_model(self, formula: str, data: pd.DataFrame, priors: Dict) -> pm.Model:
        priors = {**DEFAULT_PRIORS, **(priors or {})}
        y, X, names = design_matrix(formula, data)
        center = float(np.median(y))
        scale = robust_scale(y)

        coords = {"coef": names[1:], "obs": np.arange(len(y))}
        with pm.Model(coords=coords) as model:
            intercept = pm.StudentT(INTERCEPT_TERM, nu=priors["intercept_nu"], mu=center, sigma=scale)
            beta = pm.Normal("beta", mu=0.0, sigma=priors["slope_scale"] * scale, dims="coef")
            sigma = pm.HalfStudentT("sigma", nu=priors["sigma_nu"], sigma=scale)
            nu = pm.Gamma("nu", alpha=priors["nu_alpha"], beta=priors["nu_beta"])
            mu = intercept + pm.math.dot(X[:, 1:], beta)
            pm.StudentT("y", nu=nu, mu=mu, sigma=sigma, observed=y, dims="obs")
        return model

    def fit(self, formula: str, data: pd.DataFrame, priors: Dict, sampler: Dict) -> FittedModel:
        model = self.build_model(formula, data, priors)
        with model:
            idata = pm.sample(
                draws=sampler["draws"],
                tune=sampler["tune"],
                chains=sampler["chains"],
                cores=sampler.get("cores", sampler["chains"]),
                random_seed=sampler["random_seed"],
                nuts={
                    "target_accept": sampler["target_accept"],
                    "max_treedepth": sampler["max_treedepth"],
                },
                progressbar=sampler.get("progressbar", True),
            )
        return FittedModel(formula, data.copy(), dict(priors or {}), idata)

    def posterior_draws(self, fit: FittedModel, parameter: str) -> np.ndarray:
        posterior = fit.idata.posterior
        if parameter in posterior.data_vars:
            return _flatten_draws(posterior[parameter].values)
        if parameter in posterior["beta"].coords["coef"].values:
            return _flatten_draws(posterior["beta"].sel(coef=parameter).values)
        raise KeyError(f"Parameter '{parameter}' not found in the posterior")

    def posterior_predictive(self, fit: FittedModel, n: int, seed: int) -> np.ndarray:
        """`n` replicate datasets, shape (n, n_obs), evenly spread over the posterior."""
        model = self.build_model(fit.formula, fit.data, fit.priors)
        with model:
            ppc = pm.sample_posterior_predictive(fit.idata, random_seed=seed, progressbar=False)
        y_rep = (ppc.posterior_predictive["y"]
                 .stack(sample=("chain", "draw"))
                 .transpose("sample", "obs")
                 .values)
        picks = np.linspace(0, y_rep.shape[0] - 1, num=min(n, y_rep.shape[0])).astype(int)
        return y_rep[picks]

    def diagnostics(self, fit: FittedModel) -> Dict[str, float]:
        idata = fit.idata
        return {
            "max_rhat": _extreme(az.rhat(idata), np.max),
            "min_ess_bulk": _extreme(az.ess(idata, method="bulk"), np.min),
            "min_ess_tail": _extreme(az.ess(idata, method="tail"), np.min),
            "divergences": int(idata.sample_stats["diverging"].values.sum()),
        }

    def parameter_summary(self, fit: FittedModel) -> pd.DataFrame:
        return az.summary(fit.idata, var_names=[INTERCEPT_TERM, "beta", "sigma", "nu"], hdi_prob=0.95)
