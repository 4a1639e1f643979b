"""

Author: Sailaja Kuruvada
Date: 2026

Bayesian Genotype Contrast Reporter

This script fits a robust (Student-t) Bayesian regression of one IntDen response on
Genotype for the injured (non-Sham) sections, checks the fit and reports the
KO25-vs-Ctr25 contrast against a region of practical equivalence (ROPE). The
same procedure runs for every marker; only the response column, the ROPE
half-width and the axis settings change.

Key Features:
- Cached model fits keyed by response, formula, data fingerprint and sampler/prior settings
- Convergence checks (R-hat, bulk/tail ESS) that stop the report on failure
- Posterior predictive check (replicate densities vs. observed, mean KS distance)
- ROPE classification, probability of direction and ROPE decision
- Contrast density plot shaded by ROPE membership
- Posterior genotype means plotted over the observed sections
- Summary tables in CSV, Markdown and LaTeX

Response (numeric): Pdgfrb_IntDen or Gfap_IntDen
Factor (categorical): Genotype (Ctr25 reference, KO25)

OUTPUT RESULTS (per response column, inside the output folder):
- '<response>_ppc.png': posterior predictive densities vs. observed
- '<response>_contrast.png': posterior of the genotype contrast with ROPE shading
- '<response>_conditional_means.png': posterior mean per genotype with 95% CI
- '<response>_contrast_summary.csv/.md/.tex': one-row contrast summary
  Columns: Marker, Parameter, Median, Mean, CI_low, CI_high, HDI_low, HDI_high, pd, ROPE_half_width,
           ROPE_Percentage, Inside_ROPE_all_draws, ROPE_decision, OLS_estimate, Max_Rhat, Min_ESS_bulk,
           Divergences, PPC_KS
- '<response>_parameter_summary.md/.tex': posterior summary of all model parameters
- '<fits folder>/<response>_<fingerprint>.joblib': cached model fit

Required Libraries and Versions:
- pandas>=1.5.0: Tables (pd.DataFrame) and exports (to_csv, to_markdown, to_latex)
- numpy>=1.23.0: Quantiles (np.quantile), ROPE masks and summary statistics on posterior draws
- scipy>=1.9.0: Two-sample Kolmogorov-Smirnov distance (ks_2samp) for the posterior predictive check
- arviz>=0.17,<1.0: Highest density intervals (az.hdi)
- matplotlib>=3.6.0 / seaborn>=0.13.0: Contrast, posterior predictive and genotype-mean figures
- joblib>=1.2.0: Persisting and reloading cached model fits (joblib.dump, joblib.load)
- tabulate>=0.9.0 / jinja2>=3.1.0: Backends for DataFrame.to_markdown and DataFrame.to_latex
- hashlib / json: Standard library for the cache fingerprint (sha256 over data and settings)

"""

import os                             # Used for output paths (os.path.join) and cache lookups (os.path.exists)
import json                           # Used to serialise sampler/prior settings into the cache fingerprint
import hashlib                        # Used for the sha256 data fingerprint that keys cached fits
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple
import numpy as np                    # Used for quantiles, ROPE masks and probability of direction on posterior draws
import pandas as pd                   # Used for summary tables and their CSV / Markdown / LaTeX export
import joblib                         # Used to persist (joblib.dump) and reload (joblib.load) fitted models
import arviz as az                    # Used for highest density intervals (az.hdi) of the contrast draws
import matplotlib.pyplot as plt
import seaborn as sns
from scipy.stats import ks_2samp      # Used for the KS distance between replicate and observed response distributions

from artifact_io import atomic_output, save_figure, write_text
from exploratory_plots import plot_theme_context
from glial_density_metrics import GENOTYPES, model_subset
from robust_regression_backend import (
    CONTRAST_TERM,
    DEFAULT_SAMPLER,
    INTERCEPT_TERM,
    PymcStudentTRegression,
    build_formula,
    ols_reference,
)

ROPE_LABELS = ["Inside ROPE", "Outside ROPE"]
CI_PROB = 0.95
CACHE_IGNORED_SAMPLER_KEYS = ("cores", "progressbar")

DEFAULT_CONVERGENCE_CRITERIA = {
    "max_rhat": 1.05,
    "min_ess_bulk": 400,
    "min_ess_tail": 400,
}


class FitConvergenceError(RuntimeError):
    """Sampler diagnostics indicate the model did not converge."""


@dataclass(frozen=True)
class ContrastResult:
    marker: str
    response_column: str
    formula: str
    draws: np.ndarray = field(repr=False)
    rope_half_width: float
    median: float
    mean: float
    ci_low: float
    ci_high: float
    hdi_low: float
    hdi_high: float
    probability_of_direction: float
    rope_percentage: float
    inside_rope_all_draws: float
    rope_decision: str
    ols_estimate: float
    diagnostics: Dict[str, float]
    ppc_ks: float
    from_cache: bool
    artifacts: Dict[str, str]


# ================================
# ROPE and posterior summaries
# ================================

def inside_rope(draws: Sequence[float], half_width: float) -> np.ndarray:
    """Boolean mask: -r <= v <= r."""
    values = np.asarray(draws, dtype=float)
    return (values >= -half_width) & (values <= half_width)


def classify_rope(draws: Sequence[float], half_width: float) -> np.ndarray:
    return np.where(inside_rope(draws, half_width), ROPE_LABELS[0], ROPE_LABELS[1])


def credible_interval(draws: Sequence[float], ci: float = CI_PROB) -> Tuple[float, float]:
    """Equal-tailed credible interval."""
    tail = (1.0 - ci) / 2.0
    lo, hi = np.quantile(np.asarray(draws, dtype=float), [tail, 1.0 - tail])
    return float(lo), float(hi)


def rope_fraction(draws: Sequence[float], half_width: float, ci: float = CI_PROB) -> float:
    """
    Share of the draws inside the central `ci` interval that fall in the ROPE.
    With ci=1.0 every draw counts.
    """
    values = np.asarray(draws, dtype=float)
    if values.size == 0:
        return np.nan
    if ci < 1.0:
        lo, hi = credible_interval(values, ci)
        values = values[(values >= lo) & (values <= hi)]
    return float(inside_rope(values, half_width).mean())


def probability_of_direction(draws: Sequence[float]) -> float:
    """Share of draws with the same sign as the posterior median."""
    values = np.asarray(draws, dtype=float)
    median = np.median(values)
    if median > 0:
        return float(np.mean(values > 0))
    if median < 0:
        return float(np.mean(values < 0))
    return float(max(np.mean(values > 0), np.mean(values < 0)))


def rope_decision(ci_low: float, ci_high: float, half_width: float) -> str:
    if ci_low > half_width or ci_high < -half_width:
        return "Rejected"
    if ci_low >= -half_width and ci_high <= half_width:
        return "Accepted"
    return "Undecided"


def summarize_contrast(draws: Sequence[float], half_width: float, ci: float = CI_PROB) -> Dict[str, float]:
    values = np.asarray(draws, dtype=float)
    ci_low, ci_high = credible_interval(values, ci)
    hdi_low, hdi_high = (float(v) for v in az.hdi(values, hdi_prob=ci))
    return {
        "median": float(np.median(values)),
        "mean": float(np.mean(values)),
        "ci_low": ci_low,
        "ci_high": ci_high,
        "hdi_low": hdi_low,
        "hdi_high": hdi_high,
        "probability_of_direction": probability_of_direction(values),
        "rope_percentage": rope_fraction(values, half_width, ci),
        "inside_rope_all_draws": rope_fraction(values, half_width, 1.0),
        "rope_decision": rope_decision(ci_low, ci_high, half_width),
    }


# ================================
# Model fitting with cache
# ================================

def data_fingerprint(
    response: str,
    formula: str,
    data: pd.DataFrame,
    sampler: Dict,
    priors: Dict,
    backend_name: str,
) -> str:
    """sha256 over the modeled columns and every setting that changes the posterior."""
    settings = {
        "response": response,
        "formula": formula,
        "backend": backend_name,
        "sampler": {k: v for k, v in sampler.items() if k not in CACHE_IGNORED_SAMPLER_KEYS},
        "priors": priors,
    }
    digest = hashlib.sha256()
    digest.update(json.dumps(settings, sort_keys=True, default=str).encode("utf-8"))
    digest.update(data[[response, "Genotype"]].to_csv(index=False).encode("utf-8"))
    return digest.hexdigest()


def load_or_fit(
    backend,
    response: str,
    formula: str,
    data: pd.DataFrame,
    priors: Dict,
    sampler: Dict,
    fits_dir: str,
):
    """
    Reuse a cached fit when the inputs are unchanged, otherwise fit and cache.
    Returns (fit, cache_path, from_cache).
    """
    key = data_fingerprint(response, formula, data, sampler, priors, getattr(backend, "name", type(backend).__name__))
    cache_path = os.path.join(fits_dir, f"{response}_{key[:16]}.joblib")

    if os.path.exists(cache_path):
        print(f"Loading cached fit: {cache_path}")
        return joblib.load(cache_path), cache_path, True

    print(f"Fitting {formula} ({len(data)} sections, seed={sampler.get('random_seed')})")
    fit = backend.fit(formula, data, priors, sampler)
    with atomic_output(cache_path) as tmp_path:
        joblib.dump(fit, tmp_path)
    print(f"Saved fit → {cache_path}")
    return fit, cache_path, False


def check_convergence(diagnostics: Dict[str, float], criteria: Dict[str, float], marker: str) -> None:
    problems = []
    # NaN compares False against any threshold, so it is rejected explicitly
    for key in ("max_rhat", "min_ess_bulk", "min_ess_tail"):
        if key in criteria and not np.isfinite(diagnostics[key]):
            problems.append(f"{key.replace('_', ' ')} is {diagnostics[key]}")
    if diagnostics["max_rhat"] > criteria["max_rhat"]:
        problems.append(f"max R-hat {diagnostics['max_rhat']:.3f} > {criteria['max_rhat']}")
    for key in ("min_ess_bulk", "min_ess_tail"):
        if key in criteria and diagnostics[key] < criteria[key]:
            problems.append(f"{key.replace('min_', '').replace('_', ' ')} {diagnostics[key]:.0f} < {criteria[key]}")
    if problems:
        raise FitConvergenceError(f"{marker}: model did not converge ({'; '.join(problems)})")
    if diagnostics.get("divergences", 0):
        print(f"⚠ {marker}: {diagnostics['divergences']} divergent transitions")


def ppc_ks_distance(observed: Sequence[float], replicates: np.ndarray) -> float:
    """Mean two-sample KS statistic between each replicate dataset and the observations."""
    observed = np.asarray(observed, dtype=float)
    stats = [ks_2samp(observed, np.asarray(rep, dtype=float)).statistic for rep in replicates]
    return float(np.mean(stats))


# ================================
# Figures
# ================================

def plot_ppc(observed, replicates, label: str, theme: Dict, output_path: str) -> str:
    with plot_theme_context(theme):
        fig, ax = plt.subplots(figsize=theme.get("figsize", (7, 5)))
        try:
            for rep in replicates:
                sns.kdeplot(x=np.asarray(rep, dtype=float), ax=ax,
                            color=theme.get("ppc_replicate_color", "#9ECAE1"),
                            linewidth=0.6, alpha=0.4)
            sns.kdeplot(x=np.asarray(observed, dtype=float), ax=ax,
                        color=theme.get("ppc_observed_color", "#08306B"),
                        linewidth=2.0, label="Observed")
            ax.plot([], [], color=theme.get("ppc_replicate_color", "#9ECAE1"),
                    label=f"Replicates (n={len(replicates)})")
            ax.set_title(f"{label}: posterior predictive check", fontweight="bold")
            ax.set_xlabel(f"{label} IntDen")
            ax.legend()
            save_figure(fig, output_path, dpi=theme.get("dpi", 300))
        finally:
            plt.close(fig)
    return output_path


def plot_contrast(draws, summary: Dict[str, float], rope_half_width: float, label: str,
                  plot_limits: Dict, theme: Dict, output_path: str) -> str:
    """Density of the contrast draws shaded by ROPE membership, with median and 95% CI."""
    values = np.asarray(draws, dtype=float)
    frame = pd.DataFrame({"Contrast": values, "ROPE": classify_rope(values, rope_half_width)})
    present = [lvl for lvl in ROPE_LABELS if lvl in set(frame["ROPE"])]
    colors = theme.get("rope_colors", {"Inside ROPE": "#BDBDBD", "Outside ROPE": "#2171B5"})

    with plot_theme_context(theme):
        fig, ax = plt.subplots(figsize=theme.get("figsize", (7, 5)))
        try:
            sns.histplot(data=frame, x="Contrast", hue="ROPE", hue_order=present,
                         palette=colors, stat="density", bins=plot_limits.get("bins", 80),
                         element="step", alpha=0.7, ax=ax)
            for bound in (-rope_half_width, rope_half_width):
                ax.axvline(bound, color="black", linestyle="--", linewidth=1)

            # Interval bar just below the density
            y_bar = -0.04 * ax.get_ylim()[1]
            ax.hlines(y_bar, summary["ci_low"], summary["ci_high"], color="black", linewidth=2.5)
            ax.plot(summary["median"], y_bar, "o", color="black", markersize=6)

            if plot_limits.get("xlim"):
                ax.set_xlim(*plot_limits["xlim"])
            if plot_limits.get("xbreaks"):
                ax.set_xticks(plot_limits["xbreaks"])
            ax.set_title(
                f"{label}: {GENOTYPES[1]} - {GENOTYPES[0]} "
                f"(pd = {summary['probability_of_direction']:.2f}, "
                f"{summary['rope_percentage'] * 100:.1f}% in ROPE)",
                fontweight="bold")
            ax.set_xlabel(f"Difference in {label} IntDen")
            ax.set_ylabel("Posterior density")
            save_figure(fig, output_path, dpi=theme.get("dpi", 300))
        finally:
            plt.close(fig)
    return output_path


def plot_conditional_means(data: pd.DataFrame, response: str, intercept_draws, contrast_draws,
                           label: str, plot_limits: Dict, theme: Dict, output_path: str) -> str:
    """Posterior mean per genotype (median + 95% CI) drawn over the observed sections."""
    intercept_draws = np.asarray(intercept_draws, dtype=float)
    group_draws = {
        GENOTYPES[0]: intercept_draws,
        GENOTYPES[1]: intercept_draws + np.asarray(contrast_draws, dtype=float),
    }
    palette = theme.get("palette")

    with plot_theme_context(theme):
        fig, ax = plt.subplots(figsize=theme.get("figsize", (7, 5)))
        try:
            sns.stripplot(data=data, x="Genotype", y=response, order=GENOTYPES, hue="Genotype",
                          hue_order=GENOTYPES, palette=palette, alpha=0.6, size=6,
                          edgecolor="black", linewidth=0.5, legend=False, ax=ax)
            for pos, genotype in enumerate(GENOTYPES):
                lo, hi = credible_interval(group_draws[genotype])
                ax.errorbar(pos + 0.25, np.median(group_draws[genotype]),
                            yerr=[[np.median(group_draws[genotype]) - lo], [hi - np.median(group_draws[genotype])]],
                            fmt="o", color="black", capsize=4, markersize=7)
            if plot_limits.get("ylim"):
                ax.set_ylim(*plot_limits["ylim"])
            if plot_limits.get("ybreaks"):
                ax.set_yticks(plot_limits["ybreaks"])
            ax.set_title(f"{label}: posterior genotype means", fontweight="bold")
            ax.set_ylabel(f"{label} IntDen")
            ax.set_xlabel("Genotype")
            save_figure(fig, output_path, dpi=theme.get("dpi", 300))
        finally:
            plt.close(fig)
    return output_path


# ================================
# Tables
# ================================

def contrast_table(result_values: Dict, marker: str) -> pd.DataFrame:
    return pd.DataFrame([{
        "Marker": marker,
        "Parameter": CONTRAST_TERM,
        "Median": result_values["median"],
        "Mean": result_values["mean"],
        "CI_low": result_values["ci_low"],
        "CI_high": result_values["ci_high"],
        "HDI_low": result_values["hdi_low"],
        "HDI_high": result_values["hdi_high"],
        "pd": result_values["probability_of_direction"],
        "ROPE_half_width": result_values["rope_half_width"],
        "ROPE_Percentage": result_values["rope_percentage"],
        "Inside_ROPE_all_draws": result_values["inside_rope_all_draws"],
        "ROPE_decision": result_values["rope_decision"],
        "OLS_estimate": result_values["ols_estimate"],
        "Max_Rhat": result_values["diagnostics"]["max_rhat"],
        "Min_ESS_bulk": result_values["diagnostics"]["min_ess_bulk"],
        "Divergences": result_values["diagnostics"]["divergences"],
        "PPC_KS": result_values["ppc_ks"],
    }])


def save_table(table: pd.DataFrame, base_path: str, caption: str, index: bool = False,
               formats: Sequence[str] = ("csv", "md", "tex")) -> Dict[str, str]:
    """Write one table in several formats; returns format -> path."""
    paths = {}
    if "csv" in formats:
        paths["csv"] = f"{base_path}.csv"
        with atomic_output(paths["csv"]) as tmp_path:
            table.to_csv(tmp_path, index=index)
    if "md" in formats:
        paths["md"] = write_text(f"{base_path}.md", table.to_markdown(index=index, floatfmt=".3f") + "\n")
    if "tex" in formats:
        paths["tex"] = write_text(
            f"{base_path}.tex",
            table.to_latex(index=index, float_format="%.3f", escape=True, caption=caption,
                           label=f"tab:{os.path.basename(base_path)}"))
    return paths


# ================================
# Main report procedure
# ================================

def report(
    clean_table: pd.DataFrame,
    response_column: str,
    rope_half_width: float,
    plot_limits: Optional[Dict] = None,
    backend=None,
    output_dir: str = "results",
    fits_dir: str = "results/fits",
    sampler: Optional[Dict] = None,
    priors: Optional[Dict] = None,
    criteria: Optional[Dict] = None,
    ppc_draws: int = 100,
    theme: Optional[Dict] = None,
    marker: Optional[str] = None,
) -> ContrastResult:
    """
    Fit `<response_column> ~ Genotype` on the non-Sham sections and report the
    KO25 - Ctr25 contrast against +/- rope_half_width.
    """
    if backend is None:
        backend = PymcStudentTRegression()
    plot_limits = plot_limits or {}
    sampler = {**DEFAULT_SAMPLER, **(sampler or {})}
    priors = priors or {}
    criteria = criteria or DEFAULT_CONVERGENCE_CRITERIA
    theme = theme or {}
    marker = marker or response_column.split("_")[0]
    label = plot_limits.get("label", marker)

    print(f"\n{'='*60}")
    print(f"Contrast report: {marker} ({response_column}, ROPE ±{rope_half_width})")
    print(f"{'='*60}")

    if response_column not in clean_table.columns:
        raise KeyError(f"{marker}: response column '{response_column}' not in table")
    data = model_subset(clean_table)[[response_column, "Genotype"]].reset_index(drop=True)
    missing_groups = [g for g in GENOTYPES if not (data["Genotype"] == g).any()]
    if missing_groups:
        raise ValueError(f"{marker}: no injured sections for genotype(s) {', '.join(missing_groups)}")
    print(f"Data shape: {data.shape}")

    formula = build_formula(response_column, ["Genotype"])
    fit, cache_path, from_cache = load_or_fit(backend, response_column, formula, data, priors, sampler, fits_dir)

    diagnostics = backend.diagnostics(fit)
    print(f"Max R-hat: {diagnostics['max_rhat']:.4f} | Min ESS (bulk): {diagnostics['min_ess_bulk']:.0f}")
    check_convergence(diagnostics, criteria, marker)

    os.makedirs(output_dir, exist_ok=True)
    base = os.path.join(output_dir, response_column)
    artifacts = {"fit": cache_path}

    # Posterior predictive check
    seed = sampler.get("random_seed")
    replicates = backend.posterior_predictive(fit, ppc_draws, seed)
    ppc_ks = ppc_ks_distance(data[response_column].values, replicates)
    artifacts["ppc_plot"] = plot_ppc(data[response_column].values, replicates, label, theme, f"{base}_ppc.png")
    print(f"Posterior predictive check: mean KS distance = {ppc_ks:.3f}")

    draws = backend.posterior_draws(fit, CONTRAST_TERM)
    summary = summarize_contrast(draws, rope_half_width)
    ols_estimate = float(ols_reference(formula, data)[CONTRAST_TERM])

    artifacts["contrast_plot"] = plot_contrast(draws, summary, rope_half_width, label, plot_limits,
                                               theme, f"{base}_contrast.png")
    artifacts["conditional_means_plot"] = plot_conditional_means(
        data, response_column, backend.posterior_draws(fit, INTERCEPT_TERM), draws,
        label, plot_limits, theme, f"{base}_conditional_means.png")

    values = {**summary, "rope_half_width": float(rope_half_width), "ols_estimate": ols_estimate,
              "diagnostics": diagnostics, "ppc_ks": ppc_ks}
    table = contrast_table(values, marker)
    for fmt, path in save_table(table, f"{base}_contrast_summary",
                                caption=f"{label}: posterior genotype contrast").items():
        artifacts[f"contrast_summary_{fmt}"] = path
    for fmt, path in save_table(backend.parameter_summary(fit), f"{base}_parameter_summary",
                                caption=f"{label}: posterior parameter summary",
                                index=True, formats=("md", "tex")).items():
        artifacts[f"parameter_summary_{fmt}"] = path

    print(f"\n=== {marker} contrast ({CONTRAST_TERM}) ===")
    print(table.drop(columns=["Marker", "Parameter"]).round(3).to_string(index=False))
    print(f"✅ {marker} report saved to: {output_dir}")

    return ContrastResult(
        marker=marker,
        response_column=response_column,
        formula=formula,
        draws=np.asarray(draws, dtype=float),
        rope_half_width=float(rope_half_width),
        median=summary["median"],
        mean=summary["mean"],
        ci_low=summary["ci_low"],
        ci_high=summary["ci_high"],
        hdi_low=summary["hdi_low"],
        hdi_high=summary["hdi_high"],
        probability_of_direction=summary["probability_of_direction"],
        rope_percentage=summary["rope_percentage"],
        inside_rope_all_draws=summary["inside_rope_all_draws"],
        rope_decision=summary["rope_decision"],
        ols_estimate=ols_estimate,
        diagnostics=diagnostics,
        ppc_ks=ppc_ks,
        from_cache=from_cache,
        artifacts=artifacts,
    )
