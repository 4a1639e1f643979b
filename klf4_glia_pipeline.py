"""
===============================================================================
KLF4 GLIAL REACTIVITY PIPELINE (GFAP / PDGFRβ)
===============================================================================

Author: Sailaja Kuruvada
Date: 2026
Purpose: Astrocyte (GFAP) and pericyte (PDGFRβ) immunoreactivity in wild-type
(Ctr25) and KLF4-knockout (KO25) mice after ischemic injury (MCAO) and Sham.

Pipeline:
1. Build the processed IntDen table from the segmentation export and save it
2. Exploratory plots over every section (Sham included)
3. For each marker, on its own copy of the table: robust Bayesian regression
   of IntDen on Genotype (MCAO sections), convergence and posterior predictive
   checks, ROPE report, figures and tables

A failure while building the table stops the run. A failing marker is reported
and the remaining marker still runs; the process exits with status 1 if any
marker failed.

Usage:
------
python klf4_glia_pipeline.py

===============================================================================
CONFIGURATION
===============================================================================

RAW_MEASUREMENTS_CSV: segmentation export (one row per image)
PROCESSED_CSV: versioned processed table
RESULTS_DIR / FITS_DIR: figures + tables / cached model fits
SAMPLER_SETTINGS: 4 chains, 2500 warm-up + 2500 draws, target_accept 0.99,
                  max_treedepth 15, seed 8807
MARKER_PARAMS: response column, ROPE half-width (PDGFRβ 75, GFAP 144), axes

===============================================================================
"""

import os
import sys

from glial_density_metrics import build_from_csv
from exploratory_plots import generate_exploratory_plots
from bayesian_contrast_reporter import DEFAULT_CONVERGENCE_CRITERIA, report
from robust_regression_backend import DEFAULT_PRIORS, DEFAULT_SAMPLER

# ===============================================================================
# CONSTANTS AND CONFIGURATION
# ===============================================================================

# --- Paths ---
RAW_MEASUREMENTS_CSV = os.path.join("data", "raw", "Klf4_Gfap_Pdgfrb_Measurements.csv")
PROCESSED_CSV = os.path.join("data", "processed", "Klf4_Gfap_Pdgfrb_IntDen_v1.csv")
RESULTS_DIR = "results"
FITS_DIR = os.path.join(RESULTS_DIR, "fits")

# --- Sampling ---
SAMPLER_SETTINGS = dict(DEFAULT_SAMPLER)
PRIOR_SETTINGS = dict(DEFAULT_PRIORS)
CONVERGENCE_CRITERIA = dict(DEFAULT_CONVERGENCE_CRITERIA)
PPC_DRAWS = 100

# --- Shared plotting theme (passed explicitly to every figure) ---
PLOT_THEME = {
    'style': 'whitegrid',
    'context': 'paper',
    'font_scale': 1.3,
    'figsize': (7, 5),
    'dpi': 300,
    'palette': {'Ctr25': '#ADD8E6', 'KO25': '#00008B'},
    'rope_colors': {'Inside ROPE': '#BDBDBD', 'Outside ROPE': '#2171B5'},
    'ppc_replicate_color': '#9ECAE1',
    'ppc_observed_color': '#08306B',
}

# --- Marker-specific parameters (tweak as needed!) ---
MARKER_PARAMS = {
    'PDGFRb': {
        'response_column': 'Pdgfrb_IntDen',
        'rope_half_width': 75,
        'label': 'PDGFRβ',
        'xlim': (-300, 300),
        'xbreaks': [-300, -150, -75, 0, 75, 150, 300],
        'ylim': None,
    },
    'GFAP': {
        'response_column': 'Gfap_IntDen',
        'rope_half_width': 144,
        'label': 'GFAP',
        'xlim': (-600, 600),
        'xbreaks': [-600, -300, -144, 0, 144, 300, 600],
        'ylim': None,
    },
}


# ===============================================================================
# PIPELINE
# ===============================================================================

def run_marker(clean_table, marker, params, backend, results_dir, fits_dir,
               sampler=SAMPLER_SETTINGS, priors=PRIOR_SETTINGS,
               criteria=CONVERGENCE_CRITERIA, ppc_draws=PPC_DRAWS, theme=PLOT_THEME):
    """
    Run one marker's contrast report and return a status dictionary.

    Returns:
    --------
    dict
        {'marker', 'success': True, 'result'} or {'marker', 'success': False, 'error'}
    """
    try:
        result = report(
            clean_table,
            params['response_column'],
            params['rope_half_width'],
            plot_limits=params,
            backend=backend,
            output_dir=results_dir,
            fits_dir=fits_dir,
            sampler=sampler,
            priors=priors,
            criteria=criteria,
            ppc_draws=ppc_draws,
            theme=theme,
            marker=marker,
        )
        return {'marker': marker, 'success': True, 'result': result}
    except Exception as e:
        print(f"❌ {marker} ({params['response_column']}) failed: {type(e).__name__}: {e}")
        return {'marker': marker, 'success': False, 'error': e}


def run_pipeline(raw_csv=RAW_MEASUREMENTS_CSV, processed_csv=PROCESSED_CSV,
                 results_dir=RESULTS_DIR, fits_dir=FITS_DIR, backend=None,
                 markers=MARKER_PARAMS, sampler=SAMPLER_SETTINGS, priors=PRIOR_SETTINGS,
                 criteria=CONVERGENCE_CRITERIA, ppc_draws=PPC_DRAWS, theme=PLOT_THEME):
    """
    Execute the complete analysis.

    Errors from the table build (missing input, unparseable filenames,
    unexpected groups, zero intensities) propagate and stop the run.

    Returns:
    --------
    dict
        Marker name -> status dictionary from run_marker
    """
    print("=" * 80)
    print("KLF4 GLIAL REACTIVITY PIPELINE")
    print("=" * 80)
    print(f"📁 Input file: {raw_csv}")
    print(f"📂 Output directory: {results_dir}")

    clean = build_from_csv(raw_csv, processed_csv)

    generate_exploratory_plots(clean, markers, theme, os.path.join(results_dir, "exploratory"))

    outcomes = {}
    for marker, params in markers.items():
        outcomes[marker] = run_marker(clean.copy(), marker, params, backend, results_dir, fits_dir,
                                      sampler=sampler, priors=priors, criteria=criteria,
                                      ppc_draws=ppc_draws, theme=theme)

    print(f"\n{'='*60}")
    print("Summary across markers:")
    for marker, outcome in outcomes.items():
        if outcome['success']:
            res = outcome['result']
            print(f"- {marker}: median {res.median:.2f} "
                  f"[{res.ci_low:.2f}, {res.ci_high:.2f}], pd = {res.probability_of_direction:.3f}, "
                  f"{res.rope_percentage * 100:.1f}% in ROPE ±{res.rope_half_width:g} ({res.rope_decision})")
        else:
            print(f"- {marker}: Error - {outcome['error']}")
    print(f"{'='*60}")
    return outcomes


def main():
    outcomes = run_pipeline()
    failed = [marker for marker, outcome in outcomes.items() if not outcome['success']]
    if failed:
        print(f"Markers with errors: {', '.join(failed)}")
        return 1
    print("🎉 Analysis completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
