"""
===============================================================================
EXPLORATORY PLOTS
===============================================================================

Author: Sailaja Kuruvada
Date: 2026
Purpose: Descriptive figures of the processed IntDen table before modeling.

Every section is shown here, Sham animals included (the Bayesian models only
use the injured animals). For each marker the IntDen values are drawn as a box
plot per Condition with Genotype as hue, with the individual sections overlaid.

The plotting theme is an explicit dictionary passed into each call, e.g.

    PLOT_THEME = {
        'style': 'whitegrid',
        'context': 'paper',
        'font_scale': 1.3,
        'palette': {'Ctr25': '#ADD8E6', 'KO25': '#00008B'},
        ...
    }

===============================================================================
REQUIRED LIBRARIES AND DEPENDENCIES
===============================================================================

- os: Output path handling
- contextlib.ExitStack: Combining the seaborn style and context managers
- matplotlib.pyplot (plt): Figure creation and closing
- seaborn (sns): Box and strip plots, scoped styling (axes_style, plotting_context)

===============================================================================
"""

import os
from contextlib import ExitStack, contextmanager
import matplotlib.pyplot as plt
import seaborn as sns

from artifact_io import save_figure
from glial_density_metrics import CONDITIONS, GENOTYPES


@contextmanager
def plot_theme_context(theme):
    """
    Apply a plotting theme for the duration of a `with` block only.

    Parameters:
    -----------
    theme : dict
        Keys 'style', 'context' and 'font_scale' (seaborn names)
    """
    with ExitStack() as stack:
        stack.enter_context(sns.axes_style(theme.get('style', 'whitegrid')))
        stack.enter_context(sns.plotting_context(theme.get('context', 'paper'),
                                                 font_scale=theme.get('font_scale', 1.0)))
        yield


def plot_marker_by_group(clean_table, response_column, marker_params, theme, output_path):
    """
    Box + strip plot of one IntDen column by Condition and Genotype.

    Parameters:
    -----------
    clean_table : pandas.DataFrame
        Processed table (all conditions)
    response_column : str
        IntDen column to plot
    marker_params : dict
        Marker configuration ('label', optional 'ylim')
    theme : dict
        Plotting theme
    output_path : str
        PNG destination

    Returns:
    --------
    str
        Path of the saved figure
    """
    palette = theme.get('palette')
    label = marker_params.get('label', response_column)

    with plot_theme_context(theme):
        fig, ax = plt.subplots(figsize=theme.get('figsize', (7, 5)))
        try:
            sns.boxplot(data=clean_table, x='Condition', y=response_column, hue='Genotype',
                        order=CONDITIONS, hue_order=GENOTYPES, palette=palette,
                        showfliers=False, ax=ax)
            sns.stripplot(data=clean_table, x='Condition', y=response_column, hue='Genotype',
                          order=CONDITIONS, hue_order=GENOTYPES, palette=palette,
                          dodge=True, edgecolor='black', linewidth=0.6, size=5,
                          legend=False, ax=ax)

            if marker_params.get('ylim'):
                ax.set_ylim(*marker_params['ylim'])
            ax.set_title(f'{label} IntDen by Condition and Genotype', fontweight='bold')
            ax.set_ylabel(f'{label} IntDen')
            ax.set_xlabel('Condition')
            ax.legend(title='Genotype')

            save_figure(fig, output_path, dpi=theme.get('dpi', 300))
        finally:
            plt.close(fig)

    print(f"Saved: {output_path}")
    return output_path


def generate_exploratory_plots(clean_table, marker_params, theme, output_folder):
    """
    One exploratory figure per marker.

    Returns:
    --------
    dict
        Marker name -> figure path
    """
    os.makedirs(output_folder, exist_ok=True)
    print(f"Creating exploratory plots ({len(clean_table)} sections)")

    paths = {}
    for marker, params in marker_params.items():
        response = params['response_column']
        paths[marker] = plot_marker_by_group(
            clean_table, response, params, theme,
            os.path.join(output_folder, f'{response}_by_Condition_Genotype.png'))
    return paths
