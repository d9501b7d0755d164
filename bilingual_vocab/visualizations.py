"""
Visualization Module for the Bilingual Vocabulary Analysis

Renders the nonlinear model's predictions over the age x exposure grid.

Figure 1: Proportion produced vs age, one line per exposure level
Figure 2: Proportion produced vs exposure, one line per age
"""

from typing import Dict, Optional
from pathlib import Path
import pandas as pd

import matplotlib.pyplot as plt
import seaborn as sns


# =============================================================================
# STYLE CONFIGURATION
# =============================================================================

PALETTES = {
    'exposure': 'viridis',
    'age': 'magma',
}

FIGURE_SIZE = {
    'single': (8, 6),
    'wide': (12, 6),
}

LABELS = {
    'age': 'Age (months)',
    'exposure_proportion': 'Exposure to language (%)',
    'prop_prod_pred': 'Proportion of words produced',
}


def setup_style():
    """Set up matplotlib style for publication quality."""
    plt.style.use('seaborn-v0_8-whitegrid')
    plt.rcParams.update({
        'font.family': 'serif',
        'font.size': 11,
        'axes.titlesize': 14,
        'axes.labelsize': 12,
        'xtick.labelsize': 10,
        'ytick.labelsize': 10,
        'legend.fontsize': 9,
        'figure.titlesize': 16,
        'figure.dpi': 150,
        'savefig.dpi': 300,
        'savefig.bbox': 'tight',
    })


def _finish(fig: plt.Figure, output_path: Optional[Path]) -> plt.Figure:
    if output_path is not None:
        fig.savefig(output_path)
        print(f"Saved figure to {output_path}")
    return fig


# =============================================================================
# FIGURE 1: PRODUCTION BY AGE
# =============================================================================

def plot_by_age(
    predictions: pd.DataFrame,
    output_path: Optional[Path] = None,
    title: str = 'Predicted production by age'
) -> plt.Figure:
    """
    Proportion produced against age, one line per exposure level.

    Args:
        predictions: Output of ``predict_grid``
        output_path: Optional PNG path
        title: Axes title
    """
    setup_style()
    fig, ax = plt.subplots(figsize=FIGURE_SIZE['single'])

    sns.lineplot(
        data=predictions,
        x='age',
        y='prop_prod_pred',
        hue='exposure_proportion',
        palette=PALETTES['exposure'],
        ax=ax,
    )

    ax.set_xlabel(LABELS['age'])
    ax.set_ylabel(LABELS['prop_prod_pred'])
    ax.set_ylim(0, 1)
    ax.set_title(title)
    ax.legend(title=LABELS['exposure_proportion'], fontsize=8, ncol=2)

    return _finish(fig, output_path)


# =============================================================================
# FIGURE 2: PRODUCTION BY EXPOSURE
# =============================================================================

def plot_by_exposure(
    predictions: pd.DataFrame,
    output_path: Optional[Path] = None,
    title: str = 'Predicted production by exposure'
) -> plt.Figure:
    """Proportion produced against exposure proportion, one line per age."""
    setup_style()
    fig, ax = plt.subplots(figsize=FIGURE_SIZE['single'])

    sns.lineplot(
        data=predictions,
        x='exposure_proportion',
        y='prop_prod_pred',
        hue='age',
        palette=PALETTES['age'],
        ax=ax,
    )

    ax.set_xlabel(LABELS['exposure_proportion'])
    ax.set_ylabel(LABELS['prop_prod_pred'])
    ax.set_ylim(0, 1)
    ax.set_title(title)
    ax.legend(title=LABELS['age'], fontsize=8, ncol=2)

    return _finish(fig, output_path)


# =============================================================================
# EXPORT FUNCTIONS
# =============================================================================

def create_all_figures(
    predictions: Dict[str, pd.DataFrame],
    output_dir: Path
) -> Dict[str, Path]:
    """
    Create both views for every scope.

    Args:
        predictions: Dict mapping scope name to a predicted grid
        output_dir: Directory to save figures

    Returns:
        Dict mapping figure name to output path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    figures = {}
    for scope, grid in predictions.items():
        slug = scope.lower().replace(' ', '_').replace('(', '').replace(')', '')

        path = output_dir / f'{slug}_by_age.png'
        fig = plot_by_age(grid, path, title=f'{scope}: production by age')
        plt.close(fig)
        figures[f'{scope} by age'] = path

        path = output_dir / f'{slug}_by_exposure.png'
        fig = plot_by_exposure(grid, path, title=f'{scope}: production by exposure')
        plt.close(fig)
        figures[f'{scope} by exposure'] = path

    return figures
