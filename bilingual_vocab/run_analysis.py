#!/usr/bin/env python3
"""
Main Analysis Orchestration Script

Runs the complete bilingual vocabulary analysis: fetch, reshape, normalize,
fit the model pairs, compare them and plot predictions.

Usage:
    python -m bilingual_vocab.run_analysis --output-dir results

Or from Python:
    from bilingual_vocab.run_analysis import run_full_analysis
    results = run_full_analysis()
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, Any, Optional

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, AnalysisConfig, EXCLUDED_DATASETS
from .data_loader import DataLoader
from .errors import AnalysisError
from .normalization import normalize_production
from .preparation import prepare_exposure_table
from .statistical_analysis import run_full_statistical_analysis, predict_pair
from .visualizations import create_all_figures


def run_full_analysis(
    loader: Optional[Any] = None,
    config: AnalysisConfig = DEFAULT_CONFIG,
    force_refresh: bool = False,
    skip_visualizations: bool = False,
    include_pooled: bool = True
) -> Dict[str, Any]:
    """
    Run the complete analysis pipeline.

    Args:
        loader: Source of Wordbank tables (a DataLoader or anything with the
            same three methods). Defaults to a cached DataLoader.
        config: Analysis configuration
        force_refresh: If True, re-query data even if cached
        skip_visualizations: If True, skip figure generation
        include_pooled: If False, fit only the single-language pair

    Returns:
        Dict with all analysis results
    """
    print("=" * 60)
    print("BILINGUAL VOCABULARY: EXPOSURE x AGE ANALYSIS")
    print("=" * 60)
    print(f"\nDataset marker: '{config.bilingual_marker}'")
    print(f"Excluded datasets: {config.excluded_datasets}")
    print(f"Single-language scope: {config.single_language}")
    print()

    results = {
        'config': {
            'bilingual_marker': config.bilingual_marker,
            'excluded_datasets': {
                name: EXCLUDED_DATASETS.get(name, '') for name in config.excluded_datasets
            },
            'single_language': config.single_language,
            'spline_df': config.spline_df,
            'smoothing_weight': config.smoothing_weight,
            'random_effect_weight': config.random_effect_weight,
            'variance_updates': config.variance_updates,
            'max_iter': config.max_iter,
        }
    }

    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if loader is None:
        loader = DataLoader(config=config, force_refresh=force_refresh)

    # ==========================================================================
    # STEP 1: DATASET DISCOVERY AND RECORD RETRIEVAL
    # ==========================================================================
    print("\n" + "=" * 60)
    print("STEP 1: Loading Datasets and Administrations")
    print("=" * 60)

    datasets = loader.list_datasets()
    admins = loader.get_administrations(include_demographics=True, include_exposures=True)
    print(f"Datasets: {len(datasets):,}, administrations: {len(admins):,}")

    # ==========================================================================
    # STEP 2: RESHAPE AND FILTER
    # ==========================================================================
    print("\n" + "=" * 60)
    print("STEP 2: Reshaping Exposure Records")
    print("=" * 60)

    exposure_table = prepare_exposure_table(
        admins, datasets,
        marker=config.bilingual_marker,
        excluded=config.excluded_datasets,
    )

    # ==========================================================================
    # STEP 3: ITEM COUNTS AND NORMALIZATION
    # ==========================================================================
    print("\n" + "=" * 60)
    print("STEP 3: Normalizing Production")
    print("=" * 60)

    data = normalize_production(exposure_table, loader)
    results['sample'] = summarize_sample(data)
    print_sample(results['sample'])

    # ==========================================================================
    # STEP 4: MODEL FITTING AND COMPARISON
    # ==========================================================================
    print("\n" + "=" * 60)
    print("STEP 4: Fitting Models")
    print("=" * 60)

    pairs = run_full_statistical_analysis(data, config, include_pooled=include_pooled)

    results['models'] = {}
    results['comparisons'] = {}
    for key, pair in pairs.items():
        results['models'][key] = {
            'nonlinear': pair.nonlinear.summary_dict(),
            'linear': pair.linear.summary_dict(),
        }
        results['comparisons'][key] = pair.comparison
        print_comparison(pair.comparison)

    # ==========================================================================
    # STEP 5: PREDICTIONS AND VISUALIZATIONS
    # ==========================================================================
    predictions = {pair.scope: predict_pair(pair) for pair in pairs.values()}
    results['predictions'] = {
        scope: grid[['age', 'exposure_proportion', 'prop_prod_pred']].to_dict('records')
        for scope, grid in predictions.items()
    }

    if not skip_visualizations:
        print("\n" + "=" * 60)
        print("STEP 5: Generating Visualizations")
        print("=" * 60)

        figure_paths = create_all_figures(predictions, config.figures_dir)
        print(f"\nGenerated {len(figure_paths)} figures:")
        for name, path in figure_paths.items():
            print(f"  - {name}: {path}")
        results['figures'] = {k: str(v) for k, v in figure_paths.items()}

    # ==========================================================================
    # STEP 6: SAVE RESULTS
    # ==========================================================================
    print("\n" + "=" * 60)
    print("STEP 6: Saving Results")
    print("=" * 60)

    results_path = export_results(results, output_dir / 'results.json')
    print(f"Saved results to {results_path}")

    print("\n" + "=" * 60)
    print("ANALYSIS COMPLETE")
    print("=" * 60)

    results['pairs'] = pairs
    return results


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def summarize_sample(df: pd.DataFrame) -> Dict[str, Any]:
    """Rows, children, datasets and per-language counts of the model table."""
    by_language = (
        df.groupby('language', observed=True)
        .agg(rows=('prop_prod', 'size'), children=('child_id', 'nunique'))
        .reset_index()
    )
    return {
        'rows': int(len(df)),
        'children': int(df['child_id'].nunique()),
        'datasets': sorted(df['dataset_name'].unique().tolist()),
        'age_range': [float(df['age'].min()), float(df['age'].max())],
        'by_language': by_language.to_dict('records'),
    }


def sanitize_for_json(obj: Any) -> Any:
    """Convert objects to JSON-serializable format."""
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()
                if not str(k).startswith('raw_')}
    elif isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    elif hasattr(obj, '__dataclass_fields__'):
        return {k: sanitize_for_json(getattr(obj, k)) for k in obj.__dataclass_fields__}
    elif isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    elif isinstance(obj, (int, np.integer)):
        return int(obj)
    elif isinstance(obj, (float, np.floating)):
        return None if np.isnan(obj) else float(obj)
    elif isinstance(obj, (str, type(None))):
        return obj
    elif isinstance(obj, pd.DataFrame):
        return None  # Skip DataFrames
    else:
        return str(obj)


def export_results(results: Dict[str, Any], output_path: Path) -> Path:
    output_path = Path(output_path)
    serializable = sanitize_for_json({k: v for k, v in results.items() if k != 'pairs'})
    with open(output_path, 'w') as f:
        json.dump(serializable, f, indent=2)
    return output_path


def print_sample(sample: Dict[str, Any]) -> None:
    print(f"\nModel table: {sample['rows']:,} rows, {sample['children']:,} children")
    print(f"Datasets: {', '.join(sample['datasets'])}")
    for row in sample['by_language']:
        print(f"  {row['language']}: {row['rows']:,} rows, {row['children']:,} children")


def print_comparison(comparison) -> None:
    """Print a formatted likelihood-ratio result."""
    print(f"\n  {comparison.label.upper()}: {comparison.simpler} vs {comparison.richer}")
    print(comparison.to_frame().to_string(index=False, float_format=lambda v: f'{v:.4g}'))
    for message in comparison.warnings:
        print(f"    Warning: {message}")


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Fit exposure x age GAMMs to bilingual Wordbank data'
    )
    parser.add_argument(
        '--output-dir',
        type=Path,
        default=DEFAULT_CONFIG.output_dir,
        help='Directory for results and figures (default: results)'
    )
    parser.add_argument(
        '--cache-dir',
        type=Path,
        default=None,
        help='Directory for cached Wordbank tables (default: <output-dir>/cache)'
    )
    parser.add_argument(
        '--no-cache',
        action='store_true',
        help='Do not read or write cached tables'
    )
    parser.add_argument(
        '--force-refresh',
        action='store_true',
        help='Force re-query data even if cached'
    )
    parser.add_argument(
        '--language',
        default=DEFAULT_CONFIG.single_language,
        help=f'Language of the single-language scope (default: {DEFAULT_CONFIG.single_language})'
    )
    parser.add_argument(
        '--max-iter',
        type=int,
        default=DEFAULT_CONFIG.max_iter,
        help=f'Optimizer iteration cap per model fit (default: {DEFAULT_CONFIG.max_iter})'
    )
    parser.add_argument(
        '--skip-pooled',
        action='store_true',
        help='Fit only the single-language models'
    )
    parser.add_argument(
        '--skip-visualizations',
        action='store_true',
        help='Skip generating figures'
    )

    args = parser.parse_args(argv)

    config = replace(
        DEFAULT_CONFIG,
        output_dir=args.output_dir,
        cache_dir=args.cache_dir or args.output_dir / 'cache',
        use_cache=not args.no_cache,
        single_language=args.language,
        max_iter=args.max_iter,
    )

    try:
        results = run_full_analysis(
            config=config,
            force_refresh=args.force_refresh,
            skip_visualizations=args.skip_visualizations,
            include_pooled=not args.skip_pooled,
        )
    except AnalysisError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    # Print final summary
    print("\n" + "=" * 60)
    print("LIKELIHOOD-RATIO SUMMARY")
    print("=" * 60)

    for scope, comparison in results['comparisons'].items():
        if comparison.degenerate:
            status = "UNDEFINED (non-positive df)"
        else:
            status = "NONLINEAR PREFERRED" if comparison.significant else "LINEAR ADEQUATE"
        print(f"  {scope}: {status}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
