"""
Statistical Analysis for the Bilingual Vocabulary Study

Implements:
1. Model specifications - nonlinear vs linear exposure, single vs pooled scope
2. Paired model fitting on identical model frames
3. Likelihood-ratio comparison of the nested fits
4. Prediction grids over age x exposure proportion
"""

import warnings
from itertools import product
from typing import Dict, List, Optional, Any, Iterable, Tuple
from dataclasses import dataclass, field
import pandas as pd
import numpy as np
from scipy import stats

from .config import (
    DEFAULT_CONFIG,
    AnalysisConfig,
    MODEL_COLUMNS,
    GRID_AGES,
    GRID_EXPOSURE_MIN,
    GRID_EXPOSURE_MAX,
    GRID_EXPOSURE_POINTS,
)
from .errors import DegenerateComparisonWarning
from .gam import GAMFit, fit_gam
from .preparation import require_rows


@dataclass
class ModelSpec:
    """Mean and precision formulas of one model variant."""
    name: str
    formula: str
    precision_formula: str


@dataclass
class LRTestResult:
    """Result from a likelihood-ratio comparison of two nested fits."""
    label: str
    simpler: str
    richer: str
    statistic: float
    df: float
    p_value: float
    aic_simpler: float
    aic_richer: float
    bic_simpler: float
    bic_richer: float
    warnings: List[str] = field(default_factory=list)

    @property
    def degenerate(self) -> bool:
        return not self.df > 0

    @property
    def significant(self) -> bool:
        return bool(self.p_value < 0.05) if not np.isnan(self.p_value) else False

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([{
            'comparison': self.label,
            'LR': self.statistic,
            'df': self.df,
            'p_value': self.p_value,
            'AIC_linear': self.aic_simpler,
            'AIC_nonlinear': self.aic_richer,
            'BIC_linear': self.bic_simpler,
            'BIC_nonlinear': self.bic_richer,
        }])


@dataclass
class ModelPair:
    """Nonlinear and linear fits on one scope, with their comparison."""
    scope: str
    nonlinear: GAMFit
    linear: GAMFit
    comparison: LRTestResult
    data: pd.DataFrame


# =============================================================================
# MODEL SPECIFICATIONS
# =============================================================================

def build_model_specs(pooled: bool, config: AnalysisConfig = DEFAULT_CONFIG) -> Dict[str, ModelSpec]:
    """
    Formulas for the nonlinear and linear exposure models.

    Both variants share a monotone age spline, the age x exposure product
    and a per-child random intercept; the pooled scope adds a per-language
    random intercept. The nonlinear variant uses a monotone spline for
    exposure proportion in mean and precision, the linear variant a plain
    linear term.
    """
    spline = f'df={config.spline_df}, degree={config.spline_degree}'
    age = f'mono(age, {spline})'
    exposure_smooth = f'mono(exposure_proportion, {spline})'
    random = 'C(child_id, RandomIntercept())'
    if pooled:
        random += ' + C(language, RandomIntercept())'

    return {
        'nonlinear': ModelSpec(
            name='nonlinear',
            formula=f'prop_prod ~ {age} + {exposure_smooth} + age:exposure_proportion + {random}',
            precision_formula=f'~ {age} + {exposure_smooth}',
        ),
        'linear': ModelSpec(
            name='linear',
            formula=f'prop_prod ~ {age} + exposure_proportion + age:exposure_proportion + {random}',
            precision_formula=f'~ {age} + exposure_proportion',
        ),
    }


def model_frame(df: pd.DataFrame, columns: Iterable[str] = MODEL_COLUMNS) -> pd.DataFrame:
    """
    The rows and columns shared by every fit of a pair.

    Drops rows missing any model column and unused child levels.
    """
    frame = df[list(columns)].dropna().reset_index(drop=True)
    frame['child_id'] = frame['child_id'].astype('category').cat.remove_unused_categories()
    frame['age'] = frame['age'].astype(float)
    frame['exposure_proportion'] = frame['exposure_proportion'].astype(float)
    return frame


def select_language(df: pd.DataFrame, language: str) -> pd.DataFrame:
    subset = df[df['language'] == language].reset_index(drop=True)
    return require_rows(subset, 'select_language', f"no rows for language '{language}'")


# =============================================================================
# FITTING AND COMPARISON
# =============================================================================

def likelihood_ratio_test(simpler: GAMFit, richer: GAMFit, label: str = 'comparison') -> LRTestResult:
    """
    Likelihood-ratio test of a simpler model nested in a richer one.

    LR = 2 * (llf_richer - llf_simpler), referred to a chi-squared
    distribution with df = edf_richer - edf_simpler. With penalized and
    random-effect terms the effective df are estimates, and the richer
    model can come out with fewer of them. A non-positive df difference
    gives p = NaN and a DegenerateComparisonWarning.
    """
    statistic = 2 * (richer.llf - simpler.llf)
    df = richer.edf - simpler.edf
    messages = []

    if df > 0:
        p_value = float(stats.chi2.sf(statistic, df))
    else:
        p_value = np.nan
        message = (f"{label}: df difference {df:.3f} is not positive "
                   f"(edf {richer.name}={richer.edf:.3f}, {simpler.name}={simpler.edf:.3f}); "
                   "p-value undefined")
        messages.append(message)
        warnings.warn(message, DegenerateComparisonWarning, stacklevel=2)

    return LRTestResult(
        label=label,
        simpler=simpler.name,
        richer=richer.name,
        statistic=float(statistic),
        df=float(df),
        p_value=p_value,
        aic_simpler=simpler.aic,
        aic_richer=richer.aic,
        bic_simpler=simpler.bic,
        bic_richer=richer.bic,
        warnings=messages,
    )


def fit_model_pair(
    df: pd.DataFrame,
    scope: str,
    pooled: bool,
    config: AnalysisConfig = DEFAULT_CONFIG
) -> ModelPair:
    """
    Fit the nonlinear and linear models on one scope and compare them.

    Args:
        df: Normalized table (``prop_prod``, ``age``, ``exposure_proportion``,
            ``child_id``, ``language``)
        scope: Label for reports, e.g. the language name or 'pooled'
        pooled: Add the per-language random intercept
        config: Spline, penalty and iteration settings

    Returns:
        ModelPair with both fits and the likelihood-ratio result
    """
    data = require_rows(model_frame(df), 'model_frame', f'no complete rows for scope {scope}')
    specs = build_model_specs(pooled, config)

    fits = {}
    for key in ('nonlinear', 'linear'):
        spec = specs[key]
        print(f"  Fitting {key} model ({scope}, n={len(data):,}, "
              f"children={data['child_id'].nunique():,})...")
        fits[key] = fit_gam(
            data,
            spec.formula,
            spec.precision_formula,
            name=f'{scope} {spec.name}',
            smoothing_weight=config.smoothing_weight,
            random_effect_weight=config.random_effect_weight,
            max_iter=config.max_iter,
            variance_updates=config.variance_updates,
        )

    comparison = likelihood_ratio_test(fits['linear'], fits['nonlinear'], label=scope)
    return ModelPair(
        scope=scope,
        nonlinear=fits['nonlinear'],
        linear=fits['linear'],
        comparison=comparison,
        data=data,
    )


def run_full_statistical_analysis(
    df: pd.DataFrame,
    config: AnalysisConfig = DEFAULT_CONFIG,
    include_pooled: bool = True
) -> Dict[str, ModelPair]:
    """
    Fit the single-language pair, then the pooled multi-language pair.

    Returns:
        Dict with 'single_language' and (optionally) 'pooled' ModelPairs
    """
    results = {}

    single = select_language(df, config.single_language)
    results['single_language'] = fit_model_pair(single, config.single_language, pooled=False, config=config)

    if include_pooled:
        results['pooled'] = fit_model_pair(df, 'pooled', pooled=True, config=config)

    return results


# =============================================================================
# PREDICTION GRID
# =============================================================================

def reference_levels(data: pd.DataFrame) -> Tuple[str, str]:
    """First child and first language level of a model frame."""
    child = data['child_id'].astype('category').cat.categories[0]
    language = sorted(data['language'].unique())[0]
    return child, language


def build_prediction_grid(
    reference_child: Any,
    reference_language: Optional[str] = None,
    ages: Iterable[int] = GRID_AGES,
    n_exposure: int = GRID_EXPOSURE_POINTS,
    exposure_range: Tuple[float, float] = (GRID_EXPOSURE_MIN, GRID_EXPOSURE_MAX)
) -> pd.DataFrame:
    """
    Cross product of ages and evenly spaced exposure proportions.

    ``child_id`` (and ``language``) are fixed to a single reference level;
    ``GAMFit.predict`` zeroes random intercepts, so the grid yields the
    population-level curve.
    """
    exposures = np.linspace(exposure_range[0], exposure_range[1], n_exposure)
    grid = pd.DataFrame(
        list(product(ages, exposures)),
        columns=['age', 'exposure_proportion']
    )
    grid['age'] = grid['age'].astype(float)
    grid['child_id'] = reference_child
    grid['language'] = reference_language
    return grid


def predict_grid(fit: GAMFit, grid: pd.DataFrame) -> pd.DataFrame:
    """Grid with response-scale predictions in ``prop_prod_pred``."""
    grid = grid.copy()
    grid['prop_prod_pred'] = fit.predict(grid)
    return grid


def predict_pair(pair: ModelPair) -> pd.DataFrame:
    """Predictions of the nonlinear fit of ``pair`` over the default grid."""
    child, language = reference_levels(pair.data)
    return predict_grid(pair.nonlinear, build_prediction_grid(child, language))
