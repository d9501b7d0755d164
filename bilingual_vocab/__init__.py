"""
Bilingual Vocabulary Analysis Package

Fits beta-family additive mixed models to Wordbank CDI data from bilingual
studies, asking how vocabulary production relates, nonlinearly, to age and
to the proportion of exposure to a language.

Modules:
- config: Constants, excluded datasets, model and grid settings
- errors: Exceptions and warning categories
- queries: SQL for the Wordbank database
- wordbank_client: Wordbank database access
- data_loader: Cached loading of Wordbank tables
- preparation: Reshaping and filtering of exposure records
- normalization: Item-count join and production proportions
- gam: Penalized beta GAMMs (monotone splines, random intercepts)
- statistical_analysis: Model pairs, likelihood-ratio tests, prediction grids
- visualizations: Prediction plots
- run_analysis: Main orchestration script
"""

from .config import (
    BILINGUAL_MARKER,
    EXCLUDED_DATASETS,
    PROP_EPSILON_LOW,
    PROP_EPSILON_HIGH,
    AnalysisConfig,
    DEFAULT_CONFIG,
)

from .errors import (
    AnalysisError,
    DataFetchError,
    EmptyResultError,
    MissingInventoryWarning,
    NonConvergenceWarning,
    DegenerateComparisonWarning,
)

from .wordbank_client import WordbankClient, create_wordbank_client
from .data_loader import DataLoader

from .preparation import prepare_exposure_table, select_bilingual_datasets
from .normalization import normalize_production

from .gam import GAMFit, fit_gam

from .statistical_analysis import (
    ModelPair,
    LRTestResult,
    fit_model_pair,
    likelihood_ratio_test,
    build_prediction_grid,
    predict_grid,
    run_full_statistical_analysis,
)

from .visualizations import plot_by_age, plot_by_exposure, create_all_figures

from .run_analysis import run_full_analysis

__version__ = "0.1.0"

__all__ = [
    # Config
    'BILINGUAL_MARKER',
    'EXCLUDED_DATASETS',
    'PROP_EPSILON_LOW',
    'PROP_EPSILON_HIGH',
    'AnalysisConfig',
    'DEFAULT_CONFIG',
    # Errors
    'AnalysisError',
    'DataFetchError',
    'EmptyResultError',
    'MissingInventoryWarning',
    'NonConvergenceWarning',
    'DegenerateComparisonWarning',
    # Data access
    'WordbankClient',
    'create_wordbank_client',
    'DataLoader',
    # Preparation
    'prepare_exposure_table',
    'select_bilingual_datasets',
    'normalize_production',
    # Models
    'GAMFit',
    'fit_gam',
    'ModelPair',
    'LRTestResult',
    'fit_model_pair',
    'likelihood_ratio_test',
    'build_prediction_grid',
    'predict_grid',
    'run_full_statistical_analysis',
    # Visualizations
    'plot_by_age',
    'plot_by_exposure',
    'create_all_figures',
    # Main
    'run_full_analysis',
]
