"""
Configuration and Constants for the Bilingual Vocabulary Analysis

This module defines:
- Dataset selection (bilingual marker, excluded datasets)
- Response clamping bounds for the beta family
- Model scopes and prediction grid ranges
- Model fitting defaults (spline basis, penalties, iteration cap)
"""

import os
from pathlib import Path
from typing import List, Dict, Optional
from dataclasses import dataclass, field


# =============================================================================
# DATASET SELECTION
# =============================================================================

# Substring of the dataset origin name that marks a bilingual study
BILINGUAL_MARKER: str = 'Bilingual'

# Datasets removed after the exposure join, with the reason for each.
# Exposure proportion in these datasets is recorded in four bins only,
# which is too coarse for a smooth exposure term.
EXCLUDED_DATASETS: Dict[str, str] = {
    'Marchman_Dallas_Bilingual': 'exposure proportion takes only 4 distinct values',
}

# Administration columns not used after reshaping
DROP_COLUMNS: List[str] = [
    'age_of_first_exposure',
    'is_norming',
    'date_of_test',
]

# Item kind counted towards the vocabulary denominator
VOCABULARY_ITEM_KIND: str = 'word'


# =============================================================================
# RESPONSE CLAMPING
# =============================================================================

# The beta density is only defined on the open unit interval
PROP_EPSILON_LOW: float = 0.001
PROP_EPSILON_HIGH: float = 0.999


# =============================================================================
# MODEL SCOPES
# =============================================================================

# Language used for the single-language model pair
SINGLE_LANGUAGE: str = 'English (American)'

MODEL_COLUMNS: List[str] = [
    'prop_prod',
    'age',
    'exposure_proportion',
    'child_id',
    'language',
]


# =============================================================================
# PREDICTION GRID
# =============================================================================

GRID_AGES: List[int] = list(range(17, 37))  # 17-36 months inclusive
GRID_EXPOSURE_MIN: float = 0.0
GRID_EXPOSURE_MAX: float = 100.0
GRID_EXPOSURE_POINTS: int = 20


# =============================================================================
# WORDBANK CONNECTION
# =============================================================================

WORDBANK_DB_ARGS_URL: str = 'http://wordbank.stanford.edu/db_args'

# Environment overrides for the fetched connection arguments
WORDBANK_ENV_VARS: Dict[str, str] = {
    'host': 'WORDBANK_HOST',
    'user': 'WORDBANK_USER',
    'password': 'WORDBANK_PASSWORD',
    'db': 'WORDBANK_DB',
}


# =============================================================================
# ANALYSIS CONFIGURATION
# =============================================================================

@dataclass
class AnalysisConfig:
    """Configuration for running the analysis."""
    # Selection
    bilingual_marker: str = BILINGUAL_MARKER
    excluded_datasets: List[str] = field(
        default_factory=lambda: list(EXCLUDED_DATASETS)
    )
    single_language: str = SINGLE_LANGUAGE

    # Spline basis
    spline_df: int = 8
    spline_degree: int = 3

    # Spline roughness weight (fixed)
    smoothing_weight: float = 10.0

    # Starting inverse variance of the random intercepts, re-estimated
    # by up to `variance_updates` updates (0 keeps it fixed)
    random_effect_weight: float = 1.0
    variance_updates: int = 20

    # Optimizer iteration cap, shared by all variance updates of one fit
    max_iter: int = 500

    # Output
    output_dir: Path = Path('results')
    cache_dir: Optional[Path] = Path('results') / 'cache'
    use_cache: bool = True

    # Wordbank connection arguments that win over fetched and env values
    wordbank_args: Dict[str, str] = field(default_factory=dict)

    def wordbank_overrides(self) -> Dict[str, str]:
        """Connection arguments from the environment, then `wordbank_args`."""
        overrides = {
            key: os.environ[var]
            for key, var in WORDBANK_ENV_VARS.items()
            if os.environ.get(var)
        }
        overrides.update(self.wordbank_args)
        return overrides

    @property
    def figures_dir(self) -> Path:
        return Path(self.output_dir) / 'figures'


DEFAULT_CONFIG = AnalysisConfig()
