"""
Reshaping and Filtering of Administration Records

Turns the raw administration table (one row per administration, nested
exposure lists) into the exposure table used for modelling: one row per
administration and exposure language, restricted to bilingual datasets and
to exposure languages matching the instrument language.

Every function returns a new DataFrame and leaves its input untouched.
"""

from typing import Iterable, List, Optional

import pandas as pd

from .config import BILINGUAL_MARKER, DROP_COLUMNS, EXCLUDED_DATASETS
from .errors import EmptyResultError
from .wordbank_client import EXPOSURE_FIELDS


def require_rows(df: pd.DataFrame, stage: str, detail: str = '') -> pd.DataFrame:
    """Raise EmptyResultError if ``df`` has no rows, else return it."""
    if df.empty:
        raise EmptyResultError(stage, detail)
    return df


def select_bilingual_datasets(
    datasets: pd.DataFrame,
    marker: str = BILINGUAL_MARKER
) -> pd.DataFrame:
    """Datasets whose origin name contains ``marker`` (case-sensitive)."""
    mask = datasets['origin_name'].str.contains(marker, regex=False, na=False)
    return datasets[mask].reset_index(drop=True)


def restrict_to_datasets(admins: pd.DataFrame, datasets: pd.DataFrame) -> pd.DataFrame:
    """Administrations belonging to one of ``datasets``."""
    mask = admins['dataset_name'].isin(datasets['dataset_name'])
    return admins[mask].reset_index(drop=True)


def explode_exposures(
    admins: pd.DataFrame,
    column: str = 'language_exposures'
) -> pd.DataFrame:
    """
    Flatten nested exposure lists into one row per exposure entry.

    Administration columns are carried onto every exposure row.
    Administrations with a missing or empty list keep a single row with
    missing exposure fields.
    """
    exploded = admins.explode(column, ignore_index=True)
    records = [entry if isinstance(entry, dict) else {} for entry in exploded[column]]
    exposures = pd.DataFrame(records, columns=EXPOSURE_FIELDS, index=exploded.index)
    return pd.concat([exploded.drop(columns=[column]), exposures], axis=1)


def drop_incomplete_exposures(df: pd.DataFrame) -> pd.DataFrame:
    """Drop rows without an exposure language or exposure proportion."""
    return df.dropna(subset=['exposure_language', 'exposure_proportion']).reset_index(drop=True)


def drop_unused_columns(df: pd.DataFrame, columns: Iterable[str] = DROP_COLUMNS) -> pd.DataFrame:
    return df.drop(columns=[c for c in columns if c in df.columns])


def match_exposure_language(df: pd.DataFrame) -> pd.DataFrame:
    """
    Keep rows whose instrument language starts with the exposure language.

    Aligns a general exposure label ("English") with regional instrument
    variants ("English (American)"). A repeated exposure record for the
    same administration and language is kept once.
    """
    mask = [
        str(language).startswith(str(exposure))
        for language, exposure in zip(df['language'], df['exposure_language'])
    ]
    matched = df[pd.Series(mask, index=df.index, dtype=bool)]
    if 'administration_id' in matched.columns:
        n_before = len(matched)
        matched = matched.drop_duplicates(['administration_id', 'exposure_language'])
        if len(matched) < n_before:
            print(f"Dropped {n_before - len(matched)} repeated exposure records")
    return matched.reset_index(drop=True)


def exclude_degenerate_datasets(
    df: pd.DataFrame,
    excluded: Optional[Iterable[str]] = None
) -> pd.DataFrame:
    """Drop datasets listed in ``EXCLUDED_DATASETS`` (or ``excluded``)."""
    excluded = list(EXCLUDED_DATASETS) if excluded is None else list(excluded)
    return df[~df['dataset_name'].isin(excluded)].reset_index(drop=True)


def prepare_exposure_table(
    admins: pd.DataFrame,
    datasets: pd.DataFrame,
    marker: str = BILINGUAL_MARKER,
    excluded: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Run the full reshape and filter stage.

    Args:
        admins: Administrations with nested ``language_exposures``
        datasets: Dataset catalog with ``origin_name``
        marker: Origin-name substring identifying bilingual datasets
        excluded: Dataset names to drop (defaults to ``EXCLUDED_DATASETS``)

    Returns:
        One row per administration and matched exposure language

    Raises:
        EmptyResultError: naming the first stage that left no rows
    """
    bilingual = require_rows(
        select_bilingual_datasets(datasets, marker),
        'select_bilingual_datasets',
        f"no dataset origin name contains '{marker}'"
    )
    print(f"Bilingual datasets: {len(bilingual)}")

    df = require_rows(restrict_to_datasets(admins, bilingual), 'restrict_to_datasets')
    print(f"Administrations in bilingual datasets: {len(df):,}")

    df = require_rows(explode_exposures(df), 'explode_exposures')
    df = require_rows(
        drop_incomplete_exposures(df),
        'drop_incomplete_exposures',
        'no administration reports an exposure language and proportion'
    )
    df = drop_unused_columns(df)
    df = require_rows(match_exposure_language(df), 'match_exposure_language')
    df = require_rows(exclude_degenerate_datasets(df, excluded), 'exclude_degenerate_datasets')

    print(f"Exposure rows after filtering: {len(df):,}")
    return df
