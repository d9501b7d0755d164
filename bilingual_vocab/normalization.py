"""
Item-Count Join and Production Normalization

For every instrument (language, form) in the exposure table, count the
vocabulary items in its inventory, join that count onto each row and
convert raw production counts into a proportion on the open unit interval.
"""

import warnings
from typing import List, Tuple, Protocol

import numpy as np
import pandas as pd

from .config import PROP_EPSILON_LOW, PROP_EPSILON_HIGH, VOCABULARY_ITEM_KIND
from .errors import EmptyResultError, MissingInventoryWarning
from .preparation import require_rows


class InventorySource(Protocol):
    def get_item_inventory(self, language: str, form: str) -> pd.DataFrame: ...


def distinct_instruments(df: pd.DataFrame) -> List[Tuple[str, str]]:
    """Distinct (language, form) pairs, in order of first appearance."""
    pairs = df[['language', 'form']].drop_duplicates()
    return [tuple(p) for p in pairs.itertuples(index=False, name=None)]


def count_vocabulary_items(inventory: pd.DataFrame, kind: str = VOCABULARY_ITEM_KIND) -> int:
    """Number of inventory entries whose ``item_kind`` is ``kind``."""
    if inventory.empty or 'item_kind' not in inventory.columns:
        return 0
    return int((inventory['item_kind'] == kind).sum())


def fetch_item_counts(source: InventorySource, pairs: List[Tuple[str, str]]) -> pd.DataFrame:
    """
    Word counts for each instrument.

    Returns:
        DataFrame with columns language, form, n
    """
    rows = []
    for language, form in pairs:
        inventory = source.get_item_inventory(language, form)
        n = count_vocabulary_items(inventory)
        print(f"  {language} / {form}: {n} words")
        rows.append({'language': language, 'form': form, 'n': n})
    return pd.DataFrame(rows, columns=['language', 'form', 'n'])


def attach_item_counts(df: pd.DataFrame, counts: pd.DataFrame) -> pd.DataFrame:
    """
    Left-join word counts on (language, form).

    Rows whose instrument has no positive count are dropped and reported
    with a MissingInventoryWarning.
    """
    joined = df.merge(counts, on=['language', 'form'], how='left', validate='many_to_one')
    valid = joined['n'].notna() & (joined['n'] > 0)

    n_dropped = int((~valid).sum())
    if n_dropped:
        missing = joined.loc[~valid, ['language', 'form']].drop_duplicates()
        labels = ', '.join(f'{lang} / {form}' for lang, form in missing.itertuples(index=False))
        warnings.warn(
            f"Dropped {n_dropped} rows without an item count ({labels})",
            MissingInventoryWarning,
            stacklevel=2,
        )

    joined = joined[valid].reset_index(drop=True)
    joined['n'] = joined['n'].astype(int)
    return joined


def clamp_proportion(
    values: pd.Series,
    low: float = PROP_EPSILON_LOW,
    high: float = PROP_EPSILON_HIGH
) -> pd.Series:
    """Replace exact 0 with ``low`` and exact 1 with ``high``."""
    values = values.astype(float)
    return values.mask(values == 0, low).mask(values == 1, high)


def compute_prop_prod(df: pd.DataFrame) -> pd.DataFrame:
    """Add ``prop_prod``: production over word count, clamped inside (0, 1)."""
    df = df.copy()
    df['prop_prod'] = clamp_proportion(df['production'] / df['n'])
    return df


def as_child_factor(df: pd.DataFrame) -> pd.DataFrame:
    """Cast ``child_id`` to a categorical label."""
    df = df.copy()
    df['child_id'] = df['child_id'].astype(str).astype('category')
    return df


def normalize_production(df: pd.DataFrame, source: InventorySource) -> pd.DataFrame:
    """
    Run the full item-count join and normalization stage.

    Args:
        df: Exposure table from ``prepare_exposure_table``
        source: Anything exposing ``get_item_inventory(language, form)``

    Returns:
        Joined table with ``n``, ``prop_prod`` and categorical ``child_id``
    """
    pairs = distinct_instruments(df)
    print(f"Fetching item counts for {len(pairs)} instruments")
    counts = fetch_item_counts(source, pairs)

    joined = attach_item_counts(df, counts)
    if joined.empty:
        raise EmptyResultError('attach_item_counts', 'no instrument has a word inventory')

    joined = compute_prop_prod(joined)
    in_range = np.isfinite(joined['prop_prod']) & joined['prop_prod'].between(0, 1, inclusive='neither')
    if not in_range.all():
        print(f"Dropping {int((~in_range).sum())} rows with production outside [0, n]")
    joined = require_rows(joined[in_range].reset_index(drop=True), 'compute_prop_prod')
    return as_child_factor(joined)
