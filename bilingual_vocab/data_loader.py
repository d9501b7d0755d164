"""
Cached Loading of Wordbank Tables

Wraps a Wordbank client so repeated runs of the analysis read the
catalog, administrations and item inventories from a local cache instead
of re-querying the database. Cache files are JSON lines, which keep the
nested ``language_exposures`` lists intact.
"""

import re
from pathlib import Path
from typing import Optional, Callable

import pandas as pd

from .config import AnalysisConfig, DEFAULT_CONFIG
from .wordbank_client import WordbankClient, create_wordbank_client


class DataLoader:
    """Loads Wordbank tables with caching support."""

    def __init__(
        self,
        client: Optional[WordbankClient] = None,
        cache_dir: Optional[Path] = None,
        config: AnalysisConfig = DEFAULT_CONFIG,
        force_refresh: bool = False
    ):
        self.client = client
        self.config = config
        self.force_refresh = force_refresh
        self.cache_dir = cache_dir if cache_dir is not None else config.cache_dir
        if self.cache_dir is not None and config.use_cache:
            self.cache_dir = Path(self.cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        else:
            self.cache_dir = None

    def _get_client(self) -> WordbankClient:
        """Get or create the Wordbank client."""
        if self.client is None:
            self.client = create_wordbank_client(config=self.config)
        return self.client

    def _cache_path(self, name: str) -> Optional[Path]:
        """Get cache file path for a table."""
        if self.cache_dir is None:
            return None
        slug = re.sub(r'[^A-Za-z0-9]+', '_', name).strip('_').lower()
        return self.cache_dir / f'{slug}.jsonl'

    def _load(self, name: str, fetch: Callable[[], pd.DataFrame]) -> pd.DataFrame:
        """Load a table, using cache if available."""
        cache_path = self._cache_path(name)

        if cache_path is not None and not self.force_refresh and cache_path.exists():
            print(f"Loading cached {name}")
            return pd.read_json(cache_path, orient='records', lines=True, convert_dates=False)

        print(f"Querying {name}...")
        df = fetch()

        if cache_path is not None and not df.empty:
            df.to_json(cache_path, orient='records', lines=True, date_format='iso')
            print(f"Cached to {cache_path}")

        return df

    def list_datasets(self) -> pd.DataFrame:
        return self._load('datasets', lambda: self._get_client().list_datasets())

    def get_administrations(
        self,
        include_demographics: bool = True,
        include_exposures: bool = True
    ) -> pd.DataFrame:
        name = 'administrations'
        if include_demographics:
            name += ' demographics'
        if include_exposures:
            name += ' exposures'
        return self._load(
            name,
            lambda: self._get_client().get_administrations(
                include_demographics=include_demographics,
                include_exposures=include_exposures,
            )
        )

    def get_item_inventory(self, language: str, form: str) -> pd.DataFrame:
        return self._load(
            f'items {language} {form}',
            lambda: self._get_client().get_item_inventory(language, form)
        )
