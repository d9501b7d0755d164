"""
Wordbank Client for CDI Administration Data

This module provides access to the public Wordbank database, returning
pandas DataFrames for the three tables the analysis consumes:

- Dataset catalog (``list_datasets``)
- Administrations with nested language exposures (``get_administrations``)
- Instrument item inventories (``get_item_inventory``)

Connection arguments are published by Wordbank as JSON at
``WORDBANK_DB_ARGS_URL``; they can be overridden through the
``WORDBANK_*`` environment variables or passed explicitly.

References:
- Wordbank: https://wordbank.stanford.edu/
- Frank, Braginsky, Yurovsky & Marchman (2017), Journal of Child Language
"""

import json
import urllib.request
import urllib.error
from typing import Optional, Dict, List, Any

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError

from .config import WORDBANK_DB_ARGS_URL, DEFAULT_CONFIG, AnalysisConfig
from .errors import DataFetchError
from .queries import DatasetQueries, AdministrationQueries, ItemQueries


EXPOSURE_FIELDS: List[str] = [
    'exposure_language',
    'exposure_proportion',
    'age_of_first_exposure',
]


def fetch_db_args(url: str = WORDBANK_DB_ARGS_URL, timeout: int = 30) -> Dict[str, str]:
    """Fetch the published connection arguments for the Wordbank database."""
    try:
        req = urllib.request.Request(url, headers={"User-Agent": "bilingual-vocab-research"})
        with urllib.request.urlopen(req, timeout=timeout) as response:
            payload = json.loads(response.read().decode())
    except (urllib.error.URLError, OSError) as e:
        raise DataFetchError(f"Could not reach Wordbank at {url}: {e}") from e
    except json.JSONDecodeError as e:
        raise DataFetchError(f"Malformed connection arguments from {url}: {e}") from e

    missing = [key for key in ('host', 'user', 'password', 'db') if key not in payload]
    if missing:
        raise DataFetchError(f"Connection arguments from {url} missing {missing}")
    return payload


def nest_exposures(admins: pd.DataFrame, exposures: pd.DataFrame) -> pd.DataFrame:
    """
    Attach exposure rows to their administrations as a list column.

    Args:
        admins: One row per administration, keyed by ``administration_id``
        exposures: One row per exposure entry, keyed by ``administration_id``

    Returns:
        Copy of ``admins`` with a ``language_exposures`` column holding a list
        of exposure dicts, or None for administrations without exposures
    """
    nested: Dict[Any, List[Dict[str, Any]]] = {}
    for admin_id, group in exposures.groupby('administration_id', sort=False):
        fields = group[EXPOSURE_FIELDS]
        nested[admin_id] = fields.astype(object).where(fields.notna(), None).to_dict('records')

    admins = admins.copy()
    admins['language_exposures'] = [
        nested.get(admin_id) for admin_id in admins['administration_id']
    ]
    return admins


class WordbankClient:
    """
    Client for querying the Wordbank database.

    Handles connection setup, query execution, and result formatting
    for the bilingual vocabulary analysis.
    """

    def __init__(
        self,
        db_args: Optional[Dict[str, str]] = None,
        engine: Optional[Engine] = None,
        config: AnalysisConfig = DEFAULT_CONFIG
    ):
        """
        Initialize the client.

        Args:
            db_args: Connection arguments (host, user, password, db). If None,
                they are fetched from Wordbank on first use.
            engine: Pre-built SQLAlchemy engine; takes precedence over db_args.
            config: Run configuration; its Wordbank overrides win over db_args.
        """
        self.db_args = db_args
        self.config = config
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Get or create the SQLAlchemy engine."""
        if self._engine is None:
            args = dict(self.db_args or fetch_db_args())
            args.update(self.config.wordbank_overrides())
            url = URL.create(
                'mysql+pymysql',
                username=args['user'],
                password=args['password'],
                host=args['host'],
                database=args['db'],
            )
            self._engine = create_engine(url)
            print(f"Wordbank client initialized for {args['host']}/{args['db']}")
        return self._engine

    def run_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
        """
        Execute a query and return results as DataFrame.

        Raises:
            DataFetchError: if the database is unreachable or the query fails
        """
        try:
            with self.engine.connect() as conn:
                df = pd.read_sql(text(query), conn, params=params)
        except (SQLAlchemyError, pd.errors.DatabaseError) as e:
            raise DataFetchError(f"Wordbank query failed: {e}") from e

        print(f"Query returned {len(df):,} rows")
        return df

    def list_datasets(self) -> pd.DataFrame:
        """Dataset catalog with ``origin_name``."""
        return self.run_query(DatasetQueries.datasets())

    def get_administrations(
        self,
        include_demographics: bool = True,
        include_exposures: bool = True
    ) -> pd.DataFrame:
        """
        Administration records, optionally with nested language exposures.

        Returns:
            DataFrame with one row per administration; when
            ``include_exposures`` is set, a ``language_exposures`` list column
        """
        admins = self.run_query(AdministrationQueries.administrations(include_demographics))
        if not include_exposures:
            return admins

        exposures = self.run_query(AdministrationQueries.language_exposures())
        return nest_exposures(admins, exposures)

    def get_item_inventory(self, language: str, form: str) -> pd.DataFrame:
        """Items of one instrument, with their ``item_kind``."""
        return self.run_query(ItemQueries.items(), params={'language': language, 'form': form})


def create_wordbank_client(
    db_args: Optional[Dict[str, str]] = None,
    engine: Optional[Engine] = None,
    config: AnalysisConfig = DEFAULT_CONFIG
) -> WordbankClient:
    """
    Factory function to create a configured Wordbank client.

    Args:
        db_args: Connection arguments; fetched from Wordbank when omitted
        engine: Optional pre-built engine (used by tests)
        config: Run configuration supplying connection overrides

    Returns:
        Configured WordbankClient
    """
    return WordbankClient(db_args=db_args, engine=engine, config=config)
