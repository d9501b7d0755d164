"""
Shared fixtures: synthetic Wordbank tables and a fake client.

The synthetic data mimic two bilingual datasets (English/Spanish) plus one
monolingual dataset, with production generated from a logistic curve in
age and exposure so the models have real signal to fit.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from bilingual_vocab.config import AnalysisConfig


N_WORDS = {'English (American)': 680, 'Spanish (Mexican)': 680}


class FakeWordbank:
    """In-memory stand-in for WordbankClient."""

    def __init__(self, datasets, admins, items):
        self.datasets = datasets
        self.admins = admins
        self.items = items
        self.calls = []

    def list_datasets(self):
        self.calls.append('datasets')
        return self.datasets.copy()

    def get_administrations(self, include_demographics=True, include_exposures=True):
        self.calls.append('administrations')
        admins = self.admins.copy()
        if not include_exposures:
            admins = admins.drop(columns=['language_exposures'])
        return admins

    def get_item_inventory(self, language, form):
        self.calls.append(('items', language, form))
        return self.items.get((language, form), pd.DataFrame(columns=['item_id', 'item_kind']))


def make_inventory(n_words, n_other=20):
    kinds = ['word'] * n_words + ['gestures'] * n_other
    return pd.DataFrame({'item_id': [f'item_{i}' for i in range(len(kinds))], 'item_kind': kinds})


def make_datasets():
    return pd.DataFrame({
        'dataset_id': [1, 2, 3, 4],
        'dataset_name': ['Smith_Bilingual', 'Lopez_Bilingual', 'Marchman_Dallas_Bilingual', 'Jones_Norming'],
        'origin_name': ['Smith_Bilingual_Study', 'Lopez Bilingual', 'Marchman Dallas Bilingual', 'Jones_Monolingual_Study'],
        'language': ['English (American)', 'Spanish (Mexican)', 'English (American)', 'English (American)'],
        'form': ['WS', 'WS', 'WS', 'WS'],
    })


def make_admins(n_children=30, seed=0):
    """Administrations with nested exposures for both languages."""
    rng = np.random.default_rng(seed)
    rows = []
    admin_id = 0
    for child in range(n_children):
        english = float(rng.choice(np.linspace(5, 95, 19)))
        child_effect = rng.normal(0, 0.3)
        dataset = 'Smith_Bilingual' if child % 2 == 0 else 'Lopez_Bilingual'
        for age in rng.choice(np.arange(16, 37), size=3, replace=False):
            for language, exposure in (('English (American)', english), ('Spanish (Mexican)', 100 - english)):
                mean = expit(-9 + 0.3 * age + 0.03 * exposure + child_effect)
                prop = rng.beta(mean * 30, (1 - mean) * 30)
                admin_id += 1
                rows.append({
                    'administration_id': admin_id,
                    'data_id': admin_id,
                    'child_id': 1000 + child,
                    'age': int(age),
                    'comprehension': np.nan,
                    'production': int(round(prop * N_WORDS[language])),
                    'is_norming': False,
                    'date_of_test': '2015-01-01',
                    'dataset_name': dataset,
                    'language': language,
                    'form': 'WS',
                    'sex': 'Female' if child % 3 else 'Male',
                    'language_exposures': [
                        {'exposure_language': 'English', 'exposure_proportion': english,
                         'age_of_first_exposure': 0},
                        {'exposure_language': 'Spanish', 'exposure_proportion': 100 - english,
                         'age_of_first_exposure': None},
                    ],
                })

    # Coarse-exposure dataset that must be excluded
    for child in range(3):
        admin_id += 1
        rows.append({
            'administration_id': admin_id, 'data_id': admin_id, 'child_id': 5000 + child,
            'age': 24, 'comprehension': np.nan, 'production': 300, 'is_norming': False,
            'date_of_test': '2010-01-01', 'dataset_name': 'Marchman_Dallas_Bilingual',
            'language': 'English (American)', 'form': 'WS', 'sex': 'Male',
            'language_exposures': [{'exposure_language': 'English', 'exposure_proportion': 50.0,
                                    'age_of_first_exposure': 0}],
        })

    # Monolingual dataset without exposure records
    for child in range(3):
        admin_id += 1
        rows.append({
            'administration_id': admin_id, 'data_id': admin_id, 'child_id': 7000 + child,
            'age': 24, 'comprehension': np.nan, 'production': 300, 'is_norming': True,
            'date_of_test': '2005-01-01', 'dataset_name': 'Jones_Norming',
            'language': 'English (American)', 'form': 'WS', 'sex': 'Female',
            'language_exposures': None,
        })

    return pd.DataFrame(rows)


@pytest.fixture
def datasets():
    return make_datasets()


@pytest.fixture
def admins():
    return make_admins()


@pytest.fixture
def fake_client(datasets, admins):
    items = {(language, 'WS'): make_inventory(n) for language, n in N_WORDS.items()}
    return FakeWordbank(datasets, admins, items)


@pytest.fixture
def model_data(fake_client):
    """Normalized table ready for model fitting."""
    from bilingual_vocab.normalization import normalize_production
    from bilingual_vocab.preparation import prepare_exposure_table

    table = prepare_exposure_table(fake_client.admins, fake_client.datasets)
    return normalize_production(table, fake_client)


@pytest.fixture
def fast_config(tmp_path):
    return AnalysisConfig(
        spline_df=5,
        max_iter=1000,
        output_dir=tmp_path / 'results',
        cache_dir=None,
        use_cache=False,
    )
