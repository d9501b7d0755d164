"""
Tests for reshaping and filtering of administration records.

Tests verify that the preparation stage:
    - Selects bilingual datasets by origin-name substring
    - Explodes nested exposures into one row per exposure language
    - Keeps only exposure languages that prefix the instrument language
    - Removes the coarse-exposure dataset
    - Fails fast on empty stages
"""

import pandas as pd
import pytest

from bilingual_vocab.config import EXCLUDED_DATASETS
from bilingual_vocab.errors import EmptyResultError
from bilingual_vocab.preparation import (
    select_bilingual_datasets,
    restrict_to_datasets,
    explode_exposures,
    drop_incomplete_exposures,
    drop_unused_columns,
    match_exposure_language,
    exclude_degenerate_datasets,
    prepare_exposure_table,
)


def test_select_bilingual_datasets_by_origin_name():
    """Only the origin name containing 'Bilingual' is kept."""
    datasets = pd.DataFrame({
        'dataset_name': ['foo', 'bar'],
        'origin_name': ['Foo_Bilingual_Study', 'Bar_Monolingual_Study'],
    })
    selected = select_bilingual_datasets(datasets)
    assert len(selected) == 1
    assert selected['origin_name'].tolist() == ['Foo_Bilingual_Study']


def test_select_bilingual_datasets_is_case_sensitive():
    datasets = pd.DataFrame({
        'dataset_name': ['a', 'b', 'c'],
        'origin_name': ['a bilingual study', 'BILINGUAL', None],
    })
    assert select_bilingual_datasets(datasets).empty


def test_restrict_to_datasets(admins, datasets):
    bilingual = select_bilingual_datasets(datasets)
    restricted = restrict_to_datasets(admins, bilingual)
    assert 'Jones_Norming' not in set(restricted['dataset_name'])
    assert len(restricted) < len(admins)


def test_explode_exposures_one_row_per_entry():
    admins = pd.DataFrame({
        'child_id': [1, 2, 3],
        'language': ['English (American)'] * 3,
        'language_exposures': [
            [{'exposure_language': 'English', 'exposure_proportion': 60, 'age_of_first_exposure': 0},
             {'exposure_language': 'Spanish', 'exposure_proportion': 40, 'age_of_first_exposure': 0}],
            [],
            None,
        ],
    })
    exploded = explode_exposures(admins)

    assert 'language_exposures' not in exploded.columns
    assert len(exploded) == 4
    assert exploded.loc[exploded['child_id'] == 1, 'exposure_language'].tolist() == ['English', 'Spanish']
    assert exploded.loc[exploded['child_id'] == 2, 'exposure_language'].isna().all()
    assert exploded.loc[exploded['child_id'] == 3, 'exposure_proportion'].isna().all()


def test_explode_does_not_mutate_input():
    admins = pd.DataFrame({
        'child_id': [1],
        'language_exposures': [[{'exposure_language': 'English', 'exposure_proportion': 60}]],
    })
    explode_exposures(admins)
    assert isinstance(admins.loc[0, 'language_exposures'], list)


def test_drop_incomplete_exposures():
    df = pd.DataFrame({
        'exposure_language': ['English', None, 'Spanish'],
        'exposure_proportion': [50.0, 30.0, None],
    })
    assert drop_incomplete_exposures(df)['exposure_language'].tolist() == ['English']


def test_drop_unused_columns_ignores_absent():
    df = pd.DataFrame({'is_norming': [True], 'age': [20], 'date_of_test': ['x']})
    assert drop_unused_columns(df).columns.tolist() == ['age']


def test_match_exposure_language_prefix():
    df = pd.DataFrame({
        'language': ['English (American)', 'English (American)', 'Spanish (Mexican)', 'French (Quebecois)'],
        'exposure_language': ['English', 'Spanish', 'Spanish', 'English'],
    })
    matched = match_exposure_language(df)
    assert matched['exposure_language'].tolist() == ['English', 'Spanish']
    assert all(lang.startswith(exp) for lang, exp in zip(matched['language'], matched['exposure_language']))


def test_match_exposure_language_keeps_one_row_per_administration():
    """A duplicated exposure record does not duplicate the response row."""
    df = pd.DataFrame({
        'administration_id': [1, 1, 1, 2],
        'language': ['English (American)'] * 4,
        'exposure_language': ['English', 'English', 'Spanish', 'English'],
        'exposure_proportion': [60.0, 60.0, 40.0, 80.0],
    })
    matched = match_exposure_language(df)
    assert matched['administration_id'].tolist() == [1, 2]
    assert not matched.duplicated(['administration_id', 'exposure_language']).any()


def test_exclude_degenerate_datasets_uses_named_constant():
    df = pd.DataFrame({'dataset_name': list(EXCLUDED_DATASETS) + ['Other']})
    assert exclude_degenerate_datasets(df)['dataset_name'].tolist() == ['Other']


def test_prepare_exposure_table_invariants(admins, datasets):
    table = prepare_exposure_table(admins, datasets)

    assert not set(EXCLUDED_DATASETS) & set(table['dataset_name'])
    assert 'Jones_Norming' not in set(table['dataset_name'])
    for language, exposure in zip(table['language'], table['exposure_language']):
        assert language.startswith(exposure)
    for column in ('age_of_first_exposure', 'is_norming', 'date_of_test'):
        assert column not in table.columns
    # one matched exposure per administration
    assert not table['administration_id'].duplicated().any()


def test_prepare_exposure_table_fails_fast_without_bilingual_datasets(admins):
    datasets = pd.DataFrame({'dataset_name': ['x'], 'origin_name': ['Monolingual only']})
    with pytest.raises(EmptyResultError) as excinfo:
        prepare_exposure_table(admins, datasets)
    assert excinfo.value.stage == 'select_bilingual_datasets'


def test_prepare_exposure_table_fails_fast_when_no_language_matches(admins, datasets):
    admins = admins.copy()
    admins['language'] = 'French (Quebecois)'
    with pytest.raises(EmptyResultError, match='match_exposure_language'):
        prepare_exposure_table(admins, datasets)
