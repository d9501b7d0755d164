"""
End-to-end tests of the analysis pipeline and CLI on synthetic Wordbank data.
"""

import json

import numpy as np
import pytest

from bilingual_vocab import run_analysis
from bilingual_vocab.errors import DataFetchError
from bilingual_vocab.run_analysis import run_full_analysis, sanitize_for_json
from bilingual_vocab.statistical_analysis import LRTestResult


@pytest.fixture
def results(fake_client, fast_config):
    return run_full_analysis(loader=fake_client, config=fast_config)


def test_full_analysis_compares_both_scopes(results, fast_config):
    assert set(results['comparisons']) == {'single_language', 'pooled'}
    for comparison in results['comparisons'].values():
        assert isinstance(comparison, LRTestResult)
        assert np.isfinite(comparison.statistic)

    assert results['sample']['rows'] > 0
    assert 'Marchman_Dallas_Bilingual' not in results['sample']['datasets']
    assert len(results['predictions'][fast_config.single_language]) == 400


def test_full_analysis_writes_results_and_figures(results, fast_config):
    path = fast_config.output_dir / 'results.json'
    saved = json.loads(path.read_text())

    assert 'pairs' not in saved
    assert set(saved['comparisons']['pooled']) >= {'statistic', 'df', 'p_value'}
    assert saved['models']['single_language']['nonlinear']['nobs'] > 0
    assert len(results['figures']) == 4
    assert all((fast_config.figures_dir / name).exists() for name in (
        'pooled_by_age.png', 'english_american_by_exposure.png'))


def test_full_analysis_single_scope(fake_client, fast_config):
    results = run_full_analysis(
        loader=fake_client, config=fast_config,
        skip_visualizations=True, include_pooled=False,
    )
    assert set(results['comparisons']) == {'single_language'}
    assert 'figures' not in results


def test_sanitize_for_json_handles_numpy_and_nan():
    result = sanitize_for_json({
        'count': np.int64(3),
        'ratio': np.float64(np.nan),
        'flag': np.bool_(True),
        'raw_fit': object(),
        'values': (1, 2.5),
    })
    assert result == {'count': 3, 'ratio': None, 'flag': True, 'values': [1, 2.5]}
    json.dumps(result)


def test_main_returns_error_code_on_analysis_error(monkeypatch, tmp_path, capsys):
    def unreachable(**kwargs):
        raise DataFetchError('Could not reach Wordbank')

    monkeypatch.setattr(run_analysis, 'run_full_analysis', unreachable)
    code = run_analysis.main(['--output-dir', str(tmp_path), '--no-cache'])

    assert code == 1
    assert 'Could not reach Wordbank' in capsys.readouterr().err


def test_main_builds_config_from_flags(monkeypatch, tmp_path):
    seen = {}

    def capture(config, **kwargs):
        seen['config'] = config
        seen.update(kwargs)
        return {'comparisons': {}}

    monkeypatch.setattr(run_analysis, 'run_full_analysis', capture)
    code = run_analysis.main([
        '--output-dir', str(tmp_path), '--language', 'Spanish (Mexican)',
        '--max-iter', '50', '--skip-pooled', '--skip-visualizations',
    ])

    assert code == 0
    assert seen['config'].single_language == 'Spanish (Mexican)'
    assert seen['config'].max_iter == 50
    assert seen['config'].cache_dir == tmp_path / 'cache'
    assert seen['include_pooled'] is False
    assert seen['skip_visualizations'] is True
