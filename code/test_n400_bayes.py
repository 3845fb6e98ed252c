#!/usr/bin/env python3
"""
Unit tests for the N400 data handling, summaries and model construction.

Tests cover:
1. Contrast coding
2. Reading and simulating data
3. Descriptive summaries
4. Priors, formulas and the PyMC model
5. Fit caching, convergence checks and predictive checks
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')

import arviz as az
import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent))

from n400_bayes import (
    CONTRASTS,
    Convergence,
    ModelSpec,
    Prior,
    add_contrast,
    build_model,
    check_convergence,
    condition_summary,
    contrast_code,
    default_priors,
    describe_data,
    effect_summary,
    erp_summary,
    full_model_spec,
    grouped_predictive_check,
    load_or_fit,
    null_model_spec,
    observed_stats,
    plot_distributions,
    plot_erp,
    plot_predictive_stats,
    predictive_stats,
    read_data,
    sample_prior_predictive,
    simulate_data,
    summarize,
    time_columns,
    validate_priors,
)


@pytest.fixture(scope='module')
def small_data():
    return add_contrast(simulate_data(n_subjects=6, n_items=8, times=(-100, 0, 300, 400, 500, 600), seed=1))


class TestContrastCoding:
    """Test the Related / Unrelated contrast."""

    def test_known_labels(self):
        assert contrast_code('Related') == -0.5
        assert contrast_code('Unrelated') == 0.5

    def test_codes_are_centered(self):
        assert sum(CONTRASTS.values()) == 0.0

    def test_deterministic(self):
        assert [contrast_code('Unrelated') for _ in range(3)] == [0.5, 0.5, 0.5]

    @pytest.mark.parametrize('label', ['related', 'Neutral', '', None])
    def test_unknown_label_raises(self, label):
        with pytest.raises(ValueError, match='Unknown condition label'):
            contrast_code(label)

    def test_add_contrast_column(self):
        data = pd.DataFrame({'condition': ['Related', 'Unrelated', 'Related']})
        coded = add_contrast(data)
        assert coded['c_cond'].tolist() == [-0.5, 0.5, -0.5]
        assert 'c_cond' not in data.columns

    def test_add_contrast_categorical(self):
        data = pd.DataFrame({'condition': pd.Categorical(['Unrelated', 'Related'])})
        assert add_contrast(data)['c_cond'].tolist() == [0.5, -0.5]

    def test_add_contrast_reports_unknown_labels(self):
        data = pd.DataFrame({'condition': ['Related', 'Filler', 'Unrelated', 'Odd']})
        with pytest.raises(ValueError, match=r"\['Filler', 'Odd'\]"):
            add_contrast(data)


class TestData:
    """Test reading and simulating trial-level data."""

    def test_read_csv(self, tmp_path):
        path = tmp_path / 'eeg.csv'
        simulate_data(n_subjects=3, n_items=4).to_csv(path, index=False)
        data = read_data(path)
        assert len(data) == 12
        for col in ['subj', 'item', 'condition']:
            assert isinstance(data[col].dtype, pd.CategoricalDtype)

    def test_read_tsv_infers_separator(self, tmp_path):
        path = tmp_path / 'eeg.tsv'
        simulate_data(n_subjects=2, n_items=4).to_csv(path, sep='\t', index=False)
        data = read_data(path)
        assert len(data) == 8
        assert 'n400' in data.columns

    def test_missing_column_raises(self, tmp_path):
        path = tmp_path / 'eeg.csv'
        simulate_data(n_subjects=2, n_items=2).drop(columns='n400').to_csv(path, index=False)
        with pytest.raises(KeyError, match='n400'):
            read_data(path)

    def test_read_with_display(self, tmp_path, capsys):
        path = tmp_path / 'eeg.csv'
        simulate_data(n_subjects=3, n_items=4, times=(300, 400)).to_csv(path, index=False)
        read_data(path, display=True)
        out = capsys.readouterr().out
        assert 'Trials: 12' in out
        assert 'Subjects: 3' in out
        assert 'Time points: 2' in out
        assert "Conditions: ['Related', 'Unrelated']" in out

    def test_describe_simulated_data(self, capsys):
        describe_data(simulate_data(n_subjects=2, n_items=4, times=(300, 400, 500)))
        out = capsys.readouterr().out
        assert 'Items: 4' in out
        assert 'Time points: 3' in out
        assert 'Data sample:' in out

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_data(tmp_path / 'nothing.csv')

    def test_simulated_design_is_balanced(self):
        data = simulate_data(n_subjects=4, n_items=6)
        assert len(data) == 24
        counts = data.groupby(['subj', 'condition'], observed=True).size()
        assert (counts == 3).all()

    def test_simulated_n400_is_window_mean(self):
        data = simulate_data(n_subjects=2, n_items=2, times=(0, 300, 400, 500, 600))
        window = data[['time_300', 'time_400', 'time_500']].mean(axis=1)
        assert np.allclose(data['n400'], window)

    def test_simulation_is_reproducible(self):
        pd.testing.assert_frame_equal(simulate_data(3, 4, seed=7), simulate_data(3, 4, seed=7))

    def test_time_columns_sorted_by_time(self):
        data = pd.DataFrame(columns=['time_100', 'time_-50', 'n400', 'time_0'])
        assert time_columns(data) == ['time_-50', 'time_0', 'time_100']


class TestSummaries:
    """Test grouped means and confidence intervals."""

    def test_group_means(self):
        data = pd.DataFrame({'g': ['a', 'a', 'a', 'b', 'b'], 'y': [1.0, 2.0, 3.0, 10.0, 20.0]})
        summary = summarize(data, 'g', 'y').set_index('g')
        assert summary.loc['a', 'mean'] == pytest.approx(2.0)
        assert summary.loc['b', 'mean'] == pytest.approx(15.0)
        assert summary.loc['a', 'n'] == 3
        assert summary.loc['a', 'sd'] == pytest.approx(1.0)

    def test_interval_contains_mean(self):
        data = pd.DataFrame({'g': ['a'] * 5, 'y': [1.0, 4.0, 2.0, 8.0, 5.0]})
        row = summarize(data, 'g', 'y').iloc[0]
        assert row['ci_lower'] < row['mean'] < row['ci_upper']

    def test_interval_narrows_with_sample_size(self):
        data = pd.DataFrame({
            'g': ['small'] * 10 + ['large'] * 100,
            'y': [1.0, 3.0] * 5 + [1.0, 3.0] * 50,
        })
        summary = summarize(data, 'g', 'y').set_index('g')
        width = summary['ci_upper'] - summary['ci_lower']
        assert width['large'] < width['small']

    def test_single_observation_has_undefined_interval(self):
        data = pd.DataFrame({'g': ['a'], 'y': [1.0]})
        row = summarize(data, 'g', 'y').iloc[0]
        assert row['mean'] == 1.0
        assert np.isnan(row['ci_lower']) and np.isnan(row['ci_upper'])

    def test_condition_summary_averages_subjects_first(self):
        data = pd.DataFrame({
            'subj': [1, 1, 1, 2],
            'condition': ['Related'] * 4,
            'n400': [0.0, 0.0, 0.0, 10.0],
        })
        row = condition_summary(data).iloc[0]
        assert row['n'] == 2
        assert row['mean'] == pytest.approx(5.0)

    def test_erp_summary_shape(self, small_data):
        erp = erp_summary(small_data)
        assert len(erp) == 6 * 2
        assert sorted(erp['time'].unique()) == [-100, 0, 300, 400, 500, 600]
        assert (erp['n'] == 6).all()

    def test_erp_summary_requires_time_columns(self):
        data = pd.DataFrame({'subj': [1], 'condition': ['Related'], 'n400': [1.0]})
        with pytest.raises(ValueError, match='time_'):
            erp_summary(data)


class TestPriorsAndFormulas:
    """Test prior validation and formula assembly."""

    def test_default_prior_classes(self):
        assert set(default_priors()) == {'Intercept', 'b', 'sd', 'cor', 'sigma'}

    def test_full_formula(self):
        assert full_model_spec().formula == 'n400 ~ 1 + c_cond + (1 + c_cond | subj) + (1 + c_cond | item)'

    def test_null_formula(self):
        assert null_model_spec().formula == 'n400 ~ 1 + (1 + c_cond | subj) + (1 + c_cond | item)'

    def test_intercept_only_formula(self):
        spec = ModelSpec('ri', random={'subj': ()})
        assert spec.formula == 'n400 ~ 1 + c_cond + (1 | subj)'
        assert spec.columns == ['n400', 'c_cond', 'subj']

    def test_override_keeps_other_defaults(self):
        priors = validate_priors({'b': Prior('normal', mu=0, sigma=5)})
        assert priors['b'] == Prior('normal', mu=0, sigma=5)
        assert priors['sigma'] == default_priors()['sigma']

    def test_prior_repr(self):
        assert repr(Prior('normal', mu=0, sigma=10)) == 'normal(mu=0, sigma=10)'

    @pytest.mark.parametrize('priors', [
        {'beta': Prior('normal', mu=0, sigma=1)},
        {'b': Prior('gumbel', mu=0, beta=1)},
        {'cor': Prior('normal', mu=0, sigma=1)},
        {'sigma': Prior('normal', mu=0, sigma=1)},
        {'sd': Prior('student_t', nu=3, mu=0, sigma=1)},
    ])
    def test_invalid_priors_raise(self, priors):
        with pytest.raises(ValueError):
            validate_priors(priors)


class TestModel:
    """Test the PyMC model built from a ModelSpec."""

    def test_free_variables(self, small_data):
        model = build_model(full_model_spec(), small_data)
        names = {rv.name for rv in model.free_RVs}
        assert names == {'Intercept', 'b', 'z_subj', 'chol_subj', 'z_item', 'chol_item', 'sigma'}

    def test_null_model_has_no_slope(self, small_data):
        model = build_model(null_model_spec(), small_data)
        assert 'b' not in model.named_vars
        assert 'fixed' not in model.coords

    def test_random_intercept_only(self, small_data):
        model = build_model(ModelSpec('ri', random={'subj': ()}), small_data)
        names = {rv.name for rv in model.free_RVs}
        assert 'sd_subj' in names
        assert len(model.coords['subj_level']) == 6
        assert list(model.coords['subj_term']) == ['Intercept']

    def test_missing_contrast_column_raises(self):
        data = simulate_data(n_subjects=2, n_items=2)
        with pytest.raises(KeyError, match='c_cond'):
            build_model(full_model_spec(), data)

    def test_prior_predictive_shapes(self, small_data):
        model = build_model(full_model_spec(), small_data)
        idata = sample_prior_predictive(model, draws=50, seed=3)
        assert idata.prior_predictive['n400'].shape == (1, 50, len(small_data))
        assert (idata.prior['sigma'].values > 0).all()

        stats = predictive_stats(idata)
        assert list(stats.columns) == ['mean', 'sd', 'min', 'max']
        assert len(stats) == 50
        assert (stats['min'] <= stats['max']).all()


class TestCaching:
    """Test that cached fits are loaded instead of recomputed."""

    def _idata(self):
        rng = np.random.default_rng(0)
        return az.from_dict(posterior={'Intercept': rng.normal(size=(2, 100))})

    def test_second_call_loads_cache(self, tmp_path):
        calls = []

        def fit():
            calls.append(1)
            return self._idata()

        path = tmp_path / 'fits' / 'fit_full.nc'
        first = load_or_fit(path, fit)
        second = load_or_fit(path, fit)
        assert len(calls) == 1
        assert path.exists()
        np.testing.assert_array_equal(first.posterior['Intercept'].values,
                                      second.posterior['Intercept'].values)

    def test_refit_recomputes(self, tmp_path):
        calls = []

        def fit():
            calls.append(1)
            return self._idata()

        path = tmp_path / 'fit_full.nc'
        load_or_fit(path, fit)
        load_or_fit(path, fit, refit=True)
        assert len(calls) == 2


class TestDiagnostics:
    """Test convergence checks and posterior summaries."""

    def test_well_mixed_chains(self):
        rng = np.random.default_rng(1)
        idata = az.from_dict(
            posterior={'Intercept': rng.normal(size=(4, 1000))},
            sample_stats={'diverging': np.zeros((4, 1000), dtype=bool)},
        )
        result = check_convergence(idata, display=False)
        assert result.rhat_max < 1.01
        assert result.ess_min > 400
        assert result.divergences == 0
        assert result.ok

    def test_stuck_chains_flagged(self):
        rng = np.random.default_rng(2)
        draws = rng.normal(size=(4, 500)) + np.arange(4)[:, None] * 5
        diverging = np.zeros((4, 500), dtype=bool)
        diverging[0, :3] = True
        idata = az.from_dict(posterior={'Intercept': draws}, sample_stats={'diverging': diverging})
        result = check_convergence(idata, display=False)
        assert result.rhat_max > 1.01
        assert result.divergences == 3
        assert not result.ok

    def test_effect_summary_rows(self):
        rng = np.random.default_rng(3)
        idata = az.from_dict(
            posterior={'b': rng.normal(-2.0, 0.5, size=(2, 500, 1)), 'sigma': rng.gamma(5.0, size=(2, 500))},
            coords={'fixed': ['c_cond']},
            dims={'b': ['fixed']},
        )
        table = effect_summary(idata, var_names=('b', 'sigma', 'not_there'))
        assert list(table.index) == ['b[c_cond]', 'sigma']
        assert table.loc['b[c_cond]', 'Mean'] == pytest.approx(-2.0, abs=0.1)
        assert table.loc['b[c_cond]', 'P(<0)'] > 0.99
        assert table.loc['sigma', 'P(<0)'] == 0.0

    def test_effect_summary_matrix_parameter(self):
        rng = np.random.default_rng(4)
        draws = rng.normal(size=(2, 200, 3, 2))
        draws[..., 1] -= 5.0
        idata = az.from_dict(
            posterior={'r_subj': draws},
            coords={'subj': [1, 2, 3], 'subj_term': ['Intercept', 'c_cond']},
            dims={'r_subj': ['subj', 'subj_term']},
        )
        table = effect_summary(idata, var_names=('r_subj',))
        assert len(table) == 6
        assert list(table.index[:2]) == ['r_subj[1, Intercept]', 'r_subj[1, c_cond]']
        assert table.loc['r_subj[3, c_cond]', 'Mean'] == pytest.approx(-5.0, abs=0.3)

    def test_convergence_record(self):
        result = Convergence(rhat_max=1.002, ess_min=950.0, divergences=0)
        assert result.ok
        assert result == Convergence(1.002, 950.0, 0)
        assert not Convergence(1.002, 950.0, divergences=2).ok
        assert repr(result) == 'Convergence(rhat_max=1.002, ess_min=950.0, divergences=0)'


class TestPredictiveChecks:
    """Test grouped posterior predictive statistics."""

    def _data(self):
        return pd.DataFrame({
            'condition': ['Related', 'Unrelated'] * 5,
            'n400': np.arange(10, dtype=float),
        })

    def test_exact_replicates(self):
        data = self._data()
        reps = np.broadcast_to(data['n400'].to_numpy(), (1, 20, 10)).copy()
        idata = az.from_dict(posterior_predictive={'n400': reps})
        check = grouped_predictive_check(idata, data, stat='mean').set_index('condition')
        assert check.loc['Related', 'observed'] == pytest.approx(4.0)
        assert check.loc['Unrelated', 'observed'] == pytest.approx(5.0)
        assert (check['rep_mean'] == check['observed']).all()
        assert (check['p_value'] == 1.0).all()

    def test_shifted_replicates(self):
        data = self._data()
        reps = np.broadcast_to(data['n400'].to_numpy() - 100.0, (2, 10, 10)).copy()
        idata = az.from_dict(posterior_predictive={'n400': reps})
        check = grouped_predictive_check(idata, data, stat='mean')
        assert (check['p_value'] == 0.0).all()

    def test_observed_stats(self):
        stats = observed_stats(self._data())
        assert stats['mean'] == pytest.approx(4.5)
        assert stats['min'] == 0.0 and stats['max'] == 9.0


class TestPlots:
    """Smoke tests: figures are written to the output directory."""

    def test_descriptive_plots(self, small_data, tmp_path):
        plot_distributions(small_data, tmp_path)
        plot_erp(erp_summary(small_data), tmp_path)
        assert (tmp_path / 'n400_distributions.png').exists()
        assert (tmp_path / 'erp.png').exists()

    def test_predictive_stats_plot(self, tmp_path):
        sim = pd.DataFrame({'mean': np.random.normal(size=50), 'sd': np.random.gamma(2.0, size=50)})
        plot_predictive_stats(sim, {'mean': 0.0, 'sd': 1.0}, tmp_path, filename='stats.png')
        assert (tmp_path / 'stats.png').exists()


if __name__ == '__main__':
    pytest.main([__file__, '-v', '--tb=short'])
