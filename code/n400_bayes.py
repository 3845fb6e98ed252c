"""
Bayesian Linear Mixed-Effects Models for N400 Amplitude Data

Building blocks for the N400 analysis:
1. Read and inspect trial-level EEG data (or simulate a data set with the same layout)
2. Contrast-code the Related / Unrelated manipulation
3. Summarize amplitudes by subject, condition and time point
4. Assemble model formulas and priors, and build the PyMC model
5. Prior and posterior predictive checks
6. Fit with NUTS, cache fits on disk, check convergence
"""

import itertools
import os
from dataclasses import dataclass
from pathlib import Path

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pymc as pm
import seaborn as sns
from scipy import stats

# Column layout of the trial-level data file
SUBJECT = 'subj'
ITEM = 'item'
CONDITION = 'condition'
RESPONSE = 'n400'
CONTRAST = 'c_cond'
TIME_PREFIX = 'time_'

REQUIRED_COLUMNS = [SUBJECT, ITEM, CONDITION, RESPONSE]
CATEGORICAL_COLUMNS = [SUBJECT, ITEM, CONDITION]

# Centered (sum-to-zero) coding: the slope is Unrelated - Related
CONTRASTS = {'Related': -0.5, 'Unrelated': 0.5}
CONDITIONS = list(CONTRASTS)

# Averaging window for the N400 amplitude, in ms after word onset
N400_WINDOW = (300, 500)

# Sampler settings
DRAWS = 2000
TUNE = 1000
CHAINS = 4
CORES = 4
TARGET_ACCEPT = 0.9
RANDOM_SEED = 42

# Diagnostic thresholds
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400

OUTPUT_DIR = Path('output')

sns.set_style('whitegrid')


# =============================================================================
# DATA
# =============================================================================

def read_data(file_path, sep=None, display=False):
    """Read trial-level EEG data and coerce the categorical columns.

    Args:
        file_path: Path to a delimited file with one row per trial
        sep: Column separator; inferred from the suffix when None
        display: Whether to print a short description of the data

    Returns:
        DataFrame with `subj`, `item` and `condition` as categoricals
    """
    file_path = Path(file_path)
    if sep is None:
        sep = '\t' if file_path.suffix in ('.tsv', '.txt') else ','
    data = pd.read_csv(file_path, sep=sep)

    missing = [col for col in REQUIRED_COLUMNS if col not in data.columns]
    if missing:
        raise KeyError(f"Missing required columns in {file_path}: {missing}")

    for col in CATEGORICAL_COLUMNS:
        data[col] = data[col].astype('category')

    if display:
        describe_data(data)

    return data


def describe_data(data):
    """Print the size of the design and a sample of the data."""
    print(f"  Trials: {len(data):,}")
    print(f"  Subjects: {data[SUBJECT].nunique()}")
    print(f"  Items: {data[ITEM].nunique()}")
    print(f"  Conditions: {sorted(data[CONDITION].astype(str).unique())}")
    print(f"  Time points: {len(time_columns(data))}")
    print("\nData sample:")
    print(data[REQUIRED_COLUMNS].head())


def time_columns(data):
    """Return the per-time-point amplitude columns, ordered by time."""
    cols = [col for col in data.columns if str(col).startswith(TIME_PREFIX)]
    return sorted(cols, key=lambda col: int(col[len(TIME_PREFIX):]))


def simulate_data(n_subjects=30, n_items=40, intercept=3.0, effect=-2.0,
                  sd_subject=(2.0, 1.0), sd_item=(1.5, 0.5), sigma=8.0,
                  times=tuple(range(-200, 801, 20)), seed=RANDOM_SEED):
    """Simulate a data set with the same layout as the real EEG file.

    Every subject sees every item once; conditions are counterbalanced in a
    Latin square. Subjects and items get random intercepts and slopes.
    The single-trial waveform peaks at 400 ms and `n400` is its mean over
    N400_WINDOW.
    """
    rng = np.random.default_rng(seed)
    subj_idx = np.repeat(np.arange(n_subjects), n_items)
    item_idx = np.tile(np.arange(n_items), n_subjects)
    labels = np.array(CONDITIONS)[(subj_idx + item_idx) % 2]
    contrast = np.array([CONTRASTS[label] for label in labels])

    subj_eff = rng.normal(0.0, sd_subject, size=(n_subjects, 2))
    item_eff = rng.normal(0.0, sd_item, size=(n_items, 2))
    trial_mean = (intercept + subj_eff[subj_idx, 0] + item_eff[item_idx, 0]
                  + (effect + subj_eff[subj_idx, 1] + item_eff[item_idx, 1]) * contrast
                  + rng.normal(0.0, sigma, size=len(subj_idx)))

    times = np.asarray(times)
    in_window = (times >= N400_WINDOW[0]) & (times <= N400_WINDOW[1])
    shape = np.exp(-0.5 * ((times - 400) / 100) ** 2)
    shape = shape / shape[in_window].mean()
    waveforms = trial_mean[:, None] * shape[None, :] + rng.normal(0.0, 1.0, size=(len(subj_idx), len(times)))

    data = pd.DataFrame({
        SUBJECT: subj_idx + 1,
        ITEM: item_idx + 1,
        CONDITION: labels,
        RESPONSE: waveforms[:, in_window].mean(axis=1),
    })
    series = pd.DataFrame(waveforms, columns=[f'{TIME_PREFIX}{t}' for t in times])
    data = pd.concat([data, series], axis=1)

    for col in CATEGORICAL_COLUMNS:
        data[col] = data[col].astype('category')
    return data


# =============================================================================
# CONTRAST CODING
# =============================================================================

def contrast_code(label):
    """Return the centered contrast code of a condition label."""
    try:
        return CONTRASTS[label]
    except KeyError:
        raise ValueError(f"Unknown condition label {label!r}; expected one of {CONDITIONS}") from None


def add_contrast(data, column=CONDITION, name=CONTRAST):
    """Add a numeric contrast column for the two-level condition.

    Raises:
        ValueError: if any label is not one of CONDITIONS
    """
    labels = data[column].astype(str)
    codes = labels.map(CONTRASTS)
    if codes.isna().any():
        unknown = sorted(labels[codes.isna()].unique())
        raise ValueError(f"Unknown condition labels in {column!r}: {unknown}")

    data = data.copy()
    data[name] = codes.astype(float)
    return data


# =============================================================================
# DESCRIPTIVE SUMMARIES
# =============================================================================

def summarize(data, by, value=RESPONSE, level=0.95):
    """Mean, SD, standard error and t-based confidence interval per group.

    Args:
        data: DataFrame with the grouping and value columns
        by: Column name or list of column names to group by
        value: Column to summarize
        level: Confidence level of the interval

    Returns:
        DataFrame with columns n, mean, sd, se, ci_lower, ci_upper per group.
        Groups with a single observation have NaN sd, se and interval.
    """
    summary = (data.groupby(by, observed=True)[value]
               .agg(n='count', mean='mean', sd='std')
               .reset_index())
    summary['se'] = summary['sd'] / np.sqrt(summary['n'])
    t_crit = stats.t.ppf(0.5 + level / 2, summary['n'] - 1)
    summary['ci_lower'] = summary['mean'] - t_crit * summary['se']
    summary['ci_upper'] = summary['mean'] + t_crit * summary['se']
    return summary


def subject_means(data, value=RESPONSE):
    """Average each subject's trials within each condition."""
    return (data.groupby([SUBJECT, CONDITION], observed=True)[value]
            .mean()
            .reset_index())


def condition_summary(data, value=RESPONSE):
    """By-subject condition means, summarized across subjects."""
    return summarize(subject_means(data, value), CONDITION, value)


def erp_summary(data):
    """Grand-average ERP: amplitude by time point and condition.

    Subjects are averaged first, so the interval reflects between-subject
    variability at each time point.
    """
    cols = time_columns(data)
    if not cols:
        raise ValueError(f"No per-time-point columns (prefix {TIME_PREFIX!r}) in data")

    long = data.melt(id_vars=[SUBJECT, CONDITION], value_vars=cols,
                     var_name='time', value_name='amplitude')
    long['time'] = long['time'].str[len(TIME_PREFIX):].astype(int)
    by_subject = (long.groupby([SUBJECT, CONDITION, 'time'], observed=True)['amplitude']
                  .mean()
                  .reset_index())
    return summarize(by_subject, ['time', CONDITION], 'amplitude')


# =============================================================================
# PRIORS AND MODEL SPECIFICATION
# =============================================================================

PRIOR_FAMILIES = {
    'normal': pm.Normal,
    'student_t': pm.StudentT,
    'half_normal': pm.HalfNormal,
    'half_student_t': pm.HalfStudentT,
    'half_cauchy': pm.HalfCauchy,
    'exponential': pm.Exponential,
}
POSITIVE_FAMILIES = {'half_normal', 'half_student_t', 'half_cauchy', 'exponential'}
PRIOR_CLASSES = ('Intercept', 'b', 'sd', 'cor', 'sigma')


class Prior:
    """A distribution family plus its parameters, e.g. Prior('normal', mu=0, sigma=10)."""

    def __init__(self, family, **params):
        self.family = family
        self.params = params

    def __repr__(self):
        args = ', '.join(f'{k}={v}' for k, v in self.params.items())
        return f'{self.family}({args})'

    def __eq__(self, other):
        return isinstance(other, Prior) and (self.family, self.params) == (other.family, other.params)

    def rv(self, name, **kwargs):
        """Create the random variable inside the current model context."""
        return PRIOR_FAMILIES[self.family](name, **self.params, **kwargs)

    def dist(self, **kwargs):
        """Create an unnamed distribution (used as sd_dist of LKJCholeskyCov)."""
        return PRIOR_FAMILIES[self.family].dist(**self.params, **kwargs)


def default_priors():
    """Weakly regularizing priors on the µV scale."""
    return {
        'Intercept': Prior('normal', mu=0, sigma=10),
        'b': Prior('normal', mu=0, sigma=10),
        'sd': Prior('half_normal', sigma=20),
        'cor': Prior('lkj', eta=2),
        'sigma': Prior('half_normal', sigma=50),
    }


def validate_priors(priors):
    """Fill in default priors and check every class/family pair.

    Raises:
        ValueError: for an unknown class, an unknown family, a correlation
            prior that is not LKJ, or a scale prior with real-valued support
    """
    unknown = sorted(set(priors) - set(PRIOR_CLASSES))
    if unknown:
        raise ValueError(f"Unknown prior classes {unknown}; expected {list(PRIOR_CLASSES)}")

    merged = {**default_priors(), **priors}
    for cls, prior in merged.items():
        if cls == 'cor':
            if prior.family != 'lkj':
                raise ValueError(f"Correlation prior must be 'lkj', got {prior.family!r}")
        elif prior.family not in PRIOR_FAMILIES:
            raise ValueError(f"Unknown prior family {prior.family!r} for class {cls!r}")
        elif cls in ('sd', 'sigma') and prior.family not in POSITIVE_FAMILIES:
            raise ValueError(f"Prior for {cls!r} needs positive support, got {prior.family!r}")
    return merged


class ModelSpec:
    """Fixed effects, by-group random effects and priors of a mixed model.

    `random` maps each grouping column to its random slopes; every grouping
    factor also gets a random intercept.
    """

    def __init__(self, name, response=RESPONSE, fixed=(CONTRAST,), random=None, priors=None):
        self.name = name
        self.response = response
        self.fixed = tuple(fixed)
        if random is None:
            random = {SUBJECT: (CONTRAST,), ITEM: (CONTRAST,)}
        self.random = {group: tuple(terms) for group, terms in random.items()}
        self.priors = validate_priors(priors or {})

    @property
    def formula(self):
        fixed = ' + '.join(['1', *self.fixed])
        random = [f"({' + '.join(['1', *terms])} | {group})" for group, terms in self.random.items()]
        return f"{self.response} ~ " + ' + '.join([fixed, *random])

    @property
    def columns(self):
        cols = [self.response, *self.fixed]
        for group, terms in self.random.items():
            cols += [group, *terms]
        return list(dict.fromkeys(cols))

    def __repr__(self):
        return f"ModelSpec({self.name!r}, {self.formula!r})"


def full_model_spec(name='full', priors=None):
    """Condition effect with by-subject and by-item random intercepts and slopes."""
    return ModelSpec(name, priors=priors)


def null_model_spec(name='null', priors=None):
    """Same random-effects structure as the full model, without the condition effect."""
    return ModelSpec(name, fixed=(), priors=priors)


def build_model(spec, data):
    """Build the PyMC model for a ModelSpec.

    mu = Intercept + X b + sum over groups of Z_g r_g[level]

    Group-level effects are non-centered. With more than one term per group
    they are correlated through an LKJ Cholesky covariance.

    Args:
        spec: ModelSpec describing the model
        data: DataFrame holding every column in spec.columns (contrast-coded)

    Returns:
        PyMC model object
    """
    missing = [col for col in spec.columns if col not in data.columns]
    if missing:
        raise KeyError(f"Missing columns for {spec.formula!r}: {missing}")

    priors = spec.priors
    n_obs = len(data)
    coords = {'obs': np.arange(n_obs)}
    if spec.fixed:
        coords['fixed'] = list(spec.fixed)

    group_index = {}
    for group, terms in spec.random.items():
        idx, levels = pd.factorize(data[group], sort=True)
        group_index[group] = idx
        coords[f'{group}_level'] = [str(level) for level in levels]
        coords[f'{group}_term'] = ['Intercept', *terms]

    with pm.Model(coords=coords) as model:
        intercept = priors['Intercept'].rv('Intercept')
        mu = intercept

        if spec.fixed:
            X = data[list(spec.fixed)].to_numpy(dtype=float)
            b = priors['b'].rv('b', dims='fixed')
            mu = mu + pm.math.dot(X, b)

        for group, terms in spec.random.items():
            dims = (f'{group}_level', f'{group}_term')
            k = len(terms) + 1
            z = pm.Normal(f'z_{group}', mu=0.0, sigma=1.0, dims=dims)

            if k == 1:
                sd = priors['sd'].rv(f'sd_{group}', dims=f'{group}_term')
                r = pm.Deterministic(f'r_{group}', z * sd, dims=dims)
            else:
                chol, corr, sd = pm.LKJCholeskyCov(
                    f'chol_{group}', n=k, eta=priors['cor'].params['eta'],
                    sd_dist=priors['sd'].dist(shape=k), compute_corr=True)
                pm.Deterministic(f'sd_{group}', sd, dims=f'{group}_term')
                pm.Deterministic(f'cor_{group}', corr[np.triu_indices(k, 1)])
                r = pm.Deterministic(f'r_{group}', pm.math.dot(z, chol.T), dims=dims)

            Z = np.column_stack([np.ones(n_obs)] + [data[t].to_numpy(dtype=float) for t in terms])
            mu = mu + (Z * r[group_index[group]]).sum(axis=1)

        sigma = priors['sigma'].rv('sigma')
        pm.Normal(spec.response, mu=mu, sigma=sigma,
                  observed=data[spec.response].to_numpy(dtype=float), dims='obs')

    return model


# =============================================================================
# SAMPLING, CACHING AND DIAGNOSTICS
# =============================================================================

def sample_prior_predictive(model, draws=500, seed=RANDOM_SEED):
    """Simulate data sets from the priors."""
    with model:
        return pm.sample_prior_predictive(draws, random_seed=seed)


def fit_model(model, draws=DRAWS, tune=TUNE, chains=CHAINS, cores=CORES,
              target_accept=TARGET_ACCEPT, seed=RANDOM_SEED):
    """Run NUTS, keeping the unconstrained draws needed for bridge sampling."""
    with model:
        return pm.sample(draws, tune=tune, chains=chains, cores=cores,
                         target_accept=target_accept, random_seed=seed,
                         idata_kwargs={'include_transformed': True})


def sample_posterior_predictive(model, idata, seed=RANDOM_SEED):
    """Add posterior predictive draws of the response to `idata`."""
    with model:
        pm.sample_posterior_predictive(idata, random_seed=seed, extend_inferencedata=True)
    return idata


def load_or_fit(path, fit, refit=False):
    """Load a cached fit from netCDF, or call `fit()` and cache its result.

    The cache is keyed by file name only: nothing checks that a cached fit
    matches the current data or priors.
    """
    path = Path(path)
    if path.exists() and not refit:
        print(f"  Loading cached fit from {path}")
        return az.from_netcdf(path)

    idata = fit()
    os.makedirs(path.parent, exist_ok=True)
    idata.to_netcdf(path)
    print(f"  Fit saved to: {path}")
    return idata


@dataclass
class Convergence:
    """Worst-case convergence diagnostics of a fit."""
    rhat_max: float
    ess_min: float
    divergences: int

    @property
    def ok(self):
        return self.rhat_max < RHAT_THRESHOLD and self.ess_min > ESS_THRESHOLD and self.divergences == 0


def _reported_vars(idata):
    # Skip unconstrained copies and offsets, which duplicate the reported parameters
    return [var for var in idata.posterior.data_vars
            if not var.endswith('__') and not var.startswith('z_')]


def check_convergence(idata, display=True):
    """Check MCMC convergence with R-hat, bulk ESS and divergent transitions."""
    var_names = _reported_vars(idata)
    rhat = az.rhat(idata, var_names=var_names)
    ess = az.ess(idata, var_names=var_names)

    if display:
        print(f"R-hat summary (should be < {RHAT_THRESHOLD}):")
    rhat_max = 0.0
    for var in rhat.data_vars:
        values = rhat[var].values.flatten()
        if np.all(np.isnan(values)):
            continue
        var_max = np.nanmax(values)
        rhat_max = max(rhat_max, var_max)
        if display:
            flag = " ⚠️  WARNING: Poor convergence!" if var_max > RHAT_THRESHOLD else " ✅"
            print(f"  {var}: mean={np.nanmean(values):.3f}, max={var_max:.3f}{flag}")

    if display:
        print(f"\nEffective Sample Size summary (should be > {ESS_THRESHOLD}):")
    ess_min = np.inf
    for var in ess.data_vars:
        values = ess[var].values.flatten()
        if np.all(np.isnan(values)):
            continue
        var_min = np.nanmin(values)
        ess_min = min(ess_min, var_min)
        if display:
            flag = " ⚠️  WARNING: Low ESS!" if var_min < ESS_THRESHOLD else " ✅"
            print(f"  {var}: mean={np.nanmean(values):.0f}, min={var_min:.0f}{flag}")

    divergences = 0
    if hasattr(idata, 'sample_stats') and 'diverging' in idata.sample_stats:
        divergences = int(idata.sample_stats['diverging'].sum())
    if display:
        flag = " ⚠️  WARNING: Divergent transitions detected!" if divergences else " ✅"
        print(f"\nDivergent transitions: {divergences}{flag}")

    return Convergence(float(rhat_max), float(ess_min), divergences)


def _describe(samples):
    return {
        'Mean': np.mean(samples),
        'SD': np.std(samples),
        'Q2.5%': np.percentile(samples, 2.5),
        'Q97.5%': np.percentile(samples, 97.5),
        'P(<0)': np.mean(samples < 0),
    }


def effect_summary(idata, var_names=('Intercept', 'b', 'sigma')):
    """Posterior mean, SD, 95% interval and P(<0) per parameter.

    Vector and matrix parameters get one row per coordinate, e.g.
    `b[c_cond]` or `r_subj[1, Intercept]`.
    """
    posterior = idata.posterior
    rows = {}
    for var in var_names:
        if var not in posterior:
            continue
        da = posterior[var]
        extra = [dim for dim in da.dims if dim not in ('chain', 'draw')]
        if not extra:
            rows[var] = _describe(da.values.ravel())
            continue
        for labels in itertools.product(*(da[dim].values for dim in extra)):
            selected = da.sel(dict(zip(extra, labels)))
            rows[f"{var}[{', '.join(map(str, labels))}]"] = _describe(selected.values.ravel())
    return pd.DataFrame(rows).T


# =============================================================================
# PREDICTIVE CHECKS
# =============================================================================

STATISTICS = {
    'mean': np.mean,
    'sd': lambda x, axis: np.std(x, axis=axis, ddof=1),
    'min': np.min,
    'max': np.max,
}


def _predictive_draws(idata, group, var_name):
    values = idata[group][var_name].values
    return values.reshape(-1, values.shape[-1])


def predictive_stats(idata, group='prior_predictive', var_name=RESPONSE, names=('mean', 'sd', 'min', 'max')):
    """Summary statistics of each simulated data set (one row per draw)."""
    draws = _predictive_draws(idata, group, var_name)
    return pd.DataFrame({stat: STATISTICS[stat](draws, axis=1) for stat in names})


def observed_stats(data, var_name=RESPONSE, names=('mean', 'sd', 'min', 'max')):
    values = data[var_name].to_numpy(dtype=float)[None, :]
    return {stat: float(STATISTICS[stat](values, axis=1)[0]) for stat in names}


def grouped_predictive_check(idata, data, stat='mean', group=CONDITION, var_name=RESPONSE,
                             predictive='posterior_predictive'):
    """Compare a statistic per condition in replicated vs observed data.

    Returns:
        DataFrame with the observed statistic, the mean and 95% interval of
        the replicated statistic, and p_value = P(T_rep >= T_obs)
    """
    func = STATISTICS[stat]
    draws = _predictive_draws(idata, predictive, var_name)
    labels = data[group].astype(str).to_numpy()
    observed = data[var_name].to_numpy(dtype=float)

    rows = []
    for level in sorted(np.unique(labels)):
        mask = labels == level
        t_rep = func(draws[:, mask], axis=1)
        t_obs = func(observed[mask][None, :], axis=1)[0]
        rows.append({
            group: level,
            'observed': t_obs,
            'rep_mean': np.mean(t_rep),
            'rep_2.5%': np.percentile(t_rep, 2.5),
            'rep_97.5%': np.percentile(t_rep, 97.5),
            'p_value': np.mean(t_rep >= t_obs),
        })
    return pd.DataFrame(rows)


# =============================================================================
# PLOTS
# =============================================================================

def _finish(fig, output_dir, filename, show):
    if output_dir is not None:
        os.makedirs(output_dir, exist_ok=True)
        fig.savefig(Path(output_dir) / filename, dpi=300, bbox_inches='tight')
    if show:
        plt.show()
    return fig


def plot_distributions(data, output_dir=OUTPUT_DIR, show=False):
    """Trial-level amplitude densities and by-subject means per condition."""
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    sns.histplot(data=data, x=RESPONSE, hue=CONDITION, stat='density',
                 kde=True, common_norm=False, ax=axes[0])
    axes[0].set_xlabel('N400 amplitude (µV)')
    axes[0].set_title('Trial-level amplitudes')

    by_subject = subject_means(data)
    sns.boxplot(data=by_subject, x=CONDITION, y=RESPONSE, ax=axes[1], color='white')
    sns.stripplot(data=by_subject, x=CONDITION, y=RESPONSE, ax=axes[1], alpha=0.6)
    axes[1].set_ylabel('Mean N400 amplitude (µV)')
    axes[1].set_title('By-subject means')

    plt.tight_layout()
    return _finish(fig, output_dir, 'n400_distributions.png', show)


def plot_erp(erp, output_dir=OUTPUT_DIR, show=False):
    """Grand-average waveforms with 95% CI bands; the N400 window is shaded."""
    fig, ax = plt.subplots(figsize=(10, 5))
    for level, cell in erp.groupby(CONDITION, observed=True):
        ax.plot(cell['time'], cell['mean'], linewidth=2, label=level)
        ax.fill_between(cell['time'], cell['ci_lower'], cell['ci_upper'], alpha=0.2)

    ax.axvspan(*N400_WINDOW, color='gray', alpha=0.15)
    ax.axhline(0, color='black', linewidth=0.8)
    ax.axvline(0, color='black', linewidth=0.8, linestyle='--')
    ax.set_xlabel('Time (ms)')
    ax.set_ylabel('Amplitude (µV)')
    ax.legend()
    plt.tight_layout()
    return _finish(fig, output_dir, 'erp.png', show)


def plot_predictive_stats(sim_stats, observed, output_dir=OUTPUT_DIR,
                          filename='prior_predictive_stats.png', show=False):
    """Histogram of each simulated statistic with the observed value in red."""
    cols = list(sim_stats.columns)
    fig, axes = plt.subplots(1, len(cols), figsize=(4 * len(cols), 4), squeeze=False)
    for ax, stat in zip(axes[0], cols):
        sns.histplot(sim_stats[stat], ax=ax, bins=40)
        ax.axvline(observed[stat], color='red', linestyle='--', linewidth=2)
        ax.set_title(stat)
    plt.tight_layout()
    return _finish(fig, output_dir, filename, show)


def plot_posterior(idata, var_names=('b', 'sigma'), output_dir=OUTPUT_DIR,
                   filename='posterior_distributions.png', show=False):
    axes = az.plot_posterior(idata, var_names=list(var_names), ref_val=0)
    fig = np.ravel(axes)[0].figure
    plt.tight_layout()
    return _finish(fig, output_dir, filename, show)


def plot_ppc(idata, output_dir=OUTPUT_DIR, filename='posterior_predictive.png', show=False):
    ax = az.plot_ppc(idata, num_pp_samples=100)
    fig = np.ravel(ax)[0].figure
    return _finish(fig, output_dir, filename, show)
