"""
N400 Analysis: Bayesian Linear Mixed-Effects Models with Bayes Factors

This script:
1. Reads the trial-level EEG data (or simulates a data set)
2. Summarizes the N400 amplitudes and plots distributions and ERPs
3. Contrast-codes the Related / Unrelated manipulation
4. Specifies the models and their priors
5. Runs prior predictive checks
6. Fits the full and the null model (cached in the output directory)
7. Checks convergence and summarizes the posterior
8. Runs posterior predictive checks
9. Compares the models with a bridge-sampling Bayes factor

Usage:
    python n400_analysis.py --data ../data/public_noun_data.csv
    python n400_analysis.py --simulate --draws 1000 --no-show
    python n400_analysis.py --data ../data/public_noun_data.csv --sensitivity 1 5 10 20
"""

import argparse
from pathlib import Path

import pandas as pd

from bridge_sampling import (MAX_PERCENTAGE_ERROR, bayes_factor, bridge_sampler,
                             interpret_bayes_factor, load_or_bridge)
from n400_bayes import (CHAINS, CONDITION, CORES, DRAWS, ITEM, OUTPUT_DIR, RANDOM_SEED, SUBJECT,
                        TARGET_ACCEPT, TUNE, Prior, add_contrast, build_model, check_convergence,
                        condition_summary, describe_data, effect_summary, erp_summary, fit_model,
                        full_model_spec, grouped_predictive_check, load_or_fit,
                        null_model_spec, observed_stats, plot_distributions, plot_erp,
                        plot_posterior, plot_ppc, plot_predictive_stats, predictive_stats,
                        read_data, sample_posterior_predictive, sample_prior_predictive,
                        simulate_data, time_columns)


def banner(title):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def step(number, title):
    print(f"\n{number}. {title}")
    print("-" * 40)


def fit_and_bridge(spec, data, output_dir, fit_kwargs, refit=False):
    """Build, fit and bridge-sample one model, using the on-disk caches."""
    print(f"  Model {spec.name!r}: {spec.formula}")
    model = build_model(spec, data)
    idata = load_or_fit(output_dir / f'fit_{spec.name}.nc',
                        lambda: fit_model(model, **fit_kwargs), refit=refit)
    ml = load_or_bridge(output_dir / f'ml_{spec.name}.json',
                        lambda: bridge_sampler(model, idata, seed=fit_kwargs['seed']), refit=refit)
    print(f"  log marginal likelihood: {ml.logml:.3f} (error ~{ml.percentage_error:.2f}%)")
    if not ml.converged:
        print(f"  ⚠️  WARNING: bridge sampler did not converge after {ml.niter} iterations")
    elif not ml.ok:
        print(f"  ⚠️  WARNING: marginal likelihood error above {MAX_PERCENTAGE_ERROR:g}%")
    return model, idata, ml


def prior_sensitivity(data, null_ml, prior_sds, output_dir, fit_kwargs, refit=False):
    """Bayes factor of the condition effect for several Normal(0, sd) slope priors."""
    rows = []
    for sd in prior_sds:
        spec = full_model_spec(name=f'full_b{sd:g}', priors={'b': Prior('normal', mu=0, sigma=sd)})
        _, _, ml = fit_and_bridge(spec, data, output_dir, fit_kwargs, refit=refit)
        bf = bayes_factor(ml, null_ml)
        rows.append({
            'b_prior_sd': sd,
            'logml': ml.logml,
            'BF10': bf,
            'interpretation': interpret_bayes_factor(bf),
        })
    return pd.DataFrame(rows)


def run_complete_analysis(data_path=None, output_dir=OUTPUT_DIR, draws=DRAWS, tune=TUNE,
                          chains=CHAINS, cores=CORES, target_accept=TARGET_ACCEPT,
                          seed=RANDOM_SEED, refit=False, sensitivity=(), show=True):
    """Run the whole N400 analysis and return its main results."""
    banner("N400 ANALYSIS - BAYESIAN LINEAR MIXED-EFFECTS MODELS")
    output_dir = Path(output_dir)
    fit_kwargs = dict(draws=draws, tune=tune, chains=chains, cores=cores,
                      target_accept=target_accept, seed=seed)

    step(1, "LOADING DATA")
    if data_path is None:
        print("  No data file given; simulating a data set")
        data = simulate_data(seed=seed)
        describe_data(data)
    else:
        data = read_data(data_path, display=True)
    print(f"  Trials: {len(data):,}, subjects: {data[SUBJECT].nunique()}, items: {data[ITEM].nunique()}")

    step(2, "DESCRIPTIVE SUMMARY")
    by_condition = condition_summary(data)
    print(by_condition.round(3).to_string(index=False))
    plot_distributions(data, output_dir, show=show)
    if time_columns(data):
        plot_erp(erp_summary(data), output_dir, show=show)

    step(3, "CONTRAST CODING")
    data = add_contrast(data)
    print(data.groupby(CONDITION, observed=True)['c_cond'].first().to_string())

    step(4, "MODEL SPECIFICATION")
    full_spec = full_model_spec()
    null_spec = null_model_spec()
    for spec in (full_spec, null_spec):
        print(f"  {spec.name}: {spec.formula}")
    print("  Priors:")
    for cls, prior in full_spec.priors.items():
        print(f"    {cls}: {prior}")

    step(5, "PRIOR PREDICTIVE CHECKS")
    prior_pred = sample_prior_predictive(build_model(full_spec, data), seed=seed)
    prior_stats = predictive_stats(prior_pred, group='prior_predictive')
    observed = observed_stats(data)
    print(prior_stats.describe().round(2))
    plot_predictive_stats(prior_stats, observed, output_dir, show=show)

    step(6, "FITTING MODELS")
    print("(This may take a few minutes...)")
    full_model, full_idata, full_ml = fit_and_bridge(full_spec, data, output_dir, fit_kwargs, refit)
    _, null_idata, null_ml = fit_and_bridge(null_spec, data, output_dir, fit_kwargs, refit)

    step(7, "CHECKING CONVERGENCE")
    for name, idata in (('full', full_idata), ('null', null_idata)):
        print(f"\n[{name}]")
        check_convergence(idata)

    effects = effect_summary(full_idata, var_names=('Intercept', 'b', 'sd_subj', 'sd_item', 'sigma'))
    print("\nPosterior Effect Estimates:")
    print(effects.round(3))
    effects.to_csv(output_dir / 'effects_summary.csv')
    plot_posterior(full_idata, output_dir=output_dir, show=show)

    step(8, "POSTERIOR PREDICTIVE CHECKS")
    full_idata = sample_posterior_predictive(full_model, full_idata, seed=seed)
    plot_ppc(full_idata, output_dir, show=show)
    for stat in ('mean', 'sd'):
        check = grouped_predictive_check(full_idata, data, stat=stat)
        print(f"\n{stat} by condition:")
        print(check.round(3).to_string(index=False))

    step(9, "MODEL COMPARISON")
    bf = bayes_factor(full_ml, null_ml)
    print(f"  BF10 (condition effect vs none): {bf:.3f}")
    print(f"  Interpretation: {interpret_bayes_factor(bf)}")

    sensitivity_table = None
    if sensitivity:
        print("\nPrior sensitivity of the Bayes factor:")
        sensitivity_table = prior_sensitivity(data, null_ml, sensitivity, output_dir, fit_kwargs, refit)
        print(sensitivity_table.round(3).to_string(index=False))
        sensitivity_table.to_csv(output_dir / 'bf_sensitivity.csv', index=False)

    banner("ANALYSIS COMPLETE!")
    print(f"\nFiles created in {output_dir}/:")
    print("  - fit_*.nc, ml_*.json (cached fits and marginal likelihoods)")
    print("  - n400_distributions.png, erp.png (descriptive plots)")
    print("  - prior_predictive_stats.png, posterior_predictive.png")
    print("  - posterior_distributions.png, effects_summary.csv")

    return {
        'data': data,
        'idata': full_idata,
        'effects': effects,
        'bayes_factor': bf,
        'sensitivity': sensitivity_table,
    }


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Bayesian mixed-effects analysis of N400 amplitudes")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--data', type=Path, help="Delimited file with one row per trial")
    source.add_argument('--simulate', action='store_true', help="Use a simulated data set")
    parser.add_argument('--output-dir', type=Path, default=OUTPUT_DIR)
    parser.add_argument('--draws', type=int, default=DRAWS)
    parser.add_argument('--tune', type=int, default=TUNE)
    parser.add_argument('--chains', type=int, default=CHAINS)
    parser.add_argument('--cores', type=int, default=CORES)
    parser.add_argument('--target-accept', type=float, default=TARGET_ACCEPT)
    parser.add_argument('--seed', type=int, default=RANDOM_SEED)
    parser.add_argument('--refit', action='store_true', help="Ignore cached fits and marginal likelihoods")
    parser.add_argument('--sensitivity', type=float, nargs='+', default=(), metavar='SD',
                        help="Prior SDs for the condition slope to compare Bayes factors across")
    parser.add_argument('--no-show', action='store_true', help="Save figures without displaying them")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    return run_complete_analysis(
        data_path=args.data,
        output_dir=args.output_dir,
        draws=args.draws,
        tune=args.tune,
        chains=args.chains,
        cores=args.cores,
        target_accept=args.target_accept,
        seed=args.seed,
        refit=args.refit,
        sensitivity=args.sensitivity,
        show=not args.no_show,
    )


if __name__ == "__main__":
    main()
