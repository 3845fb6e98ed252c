"""
Bridge Sampling Estimates of Marginal Likelihoods

Implements the iterative bridge sampler of Meng & Wong (1996) with a
multivariate normal proposal, as described by Gronau et al. (2017):
- half of the posterior draws fit the proposal (mean and covariance)
- the other half, plus as many proposal draws, enter the iterative scheme

The posterior is evaluated on PyMC's unconstrained parameter space (log
density including the Jacobian of each transform), so bounded parameters
such as standard deviations need no special handling.

Also provides Bayes factors with Jeffreys' verbal scale, and a JSON cache
for estimates.
"""

import json
import os
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path

import arviz as az
import numpy as np
from scipy import stats
from scipy.special import logsumexp

BRIDGE_TOL = 1e-10
BRIDGE_MAX_ITER = 1000

# Estimates above this percentage error are flagged in reports
MAX_PERCENTAGE_ERROR = 10.0


@dataclass
class BridgeResult:
    logml: float
    niter: int
    re2: float
    n_draws: int
    converged: bool = True

    @property
    def percentage_error(self):
        """Approximate percentage error of the marginal likelihood estimate."""
        return 100 * np.sqrt(self.re2)

    @property
    def ok(self):
        return self.converged and self.percentage_error <= MAX_PERCENTAGE_ERROR

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, d):
        return cls(**d)


def _fixed_point(step, log_r0, tol, max_iter):
    """Iterate log_r = step(log_r) until the relative change of r is below tol.

    Returns the last two iterates, the number of iterations and whether the
    iteration converged.
    """
    log_r = prev_log_r = log_r0
    for i in range(1, max_iter + 1):
        prev_log_r, log_r = log_r, step(log_r)
        if abs(np.expm1(prev_log_r - log_r)) < tol:
            return log_r, prev_log_r, i, True
    return log_r, prev_log_r, max_iter, False


def _iterate(l1, l2, tol, max_iter):
    """Meng & Wong fixed-point iteration in log space.

    l1 and l2 are log(posterior / proposal) at the posterior and proposal
    draws; both are shifted by the median of l1 to keep the ratios in range.
    If max_iter is reached the scheme is usually bouncing between two
    values, so it is restarted once from their midpoint (geometric mean of
    the two estimates of r).
    """
    n1, n2 = len(l1), len(l2)
    log_s1 = np.log(n1 / (n1 + n2))
    log_s2 = np.log(n2 / (n1 + n2))
    lstar = np.median(l1)
    a1 = l1 - lstar
    a2 = l2 - lstar

    def step(log_r):
        numerator = logsumexp(a2 - np.logaddexp(log_s1 + a2, log_s2 + log_r)) - np.log(n2)
        denominator = logsumexp(-np.logaddexp(log_s1 + a1, log_s2 + log_r)) - np.log(n1)
        return numerator - denominator

    log_r, prev_log_r, niter, converged = _fixed_point(step, 0.0, tol, max_iter)
    if not converged:
        log_r, _, extra, converged = _fixed_point(step, (log_r + prev_log_r) / 2, tol, max_iter)
        niter += extra
    return log_r + lstar, niter, converged


def _relative_error(logml, q11, q12, q21, q22):
    """Approximate relative mean-squared error (Fruehwirth-Schnatter, 2004).

    q11/q12: log posterior and log proposal at the posterior draws
    q21/q22: log posterior and log proposal at the proposal draws
    The posterior draws are autocorrelated, so their term uses the ESS
    instead of the number of draws.
    """
    n1, n2 = len(q11), len(q21)
    log_s1 = np.log(n1 / (n1 + n2))
    log_s2 = np.log(n2 / (n1 + n2))
    log_p_post = q11 - logml
    log_p_prop = q21 - logml

    f1 = np.exp(log_p_prop - np.logaddexp(log_s1 + log_p_prop, log_s2 + q22))
    f2 = np.exp(q12 - np.logaddexp(log_s1 + log_p_post, log_s2 + q12))

    ess_f2 = float(az.ess(f2[np.newaxis, :], method='mean'))
    term1 = np.var(f1, ddof=1) / np.mean(f1) ** 2 / n2
    term2 = np.var(f2, ddof=1) / np.mean(f2) ** 2 / ess_f2
    return float(term1 + term2)


def bridge_sampler_from_draws(log_density, draws, seed=42, tol=BRIDGE_TOL, max_iter=BRIDGE_MAX_ITER):
    """Estimate the log marginal likelihood from posterior draws.

    Args:
        log_density: Function mapping an (n, d) array to the (n,) unnormalized
            log posterior density (log prior + log likelihood)
        draws: (n, d) array of posterior draws on an unconstrained space
        seed: Random seed for the proposal draws
        tol: Convergence tolerance on the relative change of the estimate
        max_iter: Maximum number of iterations

    Returns:
        BridgeResult
    """
    draws = np.asarray(draws, dtype=float)
    if draws.ndim == 1:
        draws = draws[:, np.newaxis]
    n = len(draws) // 2
    if n < 2:
        raise ValueError(f"Need at least 4 posterior draws, got {len(draws)}")
    fit_draws, iter_draws = draws[:n], draws[n:2 * n]

    mean = fit_draws.mean(axis=0)
    cov = np.atleast_2d(np.cov(fit_draws, rowvar=False))
    proposal = stats.multivariate_normal(mean=mean, cov=cov)
    rng = np.random.default_rng(seed)
    proposal_draws = proposal.rvs(size=n, random_state=rng).reshape(n, -1)

    q11 = np.asarray(log_density(iter_draws), dtype=float)
    q12 = np.atleast_1d(proposal.logpdf(iter_draws))
    q21 = np.asarray(log_density(proposal_draws), dtype=float)
    q22 = np.atleast_1d(proposal.logpdf(proposal_draws))

    # Proposal draws far in the tails can have zero posterior density
    q21 = np.where(np.isfinite(q21), q21, -np.inf)

    logml, niter, converged = _iterate(q11 - q12, q21 - q22, tol, max_iter)
    if not converged:
        warnings.warn(f"Bridge sampler did not converge in {max_iter} iterations",
                      RuntimeWarning, stacklevel=2)

    re2 = _relative_error(logml, q11, q12, q21, q22)
    return BridgeResult(logml=float(logml), niter=niter, re2=re2, n_draws=2 * n, converged=converged)


def unconstrained_draws(model, idata):
    """Stack the unconstrained posterior draws of every free variable.

    Returns:
        (names, shapes, draws) where draws is (n_samples, n_params) and
        names/shapes describe how columns map back to model value variables
    """
    posterior = idata.posterior
    names, shapes, blocks = [], [], []
    for value_var in model.value_vars:
        name = value_var.name
        if name not in posterior:
            raise KeyError(f"{name!r} is not in the posterior; sample with "
                           f"idata_kwargs={{'include_transformed': True}}")
        values = posterior[name].values
        n_samples = values.shape[0] * values.shape[1]
        names.append(name)
        shapes.append(values.shape[2:])
        blocks.append(values.reshape(n_samples, -1))
    return names, shapes, np.hstack(blocks)


def model_log_density(model, names, shapes):
    """Vectorized joint log density of `model` over stacked unconstrained draws."""
    logp = model.compile_logp(jacobian=True)
    dtypes = {v.name: v.dtype for v in model.value_vars}
    sizes = [int(np.prod(shape)) for shape in shapes]
    splits = np.cumsum(sizes)[:-1]

    def log_density(draws):
        out = np.empty(len(draws))
        for i, row in enumerate(draws):
            point = {
                name: block.reshape(shape).astype(dtypes[name])
                for name, shape, block in zip(names, shapes, np.split(row, splits))
            }
            out[i] = logp(point)
        return out

    return log_density


def bridge_sampler(model, idata, seed=42, tol=BRIDGE_TOL, max_iter=BRIDGE_MAX_ITER):
    """Log marginal likelihood of a fitted PyMC model.

    The estimate is built on PyMC's own log densities and inherits their
    normalizing constants. The LKJCholeskyCov density is not exactly
    normalized, but models with the same random-effects structure share that
    constant, so it cancels in their Bayes factor.
    """
    names, shapes, draws = unconstrained_draws(model, idata)
    log_density = model_log_density(model, names, shapes)
    return bridge_sampler_from_draws(log_density, draws, seed=seed, tol=tol, max_iter=max_iter)


def load_or_bridge(path, compute, refit=False):
    """Load a cached BridgeResult from JSON, or call `compute()` and cache it."""
    path = Path(path)
    if path.exists() and not refit:
        print(f"  Loading cached marginal likelihood from {path}")
        with open(path) as f:
            return BridgeResult.from_dict(json.load(f))

    result = compute()
    os.makedirs(path.parent, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)
    print(f"  Marginal likelihood saved to: {path}")
    return result


def bayes_factor(ml1, ml0):
    """BF10 = p(y | M1) / p(y | M0) from two BridgeResults."""
    return float(np.exp(ml1.logml - ml0.logml))


def interpret_bayes_factor(bf):
    """Interpret BF10 on Jeffreys' scale."""
    if bf < 1/100:
        return "Decisive evidence for H0"
    elif bf < 1/30:
        return "Very strong evidence for H0"
    elif bf < 1/10:
        return "Strong evidence for H0"
    elif bf < 1/3:
        return "Moderate evidence for H0"
    elif bf < 1:
        return "Anecdotal evidence for H0"
    elif bf < 3:
        return "Anecdotal evidence for H1"
    elif bf < 10:
        return "Moderate evidence for H1"
    elif bf < 30:
        return "Strong evidence for H1"
    elif bf < 100:
        return "Very strong evidence for H1"
    else:
        return "Decisive evidence for H1"
