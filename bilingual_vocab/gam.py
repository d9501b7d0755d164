"""
Penalized Beta Additive Mixed Models

Fits beta-distributed responses on the open unit interval with:
1. Monotone penalized B-spline terms - ``mono(x)`` in a patsy formula
2. Random intercepts - ``C(group, RandomIntercept())`` in a patsy formula
3. A separate formula for the beta precision parameter

Spline coefficients carry a fixed second-order difference penalty.
Random-intercept coefficients carry a ridge penalty whose weight is the
inverse of the intercept variance; that variance is estimated from the data
by alternating the penalized fit with Fellner-Schall updates. Estimation is
penalized maximum likelihood on top of statsmodels' ``BetaModel`` (logit
mean link, log precision link).
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import patsy
from patsy import ContrastMatrix, stateful_transform
from scipy.interpolate import BSpline
from scipy.linalg import block_diag
from statsmodels.othermod.betareg import BetaModel
from statsmodels.tools.sm_exceptions import ConvergenceWarning, HessianInversionWarning

from .errors import NonConvergenceWarning


# =============================================================================
# FORMULA BUILDING BLOCKS
# =============================================================================

class MonotoneSpline:
    """
    Stateful patsy transform for a monotone increasing spline basis.

    Builds a clamped B-spline basis with ``df`` functions on equally spaced
    knots spanning the training range, then returns the ``df - 1`` tail sums
    ``sum(B_j for j >= k)``. Each tail sum rises from 0 to 1, so any
    combination with non-negative coefficients is non-decreasing. The
    constant tail sum (k = 0) is dropped; the model intercept carries it.

    New data is clipped to the training range before evaluation.
    """

    def __init__(self):
        self._chunks: List[np.ndarray] = []
        self.df: Optional[int] = None
        self.degree: Optional[int] = None
        self.knots: Optional[np.ndarray] = None
        self.lower = self.upper = None

    def memorize_chunk(self, x, df=8, degree=3):
        self.df = int(df)
        self.degree = int(degree)
        self._chunks.append(np.asarray(x, dtype=float).ravel())

    def memorize_finish(self):
        x = np.concatenate(self._chunks)
        x = x[np.isfinite(x)]
        self._chunks = []
        if x.size == 0:
            raise ValueError("mono() needs at least one finite value")
        if self.df < self.degree + 1:
            raise ValueError(f"mono() needs df >= degree + 1, got df={self.df}, degree={self.degree}")

        self.lower, self.upper = float(x.min()), float(x.max())
        if self.upper == self.lower:
            self.upper = self.lower + 1.0

        n_inner = self.df - self.degree - 1
        inner = np.linspace(self.lower, self.upper, n_inner + 2)[1:-1]
        self.knots = np.concatenate([
            np.repeat(self.lower, self.degree + 1),
            inner,
            np.repeat(self.upper, self.degree + 1),
        ])

    def transform(self, x, df=8, degree=3):
        x = np.clip(np.asarray(x, dtype=float).ravel(), self.lower, self.upper)
        basis = BSpline(self.knots, np.eye(self.df), self.degree)(x)
        tail_sums = np.cumsum(basis[:, ::-1], axis=1)[:, ::-1]
        return tail_sums[:, 1:]


mono = stateful_transform(MonotoneSpline)


class RandomIntercept:
    """
    patsy contrast with one indicator column per level.

    No reference level is dropped; the ridge penalty on these columns keeps
    the model identifiable alongside the intercept.
    """

    def _matrix(self, levels):
        return ContrastMatrix(np.eye(len(levels)), [f'[{level}]' for level in levels])

    def code_with_intercept(self, levels):
        return self._matrix(levels)

    def code_without_intercept(self, levels):
        return self._matrix(levels)


def is_spline_term(term_name: str) -> bool:
    return term_name.startswith('mono(')


def is_random_term(term_name: str) -> bool:
    return 'RandomIntercept' in term_name


def random_term_group(term_name: str) -> str:
    """Grouping variable of a random-intercept term, e.g. 'child_id'."""
    if term_name.startswith('C(') and ',' in term_name:
        return term_name[2:term_name.index(',')].strip()
    return term_name


def penalty_matrix(
    design_info: patsy.DesignInfo,
    smoothing_weight: float,
    random_effect_weight: float,
    term_weights: Optional[Dict[str, float]] = None
) -> np.ndarray:
    """
    Quadratic penalty for the columns of one design matrix.

    Spline terms get a first-difference penalty on their tail-sum
    coefficients, which equals a second-difference penalty on the
    underlying B-spline coefficients. Random-intercept terms get a ridge
    penalty, weighted by ``term_weights[term]`` when given and by
    ``random_effect_weight`` otherwise. All other columns are unpenalized.
    """
    term_weights = term_weights or {}
    k = len(design_info.column_names)
    penalty = np.zeros((k, k))
    for term_name, cols in design_info.term_name_slices.items():
        width = cols.stop - cols.start
        if is_spline_term(term_name):
            diff = np.diff(np.eye(width), axis=0)
            penalty[cols, cols] += smoothing_weight * diff.T @ diff
        elif is_random_term(term_name):
            weight = term_weights.get(term_name, random_effect_weight)
            penalty[cols, cols] += weight * np.eye(width)
    return penalty


def coefficient_bounds(design_info: patsy.DesignInfo) -> List[Tuple[Optional[float], Optional[float]]]:
    """Non-negativity bounds for spline columns, none elsewhere."""
    bounds = [(None, None)] * len(design_info.column_names)
    for term_name, cols in design_info.term_name_slices.items():
        if is_spline_term(term_name):
            for i in range(cols.start, cols.stop):
                bounds[i] = (0.0, None)
    return bounds


def random_effect_mask(design_info: patsy.DesignInfo) -> np.ndarray:
    mask = np.zeros(len(design_info.column_names), dtype=bool)
    for term_name, cols in design_info.term_name_slices.items():
        if is_random_term(term_name):
            mask[cols] = True
    return mask


# =============================================================================
# MODEL
# =============================================================================

class PenalizedBetaModel(BetaModel):
    """
    Beta regression with a fixed quadratic penalty on the parameters.

    The penalized log-likelihood is ``loglike(p) - 0.5 * p' S p`` where
    ``S`` spans mean and precision parameters.
    """

    def __init__(self, endog, exog, exog_precision=None, penalty=None, **kwds):
        super().__init__(endog, exog, exog_precision=exog_precision, **kwds)
        k_params = self.exog.shape[1] + self.exog_precision.shape[1]
        if penalty is None:
            penalty = np.zeros((k_params, k_params))
        self.penalty = np.asarray(penalty, dtype=float)
        if self.penalty.shape != (k_params, k_params):
            raise ValueError(f"penalty must be {k_params}x{k_params}, got {self.penalty.shape}")

    def penalty_value(self, params):
        params = np.asarray(params)
        return 0.5 * params @ self.penalty @ params

    def loglike(self, params):
        return super().loglike(params) - self.penalty_value(params)

    def loglike_unpenalized(self, params):
        return np.sum(self.loglikeobs(params))

    def score(self, params):
        return super().score(params) - self.penalty @ np.asarray(params)

    def hessian(self, params, observed=None):
        return super().hessian(params, observed=observed) - self.penalty

    def penalized_start_params(self) -> np.ndarray:
        """
        Starting values from a ridge regression on the link scale.

        Precision parameters start from the method-of-moments estimate of a
        constant precision.
        """
        k_mean = self.exog.shape[1]
        mean_penalty = self.penalty[:k_mean, :k_mean]
        y_link = self.link(self.endog)
        gram = self.exog.T @ self.exog + mean_penalty + 1e-8 * np.eye(k_mean)
        beta = np.linalg.solve(gram, self.exog.T @ y_link)

        mu = self.link.inverse(self.exog @ beta)
        resid_var = np.mean((self.endog - mu) ** 2)
        phi = np.mean(mu * (1 - mu)) / max(resid_var, 1e-8) - 1
        log_phi = np.log(max(phi, 1.0))
        gamma = np.linalg.lstsq(
            self.exog_precision,
            np.full(len(self.endog), log_phi),
            rcond=None
        )[0]
        return np.concatenate([beta, gamma])


@dataclass
class GAMFit:
    """A fitted penalized beta GAMM with the quantities used downstream."""
    name: str
    formula: str
    precision_formula: str
    results: Any
    design_info: patsy.DesignInfo
    precision_design_info: patsy.DesignInfo
    llf: float
    edf: float
    nobs: int
    converged: bool
    iterations: int
    warnings: List[str] = field(default_factory=list)
    random_effect_sd: Dict[str, float] = field(default_factory=dict)

    @property
    def params(self) -> pd.Series:
        names = list(self.design_info.column_names) + [
            f'precision-{name}' for name in self.precision_design_info.column_names
        ]
        return pd.Series(np.asarray(self.results.params), index=names)

    @property
    def aic(self) -> float:
        return -2 * self.llf + 2 * self.edf

    @property
    def bic(self) -> float:
        return -2 * self.llf + np.log(self.nobs) * self.edf

    def predict(self, data: pd.DataFrame, population: bool = True) -> np.ndarray:
        """
        Predicted mean proportion on the response scale.

        Args:
            data: Frame with every covariate in the mean formula
            population: If True, random intercepts are set to zero so the
                prediction is the population-level curve

        Returns:
            Array of predicted means in (0, 1)
        """
        exog = np.asarray(patsy.build_design_matrices([self.design_info], data)[0])
        k_mean = len(self.design_info.column_names)
        beta = np.asarray(self.results.params)[:k_mean].copy()
        if population:
            beta[random_effect_mask(self.design_info)] = 0.0
        return self.results.model.link.inverse(exog @ beta)

    def summary_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'formula': self.formula,
            'precision_formula': self.precision_formula,
            'nobs': self.nobs,
            'llf': self.llf,
            'edf': self.edf,
            'aic': self.aic,
            'bic': self.bic,
            'converged': self.converged,
            'iterations': self.iterations,
            'warnings': list(self.warnings),
            'random_effect_sd': dict(self.random_effect_sd),
        }


def effective_df(model: PenalizedBetaModel, params: np.ndarray) -> float:
    """
    Effective degrees of freedom: trace of (I_pen)^-1 I, where I is the
    observed information of the unpenalized likelihood and I_pen = I + S.
    """
    penalized_info = -model.hessian(params)
    info = penalized_info - model.penalty
    return float(np.trace(np.linalg.pinv(penalized_info) @ info))


# Bounds on an estimated random-intercept weight (inverse variance)
MIN_RANDOM_EFFECT_WEIGHT = 1e-6
MAX_RANDOM_EFFECT_WEIGHT = 1e8

# Relative change in every weight below which variance updates stop
VARIANCE_TOLERANCE = 0.01


def update_random_effect_weights(
    model: PenalizedBetaModel,
    params: np.ndarray,
    random_terms: Dict[str, slice]
) -> Dict[str, float]:
    """
    One Fellner-Schall/EM update of the random-intercept weights.

    For a term with ``q`` coefficients ``b`` and posterior covariance block
    ``V_b``, the variance estimate is ``(b'b + tr(V_b)) / q`` and the new
    weight is its inverse.
    """
    cov = np.linalg.pinv(-model.hessian(params))
    weights = {}
    for term_name, cols in random_terms.items():
        b = params[cols]
        spread = float(b @ b + np.trace(cov[cols, cols]))
        weight = (cols.stop - cols.start) / max(spread, 1e-12)
        weights[term_name] = float(np.clip(weight, MIN_RANDOM_EFFECT_WEIGHT, MAX_RANDOM_EFFECT_WEIGHT))
    return weights


def _is_overflow_warning(w) -> bool:
    return issubclass(w.category, RuntimeWarning) and 'overflow' in str(w.message)


def _run_optimizer(model, start_params, bounds, maxiter):
    """
    One bounded L-BFGS-B fit.

    Returns the results, the converged flag, the iterations used and the
    fit-quality messages. Overflow in line-search trial points is silenced;
    other warnings are re-emitted.
    """
    with warnings.catch_warnings(record=True) as caught, np.errstate(over='ignore'):
        warnings.simplefilter('always')
        results = model.fit(
            start_params=start_params,
            method='lbfgs',
            maxiter=maxiter,
            bounds=bounds,
            disp=False,
        )

    messages = []
    for w in caught:
        if issubclass(w.category, (ConvergenceWarning, HessianInversionWarning)):
            messages.append(str(w.message))
        elif not _is_overflow_warning(w):
            warnings.warn(w.message, w.category, stacklevel=3)

    retvals = getattr(results, 'mle_retvals', None) or {}
    converged = bool(retvals.get('converged', not messages))
    iterations = int(retvals.get('iterations', maxiter))
    return results, converged, iterations, messages


def fit_gam(
    data: pd.DataFrame,
    formula: str,
    precision_formula: str,
    name: str = 'gam',
    smoothing_weight: float = 10.0,
    random_effect_weight: float = 1.0,
    max_iter: int = 500,
    variance_updates: int = 20
) -> GAMFit:
    """
    Fit a penalized beta GAMM.

    The spline penalty weight is fixed. The random-intercept variances are
    estimated: the penalized fit alternates with Fellner-Schall updates of
    each random term's weight until the weights settle, ``variance_updates``
    updates are spent, or the ``max_iter`` optimizer budget runs out.

    Args:
        data: Model frame without missing values in any formula column
        formula: patsy formula for the mean, e.g.
            ``'prop_prod ~ mono(age) + C(child_id, RandomIntercept())'``
        precision_formula: One-sided patsy formula for the precision
        name: Label used in reports
        smoothing_weight: Fixed weight of the spline roughness penalty
        random_effect_weight: Starting inverse variance of the random
            intercepts (kept fixed when ``variance_updates`` is 0)
        max_iter: Cap on optimizer iterations, summed over all refits
        variance_updates: Maximum number of variance updates

    Returns:
        GAMFit. Non-convergence is recorded in ``warnings`` and re-emitted
        as a NonConvergenceWarning.
    """
    y, X = patsy.dmatrices(formula, data, return_type='dataframe', NA_action='raise')
    Z = patsy.dmatrix(precision_formula, data, return_type='dataframe', NA_action='raise')

    random_terms = {
        term_name: cols
        for term_name, cols in X.design_info.term_name_slices.items()
        if is_random_term(term_name)
    }
    weights = {term_name: random_effect_weight for term_name in random_terms}

    def build_penalty(term_weights):
        return block_diag(
            penalty_matrix(X.design_info, smoothing_weight, random_effect_weight, term_weights),
            penalty_matrix(Z.design_info, smoothing_weight, random_effect_weight),
        )

    bounds = coefficient_bounds(X.design_info) + coefficient_bounds(Z.design_info)
    lower = np.array([-np.inf if lo is None else lo for lo, _ in bounds])

    model = PenalizedBetaModel(
        y.iloc[:, 0], X, exog_precision=np.asarray(Z), penalty=build_penalty(weights)
    )
    params = np.maximum(model.penalized_start_params(), lower)

    fit_warnings = []
    iterations = 0
    settled = not random_terms
    for update in range(max(variance_updates, 0) + 1):
        results, converged, used, messages = _run_optimizer(model, params, bounds, max_iter - iterations)
        iterations += used
        fit_warnings.extend(messages)
        params = np.asarray(results.params)
        if settled or not converged or update == variance_updates or iterations >= max_iter:
            break

        new_weights = update_random_effect_weights(model, params, random_terms)
        settled = all(
            abs(np.log(new_weights[t] / weights[t])) < VARIANCE_TOLERANCE for t in weights
        )
        weights = new_weights
        model.penalty = build_penalty(weights)

    if not converged:
        fit_warnings.insert(0, f"{name}: optimizer stopped after {iterations} iterations "
                               f"(cap {max_iter}) without converging")
    elif not settled and variance_updates > 0:
        fit_warnings.append(f"{name}: random-effect variances still changing after "
                            f"{update} updates ({iterations} of {max_iter} iterations)")
    for message in fit_warnings:
        warnings.warn(message, NonConvergenceWarning, stacklevel=2)

    return GAMFit(
        name=name,
        formula=formula,
        precision_formula=precision_formula,
        results=results,
        design_info=X.design_info,
        precision_design_info=Z.design_info,
        llf=float(model.loglike_unpenalized(params)),
        edf=effective_df(model, params),
        nobs=int(len(y)),
        converged=converged,
        iterations=iterations,
        warnings=fit_warnings,
        random_effect_sd={
            random_term_group(t): float(1 / np.sqrt(w)) for t, w in weights.items()
        },
    )
