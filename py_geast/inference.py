"""Exact inference on latent tree models, vectorized over data cases"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
from scipy.stats import multivariate_normal

from .data import MISSING_CODE, MixedDataSet
from .definitions import Variable
from .model import LatentTreeModel

Moments = Tuple[np.ndarray, np.ndarray, np.ndarray]


@dataclass
class InferenceResult:
    """Output of one propagation over the whole data set"""
    loglikelihood: float
    case_loglikelihoods: np.ndarray
    posteriors: Dict[Variable, np.ndarray] = field(default_factory=dict)
    # Expected counts: (k,) for the root, (parent states, k) for other discrete nodes
    counts: Dict[Variable, np.ndarray] = field(default_factory=dict)
    # Weighted (totals (k,), sums (k, d), outer sums (k, d, d)) per parent state
    moments: Dict[Variable, Moments] = field(default_factory=dict)


def _normalize_rows(array: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Scale each row to a maximum of one; returns the scaled array and log scales"""
    scale = array.max(axis=1)
    scale = np.where(scale > 0, scale, 1.0)
    return array / scale[:, np.newaxis], np.log(scale)


def _row_probabilities(array: np.ndarray) -> np.ndarray:
    total = array.sum(axis=1, keepdims=True)
    total = np.where(total > 0, total, 1.0)
    return array / total


class TreePropagation:
    """
    Upward and downward message passing over a latent tree model.

    Messages are kept normalized per case with the log scales accumulated
    separately. Missing discrete values and missing continuous values are
    marginalized out.
    """

    def __init__(self, model: LatentTreeModel, data: MixedDataSet):
        self.model = model
        self.data = data
        self._order = model.preorder()
        if self._order[0].is_continuous:
            raise ValueError(f"Root of model {model.name} must be discrete")

    def evidence(self, variable: Variable) -> Optional[np.ndarray]:
        """Indicator matrix of the observed states, None for latent variables"""
        if variable.is_latent:
            return None
        codes = self.data.values[variable]
        result = np.zeros((len(codes), variable.cardinality))
        observed = codes != MISSING_CODE
        result[np.flatnonzero(observed), codes[observed]] = 1.0
        result[~observed] = 1.0
        return result

    def log_density(self, variable: Variable) -> np.ndarray:
        """(cases, parent states) log density of a continuous leaf"""
        parameter = self.model.parameters[variable]
        values = self.data.continuous_matrix(variable.scalars)
        missing = np.isnan(values)
        result = np.zeros((len(values), parameter.means.shape[0]))

        for pattern in np.unique(missing, axis=0):
            observed = ~pattern
            if not observed.any():
                continue
            rows = np.all(missing == pattern, axis=1)
            subset = values[rows][:, observed]
            for state in range(parameter.means.shape[0]):
                mean = parameter.means[state, observed]
                covariance = parameter.covariances[state][np.ix_(observed, observed)]
                result[rows, state] = multivariate_normal.logpdf(
                    subset, mean=mean, cov=covariance, allow_singular=True)

        return result

    def propagate(self, statistics: Optional[Iterable[Variable]] = None) -> InferenceResult:
        """
        Compute the log-likelihood and posterior marginals, and collect
        sufficient statistics for the given variables (all if None).
        """
        model = self.model
        n = self.data.size
        weights = self.data.weights
        wanted = set(model.variables if statistics is None else statistics)

        log_scale = np.zeros(n)
        beliefs: Dict[Variable, np.ndarray] = {}
        messages: Dict[Variable, np.ndarray] = {}
        evidences: Dict[Variable, np.ndarray] = {}

        # Upward pass: leaves to root
        for variable in reversed(self._order):
            if variable.is_continuous:
                density = self.log_density(variable)
                top = density.max(axis=1)
                top = np.where(np.isfinite(top), top, 0.0)
                messages[variable] = np.exp(density - top[:, np.newaxis])
                log_scale += top
                continue

            evidence = self.evidence(variable)
            belief = (np.ones((n, variable.cardinality)) if evidence is None
                      else evidence.copy())
            if evidence is not None:
                evidences[variable] = evidence
            for child in model.children(variable):
                belief *= messages[child]
            belief, scale = _normalize_rows(belief)
            log_scale += scale
            beliefs[variable] = belief

            if not model.is_root(variable):
                message = belief @ model.parameters[variable].T
                messages[variable], scale = _normalize_rows(message)
                log_scale += scale

        root = self._order[0]
        prior = model.parameters[root]
        with np.errstate(divide="ignore"):
            case_loglikelihoods = np.log(beliefs[root] @ prior) + log_scale
        loglikelihood = float(weights @ case_loglikelihoods)

        result = InferenceResult(loglikelihood, case_loglikelihoods)
        if not np.isfinite(loglikelihood):
            return result

        # Downward pass: root to leaves
        tops = {root: np.broadcast_to(prior, (n, root.cardinality))}
        for variable in self._order:
            if variable.is_continuous:
                continue

            posterior = _row_probabilities(tops[variable] * beliefs[variable])
            result.posteriors[variable] = posterior
            if variable is root and root in wanted:
                result.counts[root] = weights @ posterior

            children = model.children(variable)
            if not children:
                continue

            base = tops[variable]
            if variable in evidences:
                base = base * evidences[variable]

            # Products of the sibling messages excluding each child
            prefix = [np.ones_like(posterior)]
            for child in children[:-1]:
                prefix.append(prefix[-1] * messages[child])
            suffix = np.ones_like(posterior)
            excluded = [None] * len(children)
            for i in reversed(range(len(children))):
                excluded[i] = _row_probabilities(base * prefix[i] * suffix)
                suffix = suffix * messages[children[i]]

            for child, outside in zip(children, excluded):
                if child.is_continuous:
                    if child in wanted:
                        result.moments[child] = self._moments(child, posterior)
                    continue

                table = model.parameters[child]
                tops[child] = _row_probabilities(outside @ table)
                if child in wanted:
                    upward = beliefs[child] @ table.T
                    normalizer = (outside * upward).sum(axis=1)
                    normalizer = np.where(normalizer > 0, normalizer, 1.0)
                    scaled = outside * (weights / normalizer)[:, np.newaxis]
                    result.counts[child] = (
                        np.einsum("ni,nj->ij", scaled, beliefs[child]) * table)

        return result

    def _moments(self, variable: Variable, parent_posterior: np.ndarray) -> Moments:
        """Weighted Gaussian moments of a continuous leaf per parent state"""
        values = self.data.continuous_matrix(variable.scalars)
        complete = ~np.isnan(values).any(axis=1)
        values = values[complete]
        weighted = parent_posterior[complete] * self.data.weights[complete][:, np.newaxis]

        totals = weighted.sum(axis=0)
        sums = weighted.T @ values
        outer = np.einsum("nk,ni,nj->kij", weighted, values, values)
        return totals, sums, outer


def compute_loglikelihood(model: LatentTreeModel, data: MixedDataSet) -> float:
    """Log-likelihood of the data under the model"""
    return TreePropagation(model, data).propagate(statistics=()).loglikelihood
