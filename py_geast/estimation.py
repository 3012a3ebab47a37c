"""EM estimation of latent tree model parameters"""

import logging
import math
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from .data import MixedDataSet
from .definitions import GaussianParameter, Variable
from .errors import EstimationError
from .inference import InferenceResult, TreePropagation, compute_loglikelihood
from .model import LatentTreeModel

logger = logging.getLogger(__name__)


@dataclass
class Estimation:
    """A model with fitted parameters and its score"""
    model: LatentTreeModel
    origin: LatentTreeModel  # Structure the estimation started from
    loglikelihood: float
    total_weight: float
    dimension: int = field(init=False)
    bic: float = field(init=False)

    def __post_init__(self):
        """Compute the dimension and BIC score"""
        self.dimension = self.model.compute_dimension()
        self.bic = self.loglikelihood - self.dimension / 2 * math.log(self.total_weight)

    @classmethod
    def of(cls, model: LatentTreeModel, data: MixedDataSet) -> "Estimation":
        """Score a model with complete parameters without running EM"""
        return cls(model, model, compute_loglikelihood(model, data), data.total_weight)

    def __repr__(self):
        return (f"Estimation({self.model.name}: loglikelihood={self.loglikelihood:.4f}, "
                f"BIC={self.bic:.4f}, dimension={self.dimension})")


@dataclass
class EmParameters:
    """Settings of one EM framework"""
    restarts: int = 64
    reuse_parameters: bool = True
    initial_iterations: int = 1
    max_steps: int = 500
    second_stage_steps: int = 0
    threshold: float = 1e-4
    smoothing: float = 0.0
    minimum_retry_for_nan: int = 16

    def __post_init__(self):
        """Validate parameters"""
        if self.restarts < 1:
            raise ValueError("Number of restarts must be >= 1")
        if self.initial_iterations < 0:
            raise ValueError("Initial iterations must be >= 0")
        if self.max_steps < 1:
            raise ValueError("Maximum steps must be >= 1")
        if self.second_stage_steps < 0:
            raise ValueError("Second stage steps must be >= 0")
        if self.smoothing < 0:
            raise ValueError("Smoothing must be >= 0")
        if self.minimum_retry_for_nan < 1:
            raise ValueError("Minimum retry for NaN must be >= 1")


class CovarianceConstrainer:
    """Clips the eigenvalues of fitted covariance matrices into a range"""

    def lower_bound(self, scalars: Sequence[Variable]) -> float:
        raise NotImplementedError

    def upper_bound(self, scalars: Sequence[Variable]) -> float:
        raise NotImplementedError

    def adjust(self, covariance: np.ndarray, scalars: Sequence[Variable]) -> np.ndarray:
        """Return a symmetric covariance with eigenvalues within the bounds"""
        symmetric = (covariance + covariance.T) / 2
        values, vectors = np.linalg.eigh(symmetric)
        lower = self.lower_bound(scalars)
        upper = self.upper_bound(scalars)
        if lower <= values.min() and values.max() <= upper:
            return symmetric
        clipped = np.clip(values, lower, upper)
        return (vectors * clipped) @ vectors.T

    def describe(self) -> dict:
        raise NotImplementedError


class ConstantCovarianceConstrainer(CovarianceConstrainer):
    DEFAULT_LOWER_BOUND = 0.01
    DEFAULT_UPPER_BOUND = float("inf")

    def __init__(self, lower: float = DEFAULT_LOWER_BOUND, upper: float = DEFAULT_UPPER_BOUND):
        if lower > upper:
            raise ValueError(f"Lower bound {lower} exceeds upper bound {upper}")
        self.lower = lower
        self.upper = upper

    def lower_bound(self, scalars):
        return self.lower

    def upper_bound(self, scalars):
        return self.upper

    def describe(self):
        return {"type": "constant", "eigenvalue_lower": self.lower,
                "eigenvalue_upper": self.upper}


class VariableCovarianceConstrainer(CovarianceConstrainer):
    """Bounds derived from the data variance of the scalars involved"""
    DEFAULT_MULTIPLIER = 20.0

    def __init__(self, data: MixedDataSet, multiplier: float = DEFAULT_MULTIPLIER,
                 has_upper_bound: bool = False):
        if multiplier <= 0:
            raise ValueError("Multiplier must be positive")
        self.data = data
        self.multiplier = multiplier
        self.has_upper_bound = has_upper_bound
        self._variances = {}
        self._lock = threading.Lock()

    def _variance(self, scalar: Variable) -> float:
        with self._lock:
            if scalar not in self._variances:
                self._variances[scalar] = self.data.variance(scalar)
            return self._variances[scalar]

    def lower_bound(self, scalars):
        return min(self._variance(s) for s in scalars) / self.multiplier

    def upper_bound(self, scalars):
        if not self.has_upper_bound:
            return float("inf")
        return max(self._variance(s) for s in scalars) * self.multiplier

    def describe(self):
        return {"type": "variable", "multiplier": self.multiplier,
                "has_upper_bound": self.has_upper_bound}


class ParameterGenerator:
    """Random initial parameters for the nodes of a model"""

    def __init__(self, data: MixedDataSet, seed: Optional[int] = None):
        self.data = data
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def generate(self, model: LatentTreeModel, variables: Optional[Iterable[Variable]] = None):
        """Randomize the parameters of the given variables (all if None)"""
        targets = model.variables if variables is None else list(variables)
        with self._lock:
            for variable in targets:
                model.parameters[variable] = self._generate(model, variable)

    def generate_missing(self, model: LatentTreeModel):
        """Fill in the parameters dropped by structural edits"""
        missing = model.missing_parameters()
        if missing:
            self.generate(model, missing)

    def _generate(self, model: LatentTreeModel, variable: Variable):
        shape = model.expected_shape(variable)
        if variable.is_discrete:
            rows = 1 if len(shape) == 1 else shape[0]
            table = self._rng.dirichlet(np.ones(variable.cardinality), size=rows)
            return table[0] if len(shape) == 1 else table

        states, dimension = shape
        values = self.data.continuous_matrix(variable.scalars)
        complete = ~np.isnan(values).any(axis=1)
        values = values[complete]
        if len(values) == 0:
            return GaussianParameter(np.zeros((states, dimension)),
                                     np.tile(np.eye(dimension), (states, 1, 1)))

        # Means from random cases, covariance from the whole data
        means = values[self._rng.integers(len(values), size=states)]
        if len(values) > 1:
            covariance = np.atleast_2d(np.cov(values, rowvar=False,
                                              aweights=self.data.weights[complete]))
        else:
            covariance = np.eye(dimension)
        return GaussianParameter(means, np.tile(covariance, (states, 1, 1)))


class _Run:
    """One restart of EM on its own copy of the model"""

    def __init__(self, model: LatentTreeModel):
        self.model = model
        self.loglikelihood = -math.inf
        self.previous: Optional[float] = None
        self.valid = True
        self.steps_run = 0

    @property
    def improvement(self) -> float:
        if not self.valid:
            return -math.inf
        if self.previous is None:
            return math.inf
        return self.loglikelihood - self.previous


class EmFramework:
    """
    Chickering-Heckerman restart strategy followed by a second stage on the
    best restart. Subclasses decide which variables are re-estimated.
    """

    def __init__(self, data: MixedDataSet, parameters: Optional[EmParameters] = None,
                 generator: Optional[ParameterGenerator] = None,
                 constrainer: Optional[CovarianceConstrainer] = None):
        self.data = data
        self.parameters = parameters or EmParameters()
        self.generator = generator or ParameterGenerator(data)
        self.constrainer = constrainer or ConstantCovarianceConstrainer()
        self.threads = 1
        self.executor: Optional[Executor] = None
        self._driver_thread = threading.current_thread()

    @property
    def name(self) -> str:
        return type(self).__name__

    def use(self, parameters: EmParameters) -> EmParameters:
        """Use new parameters and return the old ones"""
        old, self.parameters = self.parameters, parameters
        return old

    def use_covariance_constrainer(self, constrainer: CovarianceConstrainer) -> CovarianceConstrainer:
        old, self.constrainer = self.constrainer, constrainer
        return old

    def set_multithreading(self, threads: int, executor: Optional[Executor]):
        """
        Bind the shared pool. Restarts are spread over the pool only for
        estimations issued from the thread that bound it.
        """
        self.threads = threads
        self.executor = executor if threads > 1 else None
        self._driver_thread = threading.current_thread()

    def focus(self, model: LatentTreeModel,
              focus: Optional[Iterable[Variable]]) -> Optional[List[Variable]]:
        """Variables whose parameters are estimated; None means all"""
        return None

    def estimate(self, current: Union[Estimation, LatentTreeModel],
                 focus: Optional[Iterable[Variable]] = None) -> Estimation:
        """
        Run EM starting from a model or an earlier estimation. The result has
        the same origin as the current estimation.
        """
        if isinstance(current, Estimation):
            model, origin = current.model, current.origin
        else:
            model = origin = current
        focus = self.focus(model, focus)

        regenerate = False
        for attempt in range(self.parameters.minimum_retry_for_nan):
            run = self._chickering_heckerman_restart(model, focus, regenerate)
            self._second_stage(run, focus)

            loglikelihood = (compute_loglikelihood(run.model, self.data)
                             if run.valid else math.nan)
            if np.isfinite(loglikelihood):
                return Estimation(run.model, origin, loglikelihood, self.data.total_weight)

            logger.warning("Invalid estimation of model %s (attempt %d)",
                           model.name, attempt + 1)
            regenerate = True

        raise EstimationError(
            f"No valid estimation of model {model.name} after "
            f"{self.parameters.minimum_retry_for_nan} attempts", model.name)

    def _chickering_heckerman_restart(self, model: LatentTreeModel,
                                      focus: Optional[List[Variable]],
                                      regenerate: bool) -> _Run:
        params = self.parameters
        runs = []
        for i in range(params.restarts):
            copy = model.clone()
            self.generator.generate_missing(copy)
            if i != 0 or not params.reuse_parameters or regenerate:
                self.generator.generate(copy, focus)
            runs.append(_Run(copy))

        steps_run = self._repeat_steps(runs, params.initial_iterations, focus, False)

        # Each round discards the worse half and doubles the steps
        steps_per_round = 1
        while len(runs) > 1 and steps_run < params.max_steps:
            steps_run += self._repeat_steps(runs, steps_per_round, focus, True)
            runs.sort(key=lambda r: r.loglikelihood if r.valid else -math.inf, reverse=True)
            runs = runs[:len(runs) // 2]
            steps_per_round = min(steps_per_round * 2, params.max_steps - steps_run)

        runs.sort(key=lambda r: r.loglikelihood if r.valid else -math.inf, reverse=True)
        best = runs[0]
        best.steps_run = steps_run
        return best

    def _second_stage(self, run: _Run, focus: Optional[List[Variable]]):
        params = self.parameters
        last_step = (run.steps_run + params.second_stage_steps
                     if params.second_stage_steps > 0 else params.max_steps)
        while run.steps_run < last_step and run.improvement >= params.threshold:
            self._step(run, focus)
            run.steps_run += 1

    def _repeat_steps(self, runs: List[_Run], steps: int,
                      focus: Optional[List[Variable]], consider_threshold: bool) -> int:
        """Step every run; returns the largest number of steps any run took"""
        def repeat(run: _Run) -> int:
            for step in range(steps):
                if consider_threshold and run.improvement <= self.parameters.threshold:
                    return step
                self._step(run, focus)
            return steps

        if (self.executor is not None and len(runs) > 1
                and threading.current_thread() is self._driver_thread):
            futures = [self.executor.submit(repeat, run) for run in runs]
            counts = [future.result() for future in futures]
        else:
            counts = [repeat(run) for run in runs]
        return max(counts, default=0)

    def _step(self, run: _Run, focus: Optional[List[Variable]]):
        """One E-step and M-step; invalidates the run on impossible evidence"""
        if not run.valid:
            return
        try:
            result = TreePropagation(run.model, self.data).propagate(statistics=focus)
            if not np.isfinite(result.loglikelihood):
                run.valid = False
                return
            run.previous = run.loglikelihood if math.isfinite(run.loglikelihood) else None
            run.loglikelihood = result.loglikelihood
            self.maximize(run.model, result)
        except np.linalg.LinAlgError as e:
            logger.debug("Discarding restart of model %s: %s", run.model.name, e)
            run.valid = False

    def maximize(self, model: LatentTreeModel, result: InferenceResult):
        """Set maximum likelihood parameters from collected statistics"""
        smoothing = self.parameters.smoothing
        for variable, counts in result.counts.items():
            counts = counts + smoothing
            totals = counts.sum(axis=-1, keepdims=True)
            uniform = np.full_like(counts, 1.0 / variable.cardinality)
            with np.errstate(invalid="ignore", divide="ignore"):
                model.parameters[variable] = np.where(totals > 0, counts / totals, uniform)

        for variable, (totals, sums, outer) in result.moments.items():
            old = model.parameters[variable]
            means = old.means.copy()
            covariances = old.covariances.copy()
            for state, total in enumerate(totals):
                if total <= 1e-10:
                    continue
                mean = sums[state] / total
                covariance = outer[state] / total - np.outer(mean, mean)
                means[state] = mean
                covariances[state] = self.constrainer.adjust(covariance, variable.scalars)
            model.parameters[variable] = GaussianParameter(means, covariances)


class LocalEm(EmFramework):
    """Re-estimates only the focus of a candidate, keeping other parameters fixed"""

    def focus(self, model, focus):
        if focus is None:
            return None
        variables = [v for v in focus if v in model]
        for variable in model.missing_parameters():
            if variable not in variables:
                variables.append(variable)
        return variables


class FullEm(EmFramework):
    """Re-estimates all parameters"""


EM_TYPES = {"LocalEm": LocalEm, "FullEm": FullEm}
