"""Search settings loaded from YAML"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .context import DEFAULT_SCREENING_SIZE, DEFAULT_THREADS, DEFAULT_THRESHOLD, Context
from .data import MixedDataSet
from .errors import SettingsError
from .estimation import (EM_TYPES, ConstantCovarianceConstrainer, CovarianceConstrainer,
                         EmFramework, EmParameters, ParameterGenerator,
                         VariableCovarianceConstrainer)
from .log import SearchLog
from .search import Geast

DEFAULT_EM = {
    "screening": {"name": "LocalEm", "reuse": False, "restarts": 1,
                  "second_stage_steps": 40, "threshold": 0.01},
    "selection": {"name": "LocalEm", "reuse": True, "restarts": 32,
                  "second_stage_steps": 50, "threshold": 0.01},
    "estimation": {"name": "FullEm", "reuse": True, "restarts": 64,
                   "max_steps": 500, "threshold": 0.01},
}

# YAML key -> EmParameters field
EM_KEYS = {
    "reuse": "reuse_parameters",
    "restarts": "restarts",
    "initial_iterations": "initial_iterations",
    "max_steps": "max_steps",
    "second_stage_steps": "second_stage_steps",
    "threshold": "threshold",
    "smoothing": "smoothing",
    "minimum_retry_for_nan": "minimum_retry_for_nan",
}


@dataclass
class Settings:
    """Settings of a search run"""
    threads: int = DEFAULT_THREADS
    screening: int = DEFAULT_SCREENING_SIZE
    threshold: float = DEFAULT_THRESHOLD
    covariance_constraints: Dict[str, Any] = field(
        default_factory=lambda: {"type": "constant"})
    em: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    log_path: Optional[str] = "output"
    seed: Optional[int] = None

    def __post_init__(self):
        """Fill EM defaults and validate"""
        em = {purpose: dict(defaults) for purpose, defaults in DEFAULT_EM.items()}
        for purpose, values in (self.em or {}).items():
            if purpose not in em:
                raise SettingsError(f"Unknown EM purpose '{purpose}'")
            em[purpose].update(values or {})
        self.em = em

        if self.threads < 1:
            raise SettingsError("Number of threads must be >= 1")
        if self.screening < 1:
            raise SettingsError("Screening size must be >= 1")
        if self.threshold < 0:
            raise SettingsError("Threshold must be >= 0")
        constraint_type = self.covariance_constraints.get("type", "constant")
        if constraint_type not in ("constant", "variable"):
            raise SettingsError(f"Unknown covariance constraint type '{constraint_type}'")
        for purpose, values in self.em.items():
            if values.get("name") not in EM_TYPES:
                raise SettingsError(f"Unknown EM '{values.get('name')}' for {purpose}")
            unknown = set(values) - set(EM_KEYS) - {"name"}
            if unknown:
                raise SettingsError(f"Unknown EM settings for {purpose}: {sorted(unknown)}")

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path, None]) -> "Settings":
        """Load settings from a YAML file; defaults if no file is given"""
        if yaml_path is None:
            return cls()
        try:
            with open(yaml_path) as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot read settings file {yaml_path}: {e}")
        if not isinstance(config, dict):
            raise SettingsError(f"Settings file {yaml_path} must hold a mapping")

        log = config.pop("log", {}) or {}
        known = {"threads", "screening", "threshold", "covariance_constraints", "em", "seed"}
        unknown = set(config) - known
        if unknown:
            raise SettingsError(f"Unknown settings: {sorted(unknown)}")
        return cls(log_path=log.get("path", "output"), **config)

    def em_parameters(self, purpose: str) -> EmParameters:
        values = self.em[purpose]
        try:
            return EmParameters(**{EM_KEYS[k]: v for k, v in values.items() if k != "name"})
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid EM settings for {purpose}: {e}")

    def create_constrainer(self, data: MixedDataSet) -> CovarianceConstrainer:
        options = dict(self.covariance_constraints)
        if options.pop("type", "constant") == "variable":
            return VariableCovarianceConstrainer(
                data, float(options.get("multiplier", VariableCovarianceConstrainer.DEFAULT_MULTIPLIER)),
                bool(options.get("has_upper_bound", False)))
        return ConstantCovarianceConstrainer(
            float(options.get("eigenvalue_lower", ConstantCovarianceConstrainer.DEFAULT_LOWER_BOUND)),
            float(options.get("eigenvalue_upper", ConstantCovarianceConstrainer.DEFAULT_UPPER_BOUND)))

    def create_em(self, purpose: str, data: MixedDataSet,
                  generator: ParameterGenerator,
                  constrainer: CovarianceConstrainer) -> EmFramework:
        em_type = EM_TYPES[self.em[purpose]["name"]]
        return em_type(data, self.em_parameters(purpose), generator, constrainer)

    def create_context(self, data: MixedDataSet, log_suffix: Optional[str] = None) -> Context:
        """Context with the configured EMs, pool and search log"""
        generator = ParameterGenerator(data, self.seed)
        constrainer = self.create_constrainer(data)
        ems = [self.create_em(purpose, data, generator, constrainer)
               for purpose in ("screening", "selection", "estimation")]
        log = SearchLog(self.log_path, log_suffix)
        return Context(data, log, *ems, threads=self.threads,
                       screening_size=self.screening, threshold=self.threshold,
                       generator=generator)

    def create_geast(self, data: MixedDataSet, log_suffix: Optional[str] = None) -> Geast:
        return Geast(self.create_context(data, log_suffix))
