"""Shared state of one search run and the narrowed views handed out to its parts"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from .data import MixedDataSet
from .estimation import (CovarianceConstrainer, EmFramework, EmParameters, FullEm,
                         LocalEm, ParameterGenerator)
from .log import SearchLog

logger = logging.getLogger(__name__)

DEFAULT_THREADS = 1
DEFAULT_SCREENING_SIZE = 64
DEFAULT_THRESHOLD = 1e-2


@dataclass
class OperatorContext:
    """What an operator needs to screen and select candidates"""
    log: SearchLog
    executor: Executor
    screening_em: EmFramework
    selection_em: EmFramework
    screening_size: int


@dataclass
class ProcedureContext:
    """What a procedure needs to decide on and record accepted steps"""
    log: SearchLog
    threshold: float


@dataclass
class Context:
    """
    Owns the data, the three EM frameworks and the thread pool of a run.
    The pool is created here, bound to every EM, and shut down exactly once.
    """
    data: MixedDataSet
    log: SearchLog
    screening_em: EmFramework
    selection_em: EmFramework
    estimation_em: EmFramework
    threads: int = DEFAULT_THREADS
    screening_size: int = DEFAULT_SCREENING_SIZE
    threshold: float = DEFAULT_THRESHOLD
    generator: Optional[ParameterGenerator] = None
    executor: ThreadPoolExecutor = field(init=False)
    _closed: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self):
        """Validate settings, create the pool and bind it to the EMs"""
        if self.threads < 1:
            raise ValueError("Number of threads must be >= 1")
        if self.screening_size < 1:
            raise ValueError("Screening size must be >= 1")
        if self.threshold < 0:
            raise ValueError("Threshold must be >= 0")
        if self.generator is None:
            self.generator = self.estimation_em.generator

        self.executor = ThreadPoolExecutor(max_workers=self.threads,
                                           thread_name_prefix="geast")
        for em in self.ems:
            em.set_multithreading(self.threads, self.executor)

    @classmethod
    def create(cls, data: MixedDataSet, log: Optional[SearchLog] = None,
               threads: int = DEFAULT_THREADS,
               screening_size: int = DEFAULT_SCREENING_SIZE,
               threshold: float = DEFAULT_THRESHOLD,
               constrainer: Optional[CovarianceConstrainer] = None,
               seed: Optional[int] = None) -> "Context":
        """Context with the default screening, selection and estimation EMs"""
        generator = ParameterGenerator(data, seed)
        screening = LocalEm(data, EmParameters(reuse_parameters=False, restarts=1,
                                               second_stage_steps=40, threshold=0.01),
                            generator, constrainer)
        selection = LocalEm(data, EmParameters(reuse_parameters=True, restarts=32,
                                               second_stage_steps=50, threshold=0.01),
                            generator, constrainer)
        estimation = FullEm(data, EmParameters(reuse_parameters=True, restarts=64,
                                               max_steps=500, threshold=0.01),
                            generator, constrainer)
        return cls(data, log or SearchLog(None), screening, selection, estimation,
                   threads, screening_size, threshold, generator)

    @classmethod
    def single_em(cls, data: MixedDataSet, em: EmFramework,
                  log: Optional[SearchLog] = None, **kwargs) -> "Context":
        """Context using one EM for screening, selection and estimation"""
        return cls(data, log or SearchLog(None), em, em, em, generator=em.generator, **kwargs)

    @property
    def ems(self):
        return [self.screening_em, self.selection_em, self.estimation_em]

    def operator_context(self) -> OperatorContext:
        return OperatorContext(self.log, self.executor, self.screening_em,
                               self.selection_em, self.screening_size)

    def procedure_context(self) -> ProcedureContext:
        return ProcedureContext(self.log, self.threshold)

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self):
        """Shut the pool down; later calls do nothing"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.debug("Shutting down search thread pool")
        self.executor.shutdown(wait=True)

    def describe(self) -> dict:
        """Settings summary for the search log"""
        summary = {"threads": self.threads, "screening": self.screening_size,
                   "threshold": self.threshold}
        for purpose, em in zip(["screening", "selection", "estimation"], self.ems):
            summary[f"{purpose}_em"] = f"{em.name} {em.parameters}"
        summary["covariance_constraints"] = self.estimation_em.constrainer.describe()
        return summary

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
        return False
