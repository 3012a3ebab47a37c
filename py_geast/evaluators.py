"""Comparison and acceptance policies over scored candidates"""

from typing import Optional

from .candidates import SearchCandidate
from .estimation import Estimation


class Evaluator:
    """Ranks candidates and decides whether one is an improvement"""

    def evaluate(self, candidate: SearchCandidate) -> float:
        """Value used to compare candidates of one search"""
        raise NotImplementedError

    def improvement(self, candidate: SearchCandidate) -> float:
        """Value compared with the threshold of a procedure"""
        raise NotImplementedError

    def accepts(self, candidate: SearchCandidate, threshold: float) -> bool:
        return candidate.is_new and self.improvement(candidate) > threshold

    def __repr__(self):
        return type(self).__name__


class BicEvaluator(Evaluator):
    """Compares candidates by their BIC score"""

    def evaluate(self, candidate):
        return candidate.estimation.bic

    def improvement(self, candidate):
        return candidate.estimation.bic - candidate.base.bic


class UnitImprovementEvaluator(Evaluator):
    """
    BIC gain per additional free parameter. Candidates that do not increase
    the dimension are measured by their raw gain.

    Given a base, every candidate is measured against that fixed estimation
    instead of its own base, so that a refinement keeps scoring against the
    model it started expanding.
    """

    def __init__(self, base: Optional[Estimation] = None):
        self.base = base

    def evaluate(self, candidate):
        estimation = candidate.estimation
        base = self.base if self.base is not None else candidate.base
        if estimation.origin is base.origin:
            return 0.0

        gain = estimation.bic - base.bic
        increase = estimation.dimension - base.dimension
        return gain / increase if increase > 0 else gain

    def improvement(self, candidate):
        return self.evaluate(candidate)
