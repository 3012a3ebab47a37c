"""Base search operator and the screening/selection protocol"""

import logging
from typing import Iterable, List

import numpy as np

from .candidates import GivenCandidate, SearchCandidate
from .context import OperatorContext
from .errors import EstimationError
from .estimation import EmFramework, Estimation
from .evaluators import Evaluator
from .model import LatentTreeModel
from .screening import ScreenQueue

logger = logging.getLogger(__name__)


class SearchOperator:
    """
    Generates the candidates reachable from a base estimation by one kind of
    structural edit, and picks the best of them.
    """
    short_name = ""

    def __init__(self, context: OperatorContext):
        self.context = context

    @property
    def name(self) -> str:
        return type(self).__name__

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        """Every valid mutation of the base, in a fixed order"""
        raise NotImplementedError

    def update(self, latest: SearchCandidate):
        """Notification of an accepted candidate; stateless operators ignore it"""

    def search(self, base: Estimation, evaluator: Evaluator) -> SearchCandidate:
        """
        Screen all candidates with the screening EM, keep the best
        screening_size of them, re-estimate those with the selection EM and
        return the best. Returns a GivenCandidate of the base when there is
        no candidate or every estimation failed.
        """
        candidates = self.generate_candidates(base)
        if not candidates:
            return GivenCandidate(base)
        for index, candidate in enumerate(candidates):
            candidate.index = index

        logger.debug("%s screening %d candidates", self.name, len(candidates))
        queue = ScreenQueue(self.context.screening_size)

        def screen(candidate: SearchCandidate):
            if self._estimate(candidate, self.context.screening_em,
                              candidate.model, evaluator):
                queue.add(candidate, candidate.score, candidate.index)

        self._run_all(screen, candidates)
        if not len(queue):
            return GivenCandidate(base)

        shortlist = list(queue)

        def select(candidate: SearchCandidate):
            if not self._estimate(candidate, self.context.selection_em,
                                  candidate.estimation, evaluator):
                candidate.score = None

        self._run_all(select, shortlist)
        selected = [c for c in shortlist if c.score is not None]
        if not selected:
            return GivenCandidate(base)

        # Ties go to the first generated candidate
        return max(selected, key=lambda c: (c.score, -c.index))

    def _run_all(self, task, candidates: Iterable[SearchCandidate]):
        """Run the task for every candidate on the pool and wait for all"""
        futures = [self.context.executor.submit(task, c) for c in candidates]
        for future in futures:
            future.result()

    def _estimate(self, candidate: SearchCandidate, em: EmFramework,
                  start, evaluator: Evaluator) -> bool:
        try:
            candidate.estimation = em.estimate(start, candidate.modification)
        except (EstimationError, np.linalg.LinAlgError) as e:
            self.context.log.write_failure(candidate, e)
            return False
        candidate.score = evaluator.evaluate(candidate)
        return True

    def __repr__(self):
        return self.name


def all_regular(model: LatentTreeModel, *variables) -> bool:
    """Whether the given variables (ignoring absent ones) satisfy the regularity bound"""
    return all(model.has_regular_cardinality(v) for v in variables
               if v is not None and v in model)
