"""Procedures composing operators into search phases"""

import logging
from enum import Enum
from typing import List, Optional, Sequence

from .candidates import (GivenCandidate, NodeCombinationCandidate,
                         NodeIntroductionCandidate, SearchCandidate)
from .context import OperatorContext, ProcedureContext
from .estimation import Estimation
from .evaluators import BicEvaluator, Evaluator, UnitImprovementEvaluator
from .expansion import (NodeCombiner, NodeIntroducer, NodeRelocator,
                        RestrictedNodeCombiner, RestrictedNodeRelocator,
                        StateIntroducer)
from .operators import SearchOperator
from .simplification import NodeDeletor, NodeSeparator, StateDeletor

logger = logging.getLogger(__name__)


class ProcedureState(Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    STALLED = "stalled"


class Procedure:
    """A search step that improves an estimation as long as it can"""

    def __init__(self, context: ProcedureContext, name: Optional[str] = None):
        self.context = context
        self._name = name
        self.state: Optional[ProcedureState] = None
        self._succeeded = False

    @property
    def name(self) -> str:
        return self._name or type(self).__name__

    def run(self, base: Estimation) -> Estimation:
        raise NotImplementedError

    def succeeded(self) -> bool:
        """Whether the last run accepted at least one candidate"""
        return self._succeeded

    def __repr__(self):
        return f"{self.name}({self.state.value if self.state else 'new'})"


class IterativeProcedure(Procedure):
    """
    Repeatedly takes the best candidate over its operators and accepts it
    while its improvement exceeds the threshold.
    """

    def __init__(self, context: ProcedureContext, operators: Sequence[SearchOperator],
                 evaluator: Evaluator, name: Optional[str] = None):
        super().__init__(context, name)
        if not operators:
            raise ValueError("An iterative procedure needs at least one operator")
        self.operators = list(operators)
        self.evaluator = evaluator

    def run(self, base: Estimation) -> Estimation:
        log = self.context.log
        log.write_start(self)
        self.state = ProcedureState.RUNNING
        self._succeeded = False
        current = base

        while self.state is ProcedureState.RUNNING:
            best = self._best_candidate(current)

            if self.evaluator.accepts(best, self.context.threshold):
                log.write_step(self, best, self.evaluator.improvement(best))
                for operator in self.operators:
                    operator.update(best)
                current = self.refine(best)
                self._succeeded = True
            else:
                logger.debug("%s stalled at %s", self.name, best)
                self.state = (ProcedureState.SUCCEEDED if self._succeeded
                              else ProcedureState.STALLED)

        log.write_end(self, current)
        return current

    def _best_candidate(self, current: Estimation) -> SearchCandidate:
        """Best candidate over all operators; earlier operators win ties"""
        best, best_value = None, None
        for operator in self.operators:
            candidate = operator.search(current, self.evaluator)
            value = self.evaluator.evaluate(candidate)
            if best is None or value > best_value:
                best, best_value = candidate, value
        return best

    def refine(self, candidate: SearchCandidate) -> Estimation:
        """Hook to polish an accepted candidate"""
        return candidate.estimation


class RefinementProcedure(Procedure):
    """
    Strict hill climbing with one restricted operator, starting from the
    score of an accepted candidate and stopping at the first iteration that
    does not beat the running best under the evaluator.
    """

    def __init__(self, context: ProcedureContext, operator: SearchOperator,
                 evaluator: Optional[Evaluator] = None, name: Optional[str] = None):
        super().__init__(context, name)
        self.operator = operator
        self.evaluator = evaluator or BicEvaluator()

    def run(self, base: Estimation) -> Estimation:
        self.state = ProcedureState.RUNNING
        self._succeeded = False
        current = base
        last_score = self.evaluator.evaluate(GivenCandidate(base))

        while True:
            candidate = self.operator.search(current, self.evaluator)
            if not candidate.is_new:
                break
            score = self.evaluator.evaluate(candidate)
            if score <= last_score:
                break
            self.context.log.write_refinement_step(self, candidate)
            current = candidate.estimation
            last_score = score
            self.operator.update(candidate)
            self._succeeded = True

        self.state = ProcedureState.SUCCEEDED if self._succeeded else ProcedureState.STALLED
        return current


class SequentialProcedure(Procedure):
    """Runs procedures in order, each from the result of the previous one"""

    def __init__(self, context: ProcedureContext, procedures: Sequence[Procedure],
                 name: Optional[str] = None):
        super().__init__(context, name)
        self.procedures = list(procedures)

    def run(self, base: Estimation) -> Estimation:
        self.state = ProcedureState.RUNNING
        current = base
        for procedure in self.procedures:
            current = procedure.run(current)
        self._succeeded = any(p.succeeded() for p in self.procedures)
        self.state = ProcedureState.SUCCEEDED if self._succeeded else ProcedureState.STALLED
        return current


class ExpandProcedure(IterativeProcedure):
    """
    Grows the model by unit improvement. Node introductions are refined by
    relocating children of the origin node to the new node, and node
    combinations by combining more children into the new joint variable.
    """

    def __init__(self, context: ProcedureContext, operator_context: OperatorContext,
                 operators: Optional[List[SearchOperator]] = None):
        if operators is None:
            operators = [StateIntroducer(operator_context),
                         NodeIntroducer(operator_context),
                         NodeCombiner(operator_context)]
        super().__init__(context, operators, UnitImprovementEvaluator())
        self.operator_context = operator_context

    def refine(self, candidate: SearchCandidate) -> Estimation:
        if isinstance(candidate, NodeIntroductionCandidate):
            operator = RestrictedNodeRelocator(
                self.operator_context, candidate.origin, candidate.introduced)
        elif isinstance(candidate, NodeCombinationCandidate):
            operator = RestrictedNodeCombiner(
                self.operator_context, candidate.parent, candidate.joint)
        else:
            return candidate.estimation

        refinement = RefinementProcedure(self.context, operator,
                                         UnitImprovementEvaluator(candidate.base),
                                         name=f"{self.name}.{operator.name}")
        return refinement.run(candidate.estimation)


class AdjustProcedure(IterativeProcedure):
    def __init__(self, context: ProcedureContext, operator_context: OperatorContext):
        super().__init__(context, [NodeRelocator(operator_context)], BicEvaluator())


class StateIntroductionProcedure(IterativeProcedure):
    def __init__(self, context: ProcedureContext, operator_context: OperatorContext):
        super().__init__(context, [StateIntroducer(operator_context)],
                         UnitImprovementEvaluator())


class NodeSeparationProcedure(IterativeProcedure):
    def __init__(self, context: ProcedureContext, operator_context: OperatorContext):
        super().__init__(context, [NodeSeparator(operator_context)], BicEvaluator())


class NodeDeletionProcedure(IterativeProcedure):
    def __init__(self, context: ProcedureContext, operator_context: OperatorContext):
        super().__init__(context, [NodeDeletor(operator_context)], BicEvaluator())


class StateDeletionProcedure(IterativeProcedure):
    def __init__(self, context: ProcedureContext, operator_context: OperatorContext):
        super().__init__(context, [StateDeletor(operator_context)], BicEvaluator())


class SimplifyProcedure(SequentialProcedure):
    """Node separation, node deletion and state deletion in turn"""

    def __init__(self, context: ProcedureContext, operator_context: OperatorContext,
                 procedures: Optional[List[Procedure]] = None):
        if procedures is None:
            procedures = [NodeSeparationProcedure(context, operator_context),
                          NodeDeletionProcedure(context, operator_context),
                          StateDeletionProcedure(context, operator_context)]
        super().__init__(context, procedures)
