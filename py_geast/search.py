"""Top-level latent tree structure search"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .context import Context
from .data import MixedDataSet
from .errors import SearchError
from .estimation import EmFramework, EmParameters, Estimation, LocalEm
from .expansion import NodeCombiner, NodeIntroducer, StateIntroducer
from .log import SearchLog
from .model import LatentTreeModel, build_local_independence_model
from .procedures import (AdjustProcedure, ExpandProcedure, NodeDeletionProcedure,
                         NodeSeparationProcedure, Procedure, SimplifyProcedure,
                         StateDeletionProcedure)

logger = logging.getLogger(__name__)


@dataclass
class Geast:
    """
    Runs the expand, adjust and simplify phases until none of them can
    improve the model any further. A Geast instance learns once; its
    context is shut down when learning ends.
    """
    context: Context
    procedures: Optional[List[Procedure]] = None
    _learned: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        """Build the default phases"""
        if self.procedures is None:
            procedure_context = self.context.procedure_context()
            operator_context = self.context.operator_context()
            self.procedures = [
                ExpandProcedure(procedure_context, operator_context),
                AdjustProcedure(procedure_context, operator_context),
                SimplifyProcedure(procedure_context, operator_context),
            ]
        if not self.procedures:
            raise ValueError("At least one procedure is required")

    @classmethod
    def create(cls, data: MixedDataSet, log: Optional[SearchLog] = None, **kwargs) -> "Geast":
        """Default learner with the default EM settings"""
        return cls(Context.create(data, log, **kwargs))

    @classmethod
    def without_pouch(cls, data: MixedDataSet, em: Optional[EmFramework] = None,
                      log: Optional[SearchLog] = None, **kwargs) -> "Geast":
        """Learner that only expands and then simplifies, using one EM"""
        context = Context.single_em(data, em or _default_single_em(data), log, **kwargs)
        procedure_context = context.procedure_context()
        operator_context = context.operator_context()
        expand = ExpandProcedure(procedure_context, operator_context,
                                 [StateIntroducer(operator_context),
                                  NodeIntroducer(operator_context)])
        simplify = SimplifyProcedure(procedure_context, operator_context,
                                     [NodeDeletionProcedure(procedure_context, operator_context),
                                      StateDeletionProcedure(procedure_context, operator_context)])
        return cls(context, [expand, simplify])

    @classmethod
    def pouch_mixture(cls, data: MixedDataSet, em: Optional[EmFramework] = None,
                      log: Optional[SearchLog] = None, **kwargs) -> "Geast":
        """Learner of mixtures of pouch leaves under a single latent node, using one EM"""
        context = Context.single_em(data, em or _default_single_em(data), log, **kwargs)
        procedure_context = context.procedure_context()
        operator_context = context.operator_context()
        expand = ExpandProcedure(procedure_context, operator_context,
                                 [StateIntroducer(operator_context),
                                  NodeCombiner(operator_context)])
        simplify = SimplifyProcedure(procedure_context, operator_context,
                                     [NodeSeparationProcedure(procedure_context, operator_context),
                                      StateDeletionProcedure(procedure_context, operator_context)])
        return cls(context, [expand, simplify])

    def learn(self, initial: Optional[LatentTreeModel] = None) -> Estimation:
        """
        Learn a model starting from the initial model, or from the local
        independence model over the non-class variables if none is given.
        """
        if self._learned:
            raise SearchError("This learner has already been used")
        self._learned = True

        context = self.context
        log = context.log
        start_time = time.time()
        try:
            log.write_settings(context.describe())
            log.write_data(context.data)

            if initial is None:
                model = build_local_independence_model(context.data.non_class_variables())
                context.generator.generate(model)
            else:
                model = initial
                context.data.synchronize(model)
                context.generator.generate_missing(model)

            current = context.estimation_em.estimate(model)
            log.write_estimation(current, "initial")

            for procedure in self.procedures:
                current = procedure.run(current)
            current = self._repeat(current)

            final = context.estimation_em.estimate(current)
            log.write_estimation(final, "final")
            logger.info("Search finished in %.1f seconds: %s",
                        time.time() - start_time, final)
            return final
        finally:
            context.shutdown()
            log.close()

    def _repeat(self, current: Estimation) -> Estimation:
        """Cycle through the procedures until all others failed on their last run"""
        while True:
            for i, procedure in enumerate(self.procedures):
                others = self.procedures[:i] + self.procedures[i + 1:]
                if not any(p.succeeded() for p in others):
                    return current
                current = procedure.run(current)


def _default_single_em(data: MixedDataSet) -> EmFramework:
    return LocalEm(data, EmParameters(reuse_parameters=True, restarts=16,
                                      max_steps=200, threshold=0.01))
