"""Tests for the search procedures, driven by scripted operators"""
from types import SimpleNamespace

import pytest

from py_geast import procedures
from py_geast.candidates import GivenCandidate, NodeCombinationCandidate, SearchCandidate
from py_geast.context import ProcedureContext
from py_geast.evaluators import BicEvaluator, UnitImprovementEvaluator
from py_geast.expansion import NodeCombiner, NodeIntroducer, StateIntroducer
from py_geast.log import SearchLog
from py_geast.procedures import (ExpandProcedure, IterativeProcedure, ProcedureState,
                                 RefinementProcedure, SequentialProcedure, SimplifyProcedure)


def estimation(bic, dimension=1):
    model = SimpleNamespace(name="m", describe=lambda: "m")
    return SimpleNamespace(model=model, origin=object(), bic=bic, dimension=dimension)


class ScriptedOperator:
    """
    Returns one candidate per search with the next scripted BIC, or BIC and
    dimension pair, then the base
    """
    name = "Scripted"

    def __init__(self, scores):
        self.scores = list(scores)
        self.updates = []

    def search(self, base, evaluator):
        if not self.scores:
            return GivenCandidate(base)
        score = self.scores.pop(0)
        result = estimation(*score) if isinstance(score, tuple) else estimation(score)
        candidate = SearchCandidate(base, result.model, (), "x", "FX")
        candidate.estimation = result
        candidate.score = evaluator.evaluate(candidate)
        return candidate

    def update(self, latest):
        self.updates.append(latest)


@pytest.fixture
def procedure_context():
    return ProcedureContext(SearchLog(None), threshold=0.01)


class TestIterativeProcedure:
    def test_accepts_until_improvement_too_small(self, procedure_context):
        operator = ScriptedOperator([-90.0, -85.0, -84.999])
        procedure = IterativeProcedure(procedure_context, [operator], BicEvaluator())

        result = procedure.run(estimation(-100.0))

        assert result.bic == -85.0
        assert procedure.succeeded()
        assert procedure.state is ProcedureState.SUCCEEDED
        assert len(operator.updates) == 2

    def test_stalls_without_candidates(self, procedure_context):
        base = estimation(-100.0)
        procedure = IterativeProcedure(procedure_context, [ScriptedOperator([])],
                                       BicEvaluator())

        assert procedure.run(base) is base
        assert not procedure.succeeded()
        assert procedure.state is ProcedureState.STALLED

    def test_best_over_operators(self, procedure_context):
        first, second = ScriptedOperator([-95.0]), ScriptedOperator([-90.0])
        procedure = IterativeProcedure(procedure_context, [first, second], BicEvaluator())

        result = procedure.run(estimation(-100.0))

        assert result.bic == -90.0
        # every operator hears about the accepted candidate
        assert first.updates == second.updates
        assert len(first.updates) == 1

    def test_unit_improvement(self, procedure_context):
        # a gain of 0.5 spread over 100 new parameters is below the threshold
        operator = ScriptedOperator([])
        base = estimation(-100.0, dimension=10)
        candidate = SearchCandidate(base, base.model, (), "x", "FX")
        candidate.estimation = estimation(-99.5, dimension=110)
        operator.search = lambda current, evaluator: candidate
        procedure = IterativeProcedure(procedure_context, [operator],
                                       UnitImprovementEvaluator())

        assert procedure.run(base) is base
        assert procedure.state is ProcedureState.STALLED

    def test_needs_operators(self, procedure_context):
        with pytest.raises(ValueError):
            IterativeProcedure(procedure_context, [], BicEvaluator())


class TestRefinementProcedure:
    def test_strict_hill_climbing(self, procedure_context):
        operator = ScriptedOperator([-95.0, -92.0, -93.0, -80.0])
        procedure = RefinementProcedure(procedure_context, operator)

        result = procedure.run(estimation(-100.0))

        assert result.bic == -92.0
        assert len(operator.updates) == 2
        assert operator.scores == [-80.0]
        assert procedure.succeeded()

    def test_no_improvement(self, procedure_context):
        base = estimation(-100.0)
        procedure = RefinementProcedure(procedure_context, ScriptedOperator([-100.0]))

        assert procedure.run(base) is base
        assert procedure.state is ProcedureState.STALLED

    def test_unit_improvement_against_outer_base(self, procedure_context):
        # accepted: 10 over 2 new parameters; next: 11 over 10, less per parameter
        outer = estimation(-100.0, dimension=10)
        accepted = estimation(-90.0, dimension=12)
        operator = ScriptedOperator([(-89.0, 20)])
        procedure = RefinementProcedure(procedure_context, operator,
                                        UnitImprovementEvaluator(outer))

        assert procedure.run(accepted) is accepted
        assert procedure.state is ProcedureState.STALLED
        assert operator.updates == []

    def test_unit_improvement_accepts_better_rate(self, procedure_context):
        outer = estimation(-100.0, dimension=10)
        operator = ScriptedOperator([(-80.0, 13), (-79.0, 20)])
        procedure = RefinementProcedure(procedure_context, operator,
                                        UnitImprovementEvaluator(outer))

        result = procedure.run(estimation(-90.0, dimension=12))

        assert (result.bic, result.dimension) == (-80.0, 13)
        assert procedure.succeeded()


class TestSequentialProcedure:
    def test_runs_in_order(self, procedure_context):
        first = IterativeProcedure(procedure_context, [ScriptedOperator([-90.0])],
                                   BicEvaluator(), name="first")
        second = IterativeProcedure(procedure_context, [ScriptedOperator([])],
                                    BicEvaluator(), name="second")
        sequence = SequentialProcedure(procedure_context, [first, second])

        result = sequence.run(estimation(-100.0))

        assert result.bic == -90.0
        assert sequence.succeeded()
        assert not second.succeeded()

    def test_fails_when_all_fail(self, procedure_context):
        children = [IterativeProcedure(procedure_context, [ScriptedOperator([])],
                                       BicEvaluator()) for _ in range(2)]
        sequence = SequentialProcedure(procedure_context, children)

        sequence.run(estimation(-100.0))

        assert not sequence.succeeded()
        assert sequence.state is ProcedureState.STALLED


class TestDefaults:
    def test_expand_operators(self, procedure_context):
        procedure = ExpandProcedure(procedure_context, None)
        assert [type(o) for o in procedure.operators] == [
            StateIntroducer, NodeIntroducer, NodeCombiner]
        assert isinstance(procedure.evaluator, UnitImprovementEvaluator)

    def test_expand_refine_passes_other_candidates(self, procedure_context):
        base = estimation(-100.0)
        candidate = SearchCandidate(base, base.model, (), "x", "SI")
        candidate.estimation = estimation(-90.0)
        procedure = ExpandProcedure(procedure_context, None)

        assert procedure.refine(candidate) is candidate.estimation

    def test_expand_refines_against_pre_expansion_base(self, procedure_context, monkeypatch):
        created = []

        class RecordingRefinement(RefinementProcedure):
            def run(self, base):
                created.append(self)
                return base

        monkeypatch.setattr(procedures, "RefinementProcedure", RecordingRefinement)
        base = estimation(-100.0, dimension=10)
        candidate = NodeCombinationCandidate(base, base.model, (), "x", "NC")
        candidate.estimation = estimation(-90.0, dimension=12)

        ExpandProcedure(procedure_context, None).refine(candidate)

        evaluator = created[0].evaluator
        assert isinstance(evaluator, UnitImprovementEvaluator)
        assert evaluator.base is base
        assert evaluator.evaluate(GivenCandidate(candidate.estimation)) == 5.0

    def test_simplify_order(self, procedure_context):
        procedure = SimplifyProcedure(procedure_context, None)
        assert [p.name for p in procedure.procedures] == [
            "NodeSeparationProcedure", "NodeDeletionProcedure", "StateDeletionProcedure"]
