"""Operators that simplify a model"""

from typing import List

import numpy as np

from .candidates import SearchCandidate
from .definitions import (GaussianParameter, Variable, VariableKind,
                          joint_continuous)
from .estimation import Estimation
from .model import LatentTreeModel
from .operators import SearchOperator, all_regular


class StateDeletor(SearchOperator):
    """Removes one state of a latent variable with more than two states"""
    short_name = "SD"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for variable in base.model.internal_variables:
            if variable.cardinality <= 2:
                continue
            for state in range(variable.cardinality):
                states = variable.states[:state] + variable.states[state + 1:]
                new = Variable(variable.name, VariableKind.DISCRETE_LATENT, states)
                model = base.model.clone()
                model.replace_variable(variable, new)
                if not all_regular(model, *model.neighbors(new)):
                    continue
                self._reduce_parameters(base.model, model, variable, new, state)
                candidates.append(SearchCandidate(
                    base, model, [new] + model.children(new), variable.name,
                    self.short_name, f"delete {variable.states[state]}"))
        return candidates

    @staticmethod
    def _reduce_parameters(old_model: LatentTreeModel, model: LatentTreeModel,
                           old: Variable, new: Variable, state: int):
        """Drop the deleted state, spreading its mass over the remaining states"""
        table = old_model.parameters.get(old)
        if table is not None:
            reduced = np.delete(np.asarray(table, dtype=float), state, axis=-1)
            totals = reduced.sum(axis=-1, keepdims=True)
            uniform = np.full_like(reduced, 1.0 / new.cardinality)
            with np.errstate(invalid="ignore", divide="ignore"):
                model.parameters[new] = np.where(totals > 0, reduced / totals, uniform)

        for child in model.children(new):
            parameter = old_model.parameters.get(child)
            if parameter is None:
                continue
            if child.is_discrete:
                model.parameters[child] = np.delete(parameter, state, axis=0)
            else:
                model.parameters[child] = GaussianParameter(
                    np.delete(parameter.means, state, axis=0),
                    np.delete(parameter.covariances, state, axis=0))


class NodeDeletor(SearchOperator):
    """
    Removes a latent node, attaching its other neighbours to one of its
    latent neighbours (the dock).
    """
    short_name = "ND"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for variable in base.model.internal_variables:
            for dock in base.model.neighbors(variable):
                if not dock.is_latent or base.model.is_leaf(dock):
                    continue

                model = base.model.clone()
                model.change_root(dock)
                moved = model.children(variable)
                for child in moved:
                    model.remove_edge(child, variable)
                    model.add_edge(child, dock)
                model.remove_node(variable)

                if all_regular(model, dock, *moved):
                    candidates.append(SearchCandidate(
                        base, model, moved, variable.name, self.short_name,
                        f"dock {dock.name}"))
        return candidates


class NodeSeparator(SearchOperator):
    """Splits a joint continuous leaf into separate leaves"""
    short_name = "NS"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for variable in base.model.continuous_variables:
            if variable.kind is not VariableKind.CONTINUOUS_JOINT:
                continue
            scalars = variable.scalars
            if len(scalars) == 2:
                splits = [[0]]
            else:
                splits = [[i] for i in range(len(scalars))]

            for split in splits:
                rest = [i for i in range(len(scalars)) if i not in split]
                candidates.append(self._separate(base, variable, split, rest))
        return candidates

    def _separate(self, base: Estimation, variable: Variable, *groups) -> SearchCandidate:
        model = base.model.clone()
        parent = model.parent(variable)
        parameter = base.model.parameters.get(variable)
        model.remove_node(variable)

        pieces = []
        for group in groups:
            piece = joint_continuous([variable.scalars[i] for i in group])
            model.add_node(piece)
            model.add_edge(piece, parent)
            if parameter is not None:
                model.parameters[piece] = GaussianParameter(
                    parameter.means[:, group],
                    parameter.covariances[:, group][:, :, group])
            pieces.append(piece)

        return SearchCandidate(base, model, pieces, variable.name, self.short_name,
                               f"separate {pieces[0].name}")
