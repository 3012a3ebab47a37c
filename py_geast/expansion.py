"""Operators that grow or rearrange a model"""

from itertools import combinations
from typing import List

import numpy as np

from .candidates import (NodeCombinationCandidate, NodeIntroductionCandidate,
                         SearchCandidate)
from .context import OperatorContext
from .definitions import Variable, VariableKind, discrete_latent, join
from .estimation import Estimation
from .model import LatentTreeModel
from .operators import SearchOperator, all_regular


def _with_extra_state(variable: Variable) -> Variable:
    states = variable.states + (f"s{variable.cardinality}",)
    while len(set(states)) != len(states):
        states = states[:-1] + (states[-1] + "'",)
    return Variable(variable.name, VariableKind.DISCRETE_LATENT, states)


class StateIntroducer(SearchOperator):
    """Adds one state to a latent variable"""
    short_name = "SI"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for variable in base.model.internal_variables:
            if variable.cardinality >= base.model.max_cardinality(variable):
                continue

            model = base.model.clone()
            new = _with_extra_state(variable)
            model.replace_variable(variable, new)
            self._extend_parameters(base.model, model, variable, new)
            candidates.append(SearchCandidate(
                base, model, [new] + model.children(new), variable.name,
                self.short_name, f"{variable.cardinality} -> {new.cardinality}"))
        return candidates

    @staticmethod
    def _extend_parameters(old_model: LatentTreeModel, model: LatentTreeModel,
                           old: Variable, new: Variable):
        """Split the mass of the last state to seed the new state"""
        table = old_model.parameters.get(old)
        if table is not None:
            table = np.asarray(table, dtype=float)
            last = table[..., -1:] / 2
            model.parameters[new] = np.concatenate([table[..., :-1], last, last], axis=-1)

        for child in model.children(new):
            parameter = old_model.parameters.get(child)
            if parameter is None:
                continue
            if child.is_discrete:
                model.parameters[child] = np.vstack([parameter, parameter[-1:]])
            else:
                extended = parameter.copy()
                extended.means = np.vstack([extended.means, extended.means[-1:]])
                extended.covariances = np.concatenate(
                    [extended.covariances, extended.covariances[-1:]])
                model.parameters[child] = extended


class NodeIntroducer(SearchOperator):
    """
    Introduces a new latent node next to a latent node with more than three
    neighbours, either above a pair of its children or between its parent
    and one of its children.
    """
    short_name = "NI"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for variable in base.model.internal_variables:
            if base.model.degree(variable) <= 3:
                continue
            children = base.model.children(variable)
            parent = base.model.parent(variable)

            # per child: pairs with the later children, then the parent pair
            for i, first in enumerate(children):
                for second in children[i + 1:]:
                    candidates.append(self._child_child(base, variable, first, second))
                if parent is not None:
                    candidates.append(self._parent_child(base, variable, parent, first))
        return [c for c in candidates if c is not None]

    def _child_child(self, base, variable, first, second):
        model = base.model.clone()
        new = discrete_latent(variable.cardinality)
        model.add_node(new)
        model.add_edge(new, variable)
        for child in (first, second):
            model.remove_edge(child, variable)
            model.add_edge(child, new)
        if not all_regular(model, new, variable):
            return None
        return NodeIntroductionCandidate(
            base, model, [new, first, second], variable.name,
            self.short_name, f"ChildChild {first.name}, {second.name}",
            origin=variable, introduced=new)

    def _parent_child(self, base, variable, parent, child):
        model = base.model.clone()
        new = discrete_latent(variable.cardinality)
        model.add_node(new)
        model.remove_edge(variable, parent)
        model.add_edge(new, parent)
        model.add_edge(variable, new)
        model.remove_edge(child, variable)
        model.add_edge(child, new)
        if not all_regular(model, new, variable, parent):
            return None
        return NodeIntroductionCandidate(
            base, model, [new, variable, child], variable.name,
            self.short_name, f"ParentChild {parent.name}, {child.name}",
            origin=variable, introduced=new)


class NodeCombiner(SearchOperator):
    """Combines two continuous children of a latent node into one joint leaf"""
    short_name = "NC"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for parent in base.model.internal_variables:
            continuous = [c for c in base.model.children(parent) if c.is_continuous]
            for first, second in combinations(continuous, 2):
                candidates.append(combine(base, parent, first, second, self.short_name))
        return candidates


def combine(base: Estimation, parent: Variable, first: Variable, second: Variable,
            short_name: str) -> NodeCombinationCandidate:
    """Candidate replacing two continuous children of parent by their joint"""
    model = base.model.clone()
    joint = join(first, second)
    model.remove_node(first)
    model.remove_node(second)
    model.add_node(joint)
    model.add_edge(joint, parent)
    return NodeCombinationCandidate(
        base, model, [joint], parent.name, short_name,
        f"{first.name}, {second.name}", parent=parent, joint=joint)


class NodeRelocator(SearchOperator):
    """
    Moves a node under another latent node. The model is re-rooted at the
    destination first so that every move is a detach and attach, after which
    ancestors left without children are pruned.
    """
    short_name = "NR"

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        candidates = []
        for destination in base.model.internal_variables:
            rooted = base.model.clone()
            rooted.change_root(destination)

            for node in rooted.preorder():
                if rooted.is_root(node) or rooted.parent(node) is destination:
                    continue
                candidate = self._relocate(base, rooted, node, destination)
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def _relocate(self, base: Estimation, rooted: LatentTreeModel,
                  node: Variable, destination: Variable):
        model = rooted.clone()
        ancestor = model.parent(node)
        model.remove_edge(node, ancestor)
        model.add_edge(node, destination)

        # Prune the chain of ancestors left without children
        while model.is_leaf(ancestor) and ancestor.is_latent:
            next_ancestor = model.parent(ancestor)
            model.remove_node(ancestor)
            ancestor = next_ancestor

        if not all_regular(model, ancestor, destination, node):
            return None
        return SearchCandidate(
            base, model, [node], node.name, self.short_name,
            f"{rooted.parent(node).name} -> {destination.name}")


class RestrictedNodeRelocator(SearchOperator):
    """Moves children of a fixed origin node to a fixed destination node"""
    short_name = "NR"

    def __init__(self, context: OperatorContext, origin: Variable, destination: Variable):
        super().__init__(context)
        self.origin = origin
        self.destination = destination

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        model = base.model
        if self.origin not in model or self.destination not in model:
            return []
        if model.degree(self.origin) < 4:
            return []

        candidates = []
        for child in model.children(self.origin):
            if child is self.destination:
                continue
            relocated = model.clone()
            relocated.remove_edge(child, self.origin)
            relocated.add_edge(child, self.destination)
            if all_regular(relocated, self.origin, self.destination, child):
                candidates.append(SearchCandidate(
                    base, relocated, [child], child.name, self.short_name,
                    f"{self.origin.name} -> {self.destination.name}"))
        return candidates


class RestrictedNodeCombiner(SearchOperator):
    """Combines a tracked joint variable with the other continuous children of a fixed parent"""
    short_name = "NC"

    def __init__(self, context: OperatorContext, parent: Variable, combined: Variable):
        super().__init__(context)
        self.parent = parent
        self.combined = combined

    def generate_candidates(self, base: Estimation) -> List[SearchCandidate]:
        model = base.model
        if self.combined not in model or self.parent not in model:
            return []
        return [combine(base, self.parent, self.combined, other, self.short_name)
                for other in model.children(self.parent)
                if other.is_continuous and other is not self.combined]

    def update(self, latest: SearchCandidate):
        """Track the joint variable created by the accepted candidate"""
        if isinstance(latest, NodeCombinationCandidate) and latest.joint is not None:
            self.combined = latest.joint
