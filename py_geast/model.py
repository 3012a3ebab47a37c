"""Implementation of the latent tree model graph and its structural edits"""

from collections import deque
from typing import Dict, Iterable, Iterator, List, Optional, Union

import numpy as np

from .definitions import (GaussianParameter, Node, Variable, VariableKind,
                          discrete_latent)

Parameter = Union[np.ndarray, GaussianParameter]


class LatentTreeModel:
    """
    A tree of nodes, each holding one variable.

    Nodes live in an arena addressed by integer index with explicit parent and
    children links. Parameters are kept in a separate map keyed by variable;
    an entry is None when the node's parameters have to be regenerated
    after a structural edit.
    """

    def __init__(self, name: str = "model"):
        self.name = name
        self._nodes: Dict[int, Node] = {}
        self._index: Dict[Variable, int] = {}
        self._next_index = 0
        self.parameters: Dict[Variable, Optional[Parameter]] = {}

    # Node access

    def __contains__(self, variable: Variable) -> bool:
        return variable in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def variables(self) -> List[Variable]:
        """Variables in arena order"""
        return [node.variable for node in self._nodes.values()]

    def index_of(self, variable: Variable) -> int:
        try:
            return self._index[variable]
        except KeyError:
            raise KeyError(f"Variable {variable.name} is not in model {self.name}")

    def get_variable(self, name: str) -> Variable:
        """Look up a variable by name"""
        for node in self._nodes.values():
            if node.variable.name == name:
                return node.variable
        raise KeyError(f"No variable named {name} in model {self.name}")

    def parent(self, variable: Variable) -> Optional[Variable]:
        index = self._nodes[self.index_of(variable)].parent
        return None if index is None else self._nodes[index].variable

    def children(self, variable: Variable) -> List[Variable]:
        return [self._nodes[i].variable
                for i in self._nodes[self.index_of(variable)].children]

    def neighbors(self, variable: Variable) -> List[Variable]:
        """Parent (if any) followed by children"""
        parent = self.parent(variable)
        result = [parent] if parent is not None else []
        return result + self.children(variable)

    def degree(self, variable: Variable) -> int:
        return len(self.neighbors(variable))

    def is_root(self, variable: Variable) -> bool:
        return self._nodes[self.index_of(variable)].parent is None

    def is_leaf(self, variable: Variable) -> bool:
        return not self._nodes[self.index_of(variable)].children

    @property
    def roots(self) -> List[Variable]:
        return [node.variable for node in self._nodes.values() if node.parent is None]

    @property
    def root(self) -> Variable:
        """The unique root of a connected tree"""
        roots = self.roots
        if len(roots) != 1:
            raise ValueError(f"Model {self.name} has {len(roots)} roots")
        return roots[0]

    @property
    def internal_variables(self) -> List[Variable]:
        """Latent variables in arena order"""
        return [node.variable for node in self._nodes.values()
                if node.variable.kind is VariableKind.DISCRETE_LATENT]

    @property
    def continuous_variables(self) -> List[Variable]:
        return [node.variable for node in self._nodes.values()
                if node.variable.is_continuous]

    @property
    def observed_variables(self) -> List[Variable]:
        return [node.variable for node in self._nodes.values()
                if node.variable.kind is not VariableKind.DISCRETE_LATENT]

    def preorder(self) -> List[Variable]:
        """Breadth-first order from the root; every parent precedes its children"""
        order = []
        queue = deque([self.index_of(self.root)])
        while queue:
            index = queue.popleft()
            order.append(self._nodes[index].variable)
            queue.extend(self._nodes[index].children)
        return order

    def path(self, source: Variable, target: Variable) -> List[Variable]:
        """Variables on the tree path from source to target, both inclusive"""
        ancestors = []
        current = source
        while current is not None:
            ancestors.append(current)
            current = self.parent(current)

        target_chain = []
        current = target
        while current not in ancestors:
            target_chain.append(current)
            current = self.parent(current)
            if current is None:
                raise ValueError(
                    f"{source.name} and {target.name} are not connected")

        return ancestors[:ancestors.index(current) + 1] + list(reversed(target_chain))

    # Structural edits

    def add_node(self, variable: Variable) -> int:
        """Add a disconnected node holding the variable"""
        if variable in self._index:
            raise ValueError(f"Variable {variable.name} already in model {self.name}")
        index = self._next_index
        self._next_index += 1
        self._nodes[index] = Node(variable)
        self._index[variable] = index
        self.parameters[variable] = None
        return index

    def remove_node(self, variable: Variable):
        """Remove the node and all its edges; its children become roots"""
        index = self.index_of(variable)
        node = self._nodes[index]
        if node.parent is not None:
            self.remove_edge(variable, self._nodes[node.parent].variable)
        for child in list(node.children):
            self.remove_edge(self._nodes[child].variable, variable)
        del self._nodes[index]
        del self._index[variable]
        del self.parameters[variable]

    def add_edge(self, child: Variable, parent: Variable):
        """Connect child under parent; child must currently be a root"""
        child_index = self.index_of(child)
        parent_index = self.index_of(parent)
        if child_index == parent_index:
            raise ValueError(f"Cannot connect {child.name} to itself")
        if self._nodes[child_index].parent is not None:
            raise ValueError(f"{child.name} already has a parent")
        if parent.is_continuous:
            raise ValueError(f"Continuous variable {parent.name} cannot have children")
        self._nodes[child_index].parent = parent_index
        self._nodes[parent_index].children.append(child_index)
        self.parameters[child] = None

    def remove_edge(self, child: Variable, parent: Variable):
        """Disconnect child from parent"""
        child_index = self.index_of(child)
        parent_index = self.index_of(parent)
        if self._nodes[child_index].parent != parent_index:
            raise ValueError(f"{parent.name} is not the parent of {child.name}")
        self._nodes[child_index].parent = None
        self._nodes[parent_index].children.remove(child_index)
        self.parameters[child] = None

    def replace_variable(self, old: Variable, new: Variable):
        """Swap the variable held by a node, keeping its edges"""
        index = self.index_of(old)
        if new in self._index:
            raise ValueError(f"Variable {new.name} already in model {self.name}")
        self._nodes[index].variable = new
        del self._index[old]
        self._index[new] = index
        del self.parameters[old]
        self.parameters[new] = None
        for child in self.children(new):
            self.parameters[child] = None

    def change_root(self, variable: Variable):
        """
        Make the variable the root by reversing the edges on the path from the
        current root. Parameters along the path are re-expressed with Bayes'
        rule so that the joint distribution is unchanged when all of them are
        present.
        """
        old_root = self.root
        if variable is old_root:
            return

        path = self.path(old_root, variable)
        reparameterize = all(self.parameters.get(v) is not None for v in path)

        marginals = []
        if reparameterize:
            marginal = np.asarray(self.parameters[old_root], dtype=float)
            marginals.append(marginal)
            for v in path[1:]:
                marginal = marginal @ self.parameters[v]
                marginals.append(marginal)

        conditionals = [self.parameters.get(v) for v in path]
        for upper, lower in zip(path, path[1:]):
            self.remove_edge(lower, upper)
        for upper, lower in zip(path, path[1:]):
            self.add_edge(upper, lower)

        if reparameterize:
            self.parameters[variable] = marginals[-1]
            for i in range(len(path) - 1):
                # P(upper | lower) = P(lower | upper) P(upper) / P(lower)
                joint = marginals[i][:, np.newaxis] * conditionals[i + 1]
                column = joint.sum(axis=0)
                with np.errstate(invalid="ignore", divide="ignore"):
                    reversed_table = (joint / column).T
                uniform = np.full(joint.shape[0], 1.0 / joint.shape[0])
                reversed_table[column <= 0] = uniform
                self.parameters[path[i]] = reversed_table

    def clone(self) -> "LatentTreeModel":
        """Structurally independent copy sharing the variable objects"""
        other = LatentTreeModel(self.name)
        other._next_index = self._next_index
        other._index = dict(self._index)
        other._nodes = {
            index: Node(node.variable, node.parent, list(node.children))
            for index, node in self._nodes.items()
        }
        other.parameters = {
            variable: None if parameter is None else parameter.copy()
            for variable, parameter in self.parameters.items()
        }
        return other

    # Structural properties

    def is_tree(self) -> bool:
        """Single root, every node reachable from it, no cycles"""
        if len(self.roots) != 1:
            return False
        seen = set()
        for variable in self.preorder():
            if variable in seen:
                return False
            seen.add(variable)
        return len(seen) == len(self._nodes)

    def validate(self):
        """Raise ValueError if a structural invariant does not hold"""
        if not self.is_tree():
            raise ValueError(f"Model {self.name} is not a single tree")
        for node in self._nodes.values():
            variable = node.variable
            if node.children and variable.kind is not VariableKind.DISCRETE_LATENT:
                raise ValueError(f"Internal node {variable.name} is not latent")
            if not self.has_regular_cardinality(variable):
                raise ValueError(f"Latent variable {variable.name} is not regular")

    def max_cardinality(self, variable: Variable) -> float:
        """
        Largest cardinality a latent variable may take while the model stays
        regular. Unbounded if any neighbour is continuous.
        """
        product = 1
        largest = 1
        for neighbor in self.neighbors(variable):
            if neighbor.is_continuous:
                return float("inf")
            product *= neighbor.cardinality
            largest = max(largest, neighbor.cardinality)
        return product // largest

    def has_regular_cardinality(self, variable: Variable) -> bool:
        """Whether the variable satisfies the regularity bound; leaves always do"""
        if variable.kind is not VariableKind.DISCRETE_LATENT or self.is_leaf(variable):
            return True
        return variable.cardinality <= self.max_cardinality(variable)

    def is_regular(self) -> bool:
        return all(self.has_regular_cardinality(v) for v in self.internal_variables)

    def node_dimension(self, variable: Variable) -> int:
        """Number of free parameters of one node"""
        parent = self.parent(variable)
        parent_states = 1 if parent is None else parent.cardinality
        if variable.is_discrete:
            return (variable.cardinality - 1) * parent_states
        d = variable.dimension
        return d * (d + 3) // 2 * parent_states

    def compute_dimension(self) -> int:
        """Number of free parameters of the model"""
        return sum(self.node_dimension(v) for v in self.variables)

    # Parameters

    def expected_shape(self, variable: Variable) -> tuple:
        """Shape the parameter of a node must have given its parent"""
        parent = self.parent(variable)
        if variable.is_discrete:
            if parent is None:
                return (variable.cardinality,)
            return (parent.cardinality, variable.cardinality)
        parent_states = 1 if parent is None else parent.cardinality
        return (parent_states, variable.dimension)

    def has_valid_parameter(self, variable: Variable) -> bool:
        parameter = self.parameters.get(variable)
        return parameter is not None and parameter.shape == self.expected_shape(variable)

    def missing_parameters(self) -> List[Variable]:
        """Variables whose parameters are absent or of the wrong shape"""
        return [v for v in self.variables if not self.has_valid_parameter(v)]

    def edges(self) -> Iterator[tuple]:
        """(child, parent) pairs"""
        for node in self._nodes.values():
            if node.parent is not None:
                yield node.variable, self._nodes[node.parent].variable

    def describe(self) -> str:
        """Compact structure description, e.g. variable0(x1, variable1(x2, x3))"""
        def render(variable: Variable) -> str:
            children = self.children(variable)
            label = variable.name
            if variable.is_discrete:
                label += f"[{variable.cardinality}]"
            if not children:
                return label
            return f"{label}({', '.join(render(c) for c in children)})"
        return render(self.root)

    def __repr__(self):
        return f"LatentTreeModel({self.name}: {self.describe() if len(self) else ''})"


def build_local_independence_model(variables: Iterable[Variable],
                                   cardinality: int = 2,
                                   name: str = "model") -> LatentTreeModel:
    """One latent root with every observed variable attached as a leaf"""
    model = LatentTreeModel(name)
    root = discrete_latent(cardinality)
    model.add_node(root)
    for variable in variables:
        model.add_node(variable)
        model.add_edge(variable, root)
    return model
