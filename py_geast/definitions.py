"""Core dataclass definitions for latent tree models"""

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

_next_number = 0
_name_lock = threading.Lock()
_GENERATED_NAME = re.compile(r"variable(\d+)")


def generate_name(prefix: str = "variable") -> str:
    """Generate a process-wide unique variable name"""
    global _next_number
    with _name_lock:
        number = _next_number
        _next_number += 1
    return f"{prefix}{number}"


def encounter_name(name: str):
    """Move the name counter past a name of the generated form read from elsewhere"""
    global _next_number
    match = _GENERATED_NAME.fullmatch(name)
    if match is None:
        return
    with _name_lock:
        _next_number = max(_next_number, int(match.group(1)) + 1)


class VariableKind(Enum):
    """Closed set of variable kinds a model node may hold"""
    DISCRETE_LATENT = "discrete_latent"
    DISCRETE_OBSERVED = "discrete_observed"
    CONTINUOUS_SCALAR = "continuous_scalar"
    CONTINUOUS_JOINT = "continuous_joint"


@dataclass(eq=False)
class Variable:
    """A random variable, compared by identity rather than by value"""
    name: str
    kind: VariableKind
    states: Tuple[str, ...] = ()  # Discrete only
    components: Tuple["Variable", ...] = ()  # Joint continuous only

    def __post_init__(self):
        """Validate the variable definition"""
        self.states = tuple(self.states)
        self.components = tuple(self.components)
        encounter_name(self.name)

        if self.is_discrete:
            if len(self.states) < 1:
                raise ValueError(f"Discrete variable {self.name} has no states")
            if len(set(self.states)) != len(self.states):
                raise ValueError(f"Duplicate states in variable {self.name}")
        elif self.kind is VariableKind.CONTINUOUS_JOINT:
            if len(self.components) < 1:
                raise ValueError(f"Joint variable {self.name} has no components")
            for component in self.components:
                if component.kind is not VariableKind.CONTINUOUS_SCALAR:
                    raise ValueError(
                        f"Joint variable {self.name} holds non-scalar {component.name}")

    @property
    def is_discrete(self) -> bool:
        return self.kind in (VariableKind.DISCRETE_LATENT,
                             VariableKind.DISCRETE_OBSERVED)

    @property
    def is_continuous(self) -> bool:
        return not self.is_discrete

    @property
    def is_latent(self) -> bool:
        return self.kind is VariableKind.DISCRETE_LATENT

    @property
    def cardinality(self) -> int:
        """Number of states of a discrete variable"""
        if not self.is_discrete:
            raise TypeError(f"Continuous variable {self.name} has no cardinality")
        return len(self.states)

    @property
    def scalars(self) -> Tuple["Variable", ...]:
        """Scalar continuous variables making up this continuous variable"""
        if self.kind is VariableKind.CONTINUOUS_SCALAR:
            return (self,)
        if self.kind is VariableKind.CONTINUOUS_JOINT:
            return self.components
        raise TypeError(f"Discrete variable {self.name} has no scalars")

    @property
    def dimension(self) -> int:
        """Number of continuous dimensions"""
        return len(self.scalars)

    def __repr__(self):
        return f"Variable({self.name}, {self.kind.value})"


def discrete_latent(cardinality: int, name: Optional[str] = None) -> Variable:
    """Create a latent variable with states s0 ... s{n-1}"""
    if cardinality < 1:
        raise ValueError(f"Invalid cardinality {cardinality}")
    return Variable(
        name=name or generate_name(),
        kind=VariableKind.DISCRETE_LATENT,
        states=tuple(f"s{i}" for i in range(cardinality))
    )


def discrete_observed(name: str, states: Sequence[str]) -> Variable:
    """Create an observed discrete variable"""
    return Variable(name=name, kind=VariableKind.DISCRETE_OBSERVED,
                    states=tuple(str(s) for s in states))


def continuous_scalar(name: str) -> Variable:
    """Create an observed scalar continuous variable"""
    return Variable(name=name, kind=VariableKind.CONTINUOUS_SCALAR)


def joint_continuous(scalars: Sequence[Variable],
                     name: Optional[str] = None) -> Variable:
    """Create a joint continuous variable, or return the scalar if only one"""
    scalars = tuple(scalars)
    if len(scalars) == 1:
        return scalars[0]
    return Variable(
        name=name or "+".join(s.name for s in scalars),
        kind=VariableKind.CONTINUOUS_JOINT,
        components=scalars
    )


def join(first: Variable, second: Variable) -> Variable:
    """Merge two continuous variables into one joint variable"""
    return joint_continuous(first.scalars + second.scalars)


@dataclass
class GaussianParameter:
    """Conditional Gaussian parameters of a continuous leaf, one block per parent state"""
    means: np.ndarray        # (parent states, d)
    covariances: np.ndarray  # (parent states, d, d)

    def __post_init__(self):
        """Validate shapes"""
        self.means = np.atleast_2d(np.asarray(self.means, dtype=float))
        self.covariances = np.asarray(self.covariances, dtype=float)
        if self.covariances.ndim == 2:
            self.covariances = self.covariances[np.newaxis]
        k, d = self.means.shape
        if self.covariances.shape != (k, d, d):
            raise ValueError(
                f"Covariance shape {self.covariances.shape} does not match means {self.means.shape}")

    @property
    def shape(self) -> Tuple[int, int]:
        return self.means.shape

    def copy(self) -> "GaussianParameter":
        return GaussianParameter(self.means.copy(), self.covariances.copy())


@dataclass
class Node:
    """Arena entry of a model graph"""
    variable: Variable
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
