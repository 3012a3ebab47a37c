"""Search candidates produced by the structure operators"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .definitions import Variable
from .estimation import Estimation
from .model import LatentTreeModel


@dataclass(eq=False)
class SearchCandidate:
    """
    A structural mutation of a base estimation. The model is owned by the
    candidate; the estimation and score are filled in by the search.
    """
    base: Estimation
    model: LatentTreeModel
    modification: Tuple[Variable, ...]  # Variables whose parameters are re-estimated
    element: str
    operator_name: str
    attributes: str = ""
    estimation: Optional[Estimation] = field(default=None, init=False)
    score: Optional[float] = field(default=None, init=False)
    index: int = field(default=0, init=False)  # Generation order

    def __post_init__(self):
        self.modification = tuple(self.modification)

    @property
    def is_new(self) -> bool:
        """Whether the candidate differs from its base"""
        return True

    @property
    def name(self) -> str:
        details = f"{self.element}; {self.attributes}" if self.attributes else self.element
        return f"{self.operator_name}({details})"

    def __repr__(self):
        score = "unscored" if self.score is None else f"score={self.score:.4f}"
        return f"{type(self).__name__}({self.name}, {score})"


class GivenCandidate(SearchCandidate):
    """Wraps an existing estimation unchanged; the "no improvement" result"""

    def __init__(self, base: Estimation):
        super().__init__(base, base.model, (), base.model.name, "Given")
        self.estimation = base

    @property
    def is_new(self) -> bool:
        return False


@dataclass(eq=False)
class NodeIntroductionCandidate(SearchCandidate):
    """Candidate whose new latent node was introduced next to the origin node"""
    origin: Optional[Variable] = None
    introduced: Optional[Variable] = None


@dataclass(eq=False)
class NodeCombinationCandidate(SearchCandidate):
    """Candidate in which continuous children of a node were combined"""
    parent: Optional[Variable] = None
    joint: Optional[Variable] = None
