"""Mixed discrete/continuous data set backed by numpy arrays"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .definitions import Variable, VariableKind, continuous_scalar, discrete_observed
from .errors import SettingsError, StructureMismatchError
from .model import LatentTreeModel

logger = logging.getLogger(__name__)

MISSING_CODE = -1
NA_VALUES = ["?", ""]


@dataclass
class MixedDataSet:
    """
    Read-only (after loading) table of cases over discrete and continuous
    scalar variables. Discrete values are stored as state codes with -1 for
    missing, continuous values as floats with NaN for missing.
    """
    variables: List[Variable]
    values: Dict[Variable, np.ndarray]
    weights: Optional[np.ndarray] = None
    name: str = "data"
    class_variable: Optional[Variable] = field(default=None)

    def __post_init__(self):
        """Validate columns and fill default weights"""
        sizes = {len(self.values[v]) for v in self.variables}
        if len(sizes) > 1:
            raise ValueError(f"Columns have different lengths: {sorted(sizes)}")
        size = sizes.pop() if sizes else 0

        if self.weights is None:
            self.weights = np.ones(size)
        self.weights = np.asarray(self.weights, dtype=float)
        if len(self.weights) != size:
            raise ValueError("Weights do not match the number of cases")

        for variable in self.variables:
            if variable.kind not in (VariableKind.DISCRETE_OBSERVED,
                                     VariableKind.CONTINUOUS_SCALAR):
                raise ValueError(f"Data variable {variable.name} must be observed and scalar")

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame,
                       discrete: Optional[Iterable[str]] = None,
                       name: str = "data") -> "MixedDataSet":
        """
        Build a data set from a DataFrame. Object, boolean and categorical
        columns (and any listed in discrete) become discrete variables with
        sorted state names; numeric columns become continuous scalars.
        """
        discrete = set(discrete or [])
        variables = []
        values = {}

        for column in frame.columns:
            series = frame[column]
            is_discrete = (column in discrete
                           or not pd.api.types.is_numeric_dtype(series)
                           or pd.api.types.is_bool_dtype(series))

            if is_discrete:
                present = series.dropna().unique()
                try:
                    states = sorted(present)
                except TypeError:
                    states = sorted(present, key=str)
                state_names = [str(s) for s in states]
                variable = discrete_observed(str(column), state_names)
                lookup = {state: code for code, state in enumerate(state_names)}
                codes = series.map(lambda v: MISSING_CODE if pd.isna(v) else lookup[str(v)])
                values[variable] = codes.to_numpy(dtype=int)
            else:
                variable = continuous_scalar(str(column))
                values[variable] = series.to_numpy(dtype=float)

            variables.append(variable)

        return cls(variables, values, name=name)

    @classmethod
    def from_file(cls, path: Union[str, Path], sep: str = ",",
                  discrete: Optional[Iterable[str]] = None,
                  class_variable: Union[str, int, None] = None) -> "MixedDataSet":
        """Load a data set from a delimited text file with a header row"""
        path = Path(path)
        frame = pd.read_csv(path, sep=sep, na_values=NA_VALUES,
                            keep_default_na=True, skipinitialspace=True)
        data = cls.from_dataframe(frame, discrete=discrete, name=path.stem)
        if class_variable is not None:
            data.set_class_variable(class_variable)

        logger.info("Loaded %d cases over %d variables from %s",
                    data.size, len(data.variables), path)
        return data

    @property
    def size(self) -> int:
        """Number of cases"""
        return len(self.weights)

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    def index_of(self, variable: Variable) -> int:
        return self.variables.index(variable)

    def get_variable(self, name: str) -> Variable:
        for variable in self.variables:
            if variable.name == name:
                return variable
        raise KeyError(f"No variable named {name} in data {self.name}")

    def value(self, variable: Variable, case: int):
        """Value of a variable in a case; state name for discrete, None if missing"""
        raw = self.values[variable][case]
        if self.is_missing(variable, case):
            return None
        if variable.is_discrete:
            return variable.states[raw]
        return float(raw)

    def weight(self, case: int) -> float:
        return float(self.weights[case])

    def is_missing(self, variable: Variable, case: int) -> bool:
        raw = self.values[variable][case]
        if variable.is_discrete:
            return raw == MISSING_CODE
        return bool(np.isnan(raw))

    def set_class_variable(self, choice: Union[str, int, None]):
        """Select the class variable by 'first', 'last', 'none' or a column index"""
        if choice is None or (isinstance(choice, str) and choice.lower() == "none"):
            self.class_variable = None
            return
        if isinstance(choice, str) and choice.lower() == "first":
            index = 0
        elif isinstance(choice, str) and choice.lower() == "last":
            index = len(self.variables) - 1
        else:
            try:
                index = int(choice)
            except ValueError:
                raise SettingsError(f"Invalid class variable choice '{choice}'")
        if not 0 <= index < len(self.variables):
            raise SettingsError(f"Class variable index {index} out of range")
        self.class_variable = self.variables[index]

    def non_class_variables(self) -> List[Variable]:
        """Variables other than the class variable"""
        return [v for v in self.variables if v is not self.class_variable]

    def remove_missing_instances(self) -> "MixedDataSet":
        """Drop every case with a missing value (in place)"""
        keep = np.ones(self.size, dtype=bool)
        for variable in self.variables:
            column = self.values[variable]
            keep &= column != MISSING_CODE if variable.is_discrete else ~np.isnan(column)
        removed = int((~keep).sum())
        if removed:
            self.values = {v: column[keep] for v, column in self.values.items()}
            self.weights = self.weights[keep]
            logger.info("Removed %d cases with missing values", removed)
        return self

    def continuous_matrix(self, scalars: Sequence[Variable]) -> np.ndarray:
        """(cases, len(scalars)) matrix of continuous values"""
        return np.column_stack([self.values[s] for s in scalars])

    def variance(self, variable: Variable) -> float:
        """Weighted variance of a continuous scalar, ignoring missing cases"""
        column = self.values[variable]
        present = ~np.isnan(column)
        weights = self.weights[present]
        mean = np.average(column[present], weights=weights)
        return float(np.average((column[present] - mean) ** 2, weights=weights))

    def synchronize(self, model: LatentTreeModel):
        """
        Rebind the data variables to the observed variables of the model by
        name. Discrete state codes are remapped to the model's state order
        when the state names agree.
        """
        observed = []
        for variable in model.observed_variables:
            if variable.is_discrete:
                observed.append(variable)
            else:
                observed.extend(variable.scalars)

        for target in observed:
            try:
                source = self.get_variable(target.name)
            except KeyError:
                raise StructureMismatchError(
                    f"Model variable {target.name} is not found in data {self.name}")
            if source is target:
                continue

            if source.is_discrete != target.is_discrete:
                raise StructureMismatchError(
                    f"Variable {target.name} is {target.kind.value} in the model "
                    f"but {source.kind.value} in the data")

            if target.is_discrete and source.cardinality != target.cardinality:
                raise StructureMismatchError(
                    f"Variable {target.name} has cardinality {target.cardinality} "
                    f"in the model but {source.cardinality} in the data")

            column = self.values.pop(source)
            if target.is_discrete and set(source.states) == set(target.states):
                remap = np.array([target.states.index(s) for s in source.states])
                column = np.where(column == MISSING_CODE, MISSING_CODE,
                                  remap[np.clip(column, 0, None)])

            self.values[target] = column
            self.variables[self.variables.index(source)] = target
            if self.class_variable is source:
                self.class_variable = target
