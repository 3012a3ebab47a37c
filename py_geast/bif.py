"""Reading and writing models in the BIF network format"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .definitions import (GaussianParameter, Variable, VariableKind, continuous_scalar,
                          discrete_observed, joint_continuous)
from .errors import ModelFormatError
from .model import LatentTreeModel

TOKEN = re.compile(r'"[^"]*"|[{}()\[\];|]|[^\s{}()\[\];|"]+')


def _number(value: float) -> str:
    return f"{value:.10g}"


def _quote(name: str) -> str:
    return f'"{name}"'


def format_model(model: LatentTreeModel, loglikelihood: Optional[float] = None,
                 bic: Optional[float] = None) -> str:
    """Render a model (and optionally its scores) as BIF text"""
    lines = [f"network {_quote(model.name)} {{", "}", ""]
    order = model.preorder()

    for variable in order:
        for scalar in ([variable] if variable.is_discrete else variable.scalars):
            lines.append(f"variable {_quote(scalar.name)} {{")
            if scalar.is_discrete:
                states = " ".join(_quote(s) for s in scalar.states)
                lines.append(f"\ttype discrete[{scalar.cardinality}] {{ {states} }};")
            else:
                lines.append("\ttype continuous;")
            lines.append("}")
    lines.append("")

    for variable in order:
        parameter = model.parameters.get(variable)
        names = [variable] if variable.is_discrete else list(variable.scalars)
        head = " ".join(_quote(v.name) for v in names)
        parent = model.parent(variable)
        if parent is not None:
            head += f" | {_quote(parent.name)}"
        lines.append(f"probability ({head}) {{")

        if parameter is None:
            pass
        elif variable.is_discrete and parent is None:
            lines.append("\ttable " + " ".join(_number(p) for p in parameter) + ";")
        else:
            rows = _parameter_rows(variable, parameter)
            if parent is None:
                lines.append("\ttable " + " ".join(_number(v) for v in rows[0]) + ";")
            else:
                for state, row in zip(parent.states, rows):
                    values = " ".join(_number(v) for v in row)
                    lines.append(f"\t({_quote(state)}) {values};")
        lines.append("}")

    if loglikelihood is not None:
        lines.append(f"// Loglikelihood: {loglikelihood:f}")
    if bic is not None:
        lines.append(f"// BIC Score: {bic:f}")
    return "\n".join(lines) + "\n"


def _parameter_rows(variable: Variable, parameter) -> List[np.ndarray]:
    if variable.is_discrete:
        return list(parameter)
    # Means followed by the row-major covariance matrix
    return [np.concatenate([mean, covariance.ravel()])
            for mean, covariance in zip(parameter.means, parameter.covariances)]


def write_model(path: Union[str, Path], estimation_or_model) -> Path:
    """Write an estimation (with its scores) or a bare model to a file"""
    path = Path(path)
    if isinstance(estimation_or_model, LatentTreeModel):
        text = format_model(estimation_or_model)
    else:
        text = format_model(estimation_or_model.model,
                            estimation_or_model.loglikelihood,
                            estimation_or_model.bic)
    path.write_text(text)
    return path


class _Parser:
    """Recursive descent over the token stream of a BIF file"""

    def __init__(self, text: str):
        text = re.sub(r"//[^\n]*", "", text)
        self.tokens = TOKEN.findall(text)
        self.position = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def next(self) -> str:
        token = self.peek()
        if token is None:
            raise ModelFormatError("Unexpected end of model file")
        self.position += 1
        return token

    def expect(self, expected: str):
        token = self.next()
        if token != expected:
            raise ModelFormatError(f"Expected '{expected}' but found '{token}'")

    def name(self) -> str:
        token = self.next()
        return token[1:-1] if token.startswith('"') else token

    def number(self) -> float:
        token = self.next()
        try:
            return float(token)
        except ValueError:
            raise ModelFormatError(f"Expected a number but found '{token}'")

    def skip_block(self):
        """Skip a brace-delimited block whose opening brace is next"""
        self.expect("{")
        depth = 1
        while depth:
            token = self.next()
            depth += {"{": 1, "}": -1}.get(token, 0)


def _parse(text: str):
    parser = _Parser(text)
    network = "model"
    declarations: Dict[str, Optional[Tuple[str, ...]]] = {}
    probabilities = []

    while parser.peek() is not None:
        keyword = parser.next()
        if keyword == "network":
            network = parser.name()
            parser.skip_block()
        elif keyword == "variable":
            name = parser.name()
            parser.expect("{")
            states = None
            while parser.peek() != "}":
                token = parser.next()
                if token == "type":
                    kind = parser.next()
                    if kind == "discrete":
                        parser.expect("[")
                        count = int(parser.number())
                        parser.expect("]")
                        parser.expect("{")
                        states = []
                        while parser.peek() != "}":
                            states.append(parser.name())
                        parser.expect("}")
                        if len(states) != count:
                            raise ModelFormatError(
                                f"Variable {name} declares {count} states but lists {len(states)}")
                        states = tuple(states)
                    elif kind != "continuous":
                        raise ModelFormatError(f"Unknown variable type '{kind}'")
                    parser.expect(";")
            parser.expect("}")
            if name in declarations:
                raise ModelFormatError(f"Variable {name} declared twice")
            declarations[name] = states
        elif keyword == "probability":
            parser.expect("(")
            head, parents = [], []
            target = head
            while parser.peek() != ")":
                token = parser.name()
                if token == "|":
                    target = parents
                else:
                    target.append(token)
            parser.expect(")")
            parser.expect("{")
            rows = []
            while parser.peek() != "}":
                token = parser.next()
                if token == "table":
                    values = []
                    while parser.peek() != ";":
                        values.append(parser.number())
                    rows.append((None, values))
                elif token == "(":
                    state = parser.name()
                    parser.expect(")")
                    values = []
                    while parser.peek() != ";":
                        values.append(parser.number())
                    rows.append((state, values))
                else:
                    raise ModelFormatError(f"Unexpected '{token}' in probability block")
                parser.expect(";")
            parser.expect("}")
            probabilities.append((head, parents, rows))
        else:
            raise ModelFormatError(f"Unexpected '{keyword}'")

    return network, declarations, probabilities


def parse_model(text: str) -> LatentTreeModel:
    """Build a model with parameters from BIF text"""
    network, declarations, probabilities = _parse(text)
    parent_names = {parents[0] for _, parents, _ in probabilities if parents}

    scalars = {}
    discrete = {}
    for name, states in declarations.items():
        if states is None:
            scalars[name] = continuous_scalar(name)
        elif name in parent_names:
            discrete[name] = Variable(name, VariableKind.DISCRETE_LATENT, states)
        else:
            discrete[name] = discrete_observed(name, states)

    model = LatentTreeModel(network)
    nodes = {}
    for head, parents, _ in probabilities:
        for name in head:
            if name not in declarations:
                raise ModelFormatError(f"Undeclared variable {name}")
        if len(parents) > 1:
            raise ModelFormatError(f"Node {head} has more than one parent")
        if head[0] in discrete:
            if len(head) != 1:
                raise ModelFormatError(f"Discrete node {head} must be declared alone")
            variable = discrete[head[0]]
        else:
            variable = joint_continuous([scalars[n] for n in head])
        try:
            model.add_node(variable)
        except ValueError as e:
            raise ModelFormatError(str(e))
        nodes[tuple(head)] = variable

    for head, parents, rows in probabilities:
        variable = nodes[tuple(head)]
        if parents:
            if parents[0] not in discrete:
                raise ModelFormatError(f"Parent {parents[0]} is not discrete")
            try:
                model.add_edge(variable, discrete[parents[0]])
            except (KeyError, ValueError) as e:
                raise ModelFormatError(str(e))

    for head, parents, rows in probabilities:
        variable = nodes[tuple(head)]
        if rows:
            parent = discrete[parents[0]] if parents else None
            model.parameters[variable] = _build_parameter(variable, parent, rows)

    try:
        model.validate()
    except ValueError as e:
        raise ModelFormatError(str(e))
    return model


def _build_parameter(variable: Variable, parent: Optional[Variable], rows):
    if parent is None:
        values = [np.asarray(rows[0][1])]
    elif rows[0][0] is None:
        # Whole table in parent state order
        values = np.array_split(np.asarray(rows[0][1]), parent.cardinality)
    else:
        by_state = {state: values for state, values in rows}
        try:
            values = [np.asarray(by_state[state]) for state in parent.states]
        except KeyError as e:
            raise ModelFormatError(f"Missing row for state {e} of {parent.name}")

    if variable.is_discrete:
        table = np.vstack(values)
        if table.shape[1] != variable.cardinality:
            raise ModelFormatError(f"Wrong number of probabilities for {variable.name}")
        return table[0] if parent is None else table

    d = variable.dimension
    table = np.vstack(values)
    if table.shape[1] != d + d * d:
        raise ModelFormatError(f"Wrong number of Gaussian parameters for {variable.name}")
    return GaussianParameter(table[:, :d], table[:, d:].reshape(-1, d, d))


def read_model(path: Union[str, Path]) -> LatentTreeModel:
    """Read a model from a BIF file"""
    return parse_model(Path(path).read_text())
