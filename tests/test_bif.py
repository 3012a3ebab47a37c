"""Tests for reading and writing BIF model files"""
from types import SimpleNamespace

import numpy as np
import pytest

from py_geast import bif
from py_geast.definitions import VariableKind, generate_name, join
from py_geast.errors import ModelFormatError
from py_geast.estimation import ParameterGenerator
from py_geast.expansion import NodeIntroducer
from py_geast.model import build_local_independence_model

SMALL = """
network "small" {
}
variable "h" {
    type discrete[2] { "s0" "s1" };
}
variable "colour" {
    type discrete[2] { "red" "blue" };
}
variable "x" {
    type continuous;
}
probability ("h") {
    table 0.4 0.6;
}
probability ("colour" | "h") {
    ("s0") 0.9 0.1;
    ("s1") 0.2 0.8;
}
// Gaussian leaf: means then covariance
probability ("x" | "h") {
    table 0.0 1.0 3.0 2.0;
}
"""


class TestParse:
    def test_kinds_and_structure(self):
        model = bif.parse_model(SMALL)

        h = model.get_variable("h")
        colour = model.get_variable("colour")
        x = model.get_variable("x")
        assert model.name == "small"
        assert model.root is h
        assert h.kind is VariableKind.DISCRETE_LATENT
        assert colour.kind is VariableKind.DISCRETE_OBSERVED
        assert colour.states == ("red", "blue")
        assert x.kind is VariableKind.CONTINUOUS_SCALAR
        assert model.parent(x) is h

    def test_parameters(self):
        model = bif.parse_model(SMALL)

        h, colour, x = (model.get_variable(n) for n in ("h", "colour", "x"))
        np.testing.assert_allclose(model.parameters[h], [0.4, 0.6])
        np.testing.assert_allclose(model.parameters[colour], [[0.9, 0.1], [0.2, 0.8]])
        np.testing.assert_allclose(model.parameters[x].means, [[0.0], [3.0]])
        np.testing.assert_allclose(model.parameters[x].covariances, [[[1.0]], [[2.0]]])
        assert model.missing_parameters() == []

    @pytest.mark.parametrize("text", [
        'network "n" { } probability ("y") { table 1.0; }',
        'variable "h" { type discrete[3] { "a" "b" }; }',
        'variable "h" { type ordinal; }',
        'variable "h" { type discrete[2] { "a" "b" };',
        'network "n" { } variable "h" { type discrete[2] { "a" "b" }; }'
        ' probability ("h") { table 0.5 0.5 0.1; }',
        'variable "h" { type continuous; } variable "h" { type continuous; }',
        'variable "h" { type continuous; } probability ("h") { } probability ("h") { }',
    ])
    def test_invalid(self, text):
        with pytest.raises(ModelFormatError):
            bif.parse_model(text)

    def test_read_names_not_generated_again(self):
        taken = int(generate_name()[len("variable"):]) + 1
        leaves = ["a", "b", "c", "d"]
        text = "".join(
            [f'variable "variable{taken}" {{ type discrete[2] {{ "s0" "s1" }}; }}\n']
            + [f'variable "{n}" {{ type continuous; }}\n' for n in leaves]
            + [f'probability ("variable{taken}") {{ }}\n']
            + [f'probability ("{n}" | "variable{taken}") {{ }}\n' for n in leaves])
        model = bif.parse_model(text)

        candidates = NodeIntroducer(None).generate_candidates(SimpleNamespace(model=model))

        assert len(candidates) == 6
        for candidate in candidates:
            names = [v.name for v in candidate.model.variables]
            assert len(names) == len(set(names))


class TestWrite:
    def test_write_and_read(self, two_leaf_estimation, tmp_path):
        path = bif.write_model(tmp_path / "model.bif", two_leaf_estimation)

        text = path.read_text()
        assert "// Loglikelihood:" in text
        assert "// BIC Score:" in text

        model = bif.read_model(path)
        original = two_leaf_estimation.model
        assert model.describe() == original.describe()
        for variable in original.variables:
            parameter = original.parameters[variable]
            loaded = model.parameters[model.get_variable(variable.name)]
            if variable.is_discrete:
                np.testing.assert_allclose(loaded, parameter)
            else:
                np.testing.assert_allclose(loaded.means, parameter.means)
                np.testing.assert_allclose(loaded.covariances, parameter.covariances)

    def test_joint_leaf(self, continuous_data):
        x1, x2 = continuous_data.variables
        model = build_local_independence_model([join(x1, x2)])
        ParameterGenerator(continuous_data, seed=3).generate(model)

        loaded = bif.parse_model(bif.format_model(model))

        joint = loaded.children(loaded.root)[0]
        assert joint.kind is VariableKind.CONTINUOUS_JOINT
        assert [s.name for s in joint.scalars] == ["x1", "x2"]
        assert loaded.parameters[joint].covariances.shape == (2, 2, 2)

    def test_model_without_parameters(self, mixed_data):
        model = build_local_independence_model(mixed_data.variables)

        loaded = bif.parse_model(bif.format_model(model))

        assert len(loaded.missing_parameters()) == len(model)
        assert loaded.get_variable("c1").kind is VariableKind.DISCRETE_OBSERVED
