"""Tests for the mixed data set"""
import numpy as np
import pandas as pd
import pytest

from py_geast.data import MISSING_CODE, MixedDataSet
from py_geast.definitions import VariableKind, continuous_scalar, discrete_observed
from py_geast.errors import SettingsError, StructureMismatchError
from py_geast.model import build_local_independence_model


@pytest.fixture
def data_file(tmp_path):
    path = tmp_path / "small.csv"
    path.write_text("height,colour,size\n"
                    "1.5,red,3\n"
                    "?,blue,2\n"
                    "2.5,red,?\n"
                    "3.0,?,1\n")
    return path


class TestLoading:
    def test_kinds_inferred(self, mixed_data):
        kinds = {v.name: v.kind for v in mixed_data.variables}
        assert kinds == {"x1": VariableKind.CONTINUOUS_SCALAR,
                         "x2": VariableKind.CONTINUOUS_SCALAR,
                         "c1": VariableKind.DISCRETE_OBSERVED,
                         "c2": VariableKind.DISCRETE_OBSERVED}
        assert mixed_data.get_variable("c1").states == ("0", "1")
        assert mixed_data.size == 120
        assert mixed_data.total_weight == 120

    def test_from_file_with_missing_values(self, data_file):
        data = MixedDataSet.from_file(data_file, discrete=["size"])

        height = data.get_variable("height")
        colour = data.get_variable("colour")
        size = data.get_variable("size")
        assert height.is_continuous
        assert colour.states == ("blue", "red")
        assert size.states == ("1.0", "2.0", "3.0")
        assert data.is_missing(height, 1)
        assert data.is_missing(colour, 3)
        assert data.value(colour, 0) == "red"
        assert data.value(height, 2) == 2.5
        assert data.name == "small"

    def test_remove_missing_instances(self, data_file):
        data = MixedDataSet.from_file(data_file).remove_missing_instances()
        assert data.size == 1
        assert data.value(data.get_variable("height"), 0) == 1.5

    def test_mismatched_weights(self):
        x = continuous_scalar("x")
        with pytest.raises(ValueError):
            MixedDataSet([x], {x: np.zeros(3)}, weights=np.ones(2))


class TestClassVariable:
    @pytest.mark.parametrize("choice, expected", [("first", "x1"), ("last", "c2"), (2, "c1")])
    def test_selection(self, mixed_data, choice, expected):
        mixed_data.set_class_variable(choice)
        assert mixed_data.class_variable.name == expected
        assert expected not in [v.name for v in mixed_data.non_class_variables()]

    def test_none(self, mixed_data):
        mixed_data.set_class_variable("none")
        assert mixed_data.non_class_variables() == mixed_data.variables

    def test_invalid(self, mixed_data):
        with pytest.raises(SettingsError):
            mixed_data.set_class_variable("middle")
        with pytest.raises(SettingsError):
            mixed_data.set_class_variable(10)


class TestSynchronize:
    def test_rebinds_by_name(self, mixed_data):
        x1 = continuous_scalar("x1")
        c1 = discrete_observed("c1", ["1", "0"])
        model = build_local_independence_model([x1, c1])
        original = mixed_data.values[mixed_data.get_variable("c1")].copy()

        mixed_data.synchronize(model)

        assert mixed_data.get_variable("x1") is x1
        assert mixed_data.get_variable("c1") is c1
        # states are in reverse order in the model
        np.testing.assert_array_equal(mixed_data.values[c1], 1 - original)

    def test_missing_variable(self, mixed_data):
        model = build_local_independence_model([continuous_scalar("unknown")])
        with pytest.raises(StructureMismatchError):
            mixed_data.synchronize(model)

    def test_kind_mismatch(self, mixed_data):
        model = build_local_independence_model([discrete_observed("x1", ["a", "b"])])
        with pytest.raises(StructureMismatchError):
            mixed_data.synchronize(model)

    def test_cardinality_mismatch(self, mixed_data):
        model = build_local_independence_model([discrete_observed("c1", ["0", "1", "2"])])
        with pytest.raises(StructureMismatchError):
            mixed_data.synchronize(model)

    def test_missing_code_kept(self):
        colour = discrete_observed("colour", ["red", "blue"])
        data = MixedDataSet.from_dataframe(pd.DataFrame({"colour": ["red", None, "blue"]}))
        data.synchronize(build_local_independence_model([colour]))
        np.testing.assert_array_equal(data.values[colour], [0, MISSING_CODE, 1])
