"""Test configuration and fixtures"""
import numpy as np
import pandas as pd
import pytest

from py_geast.context import Context
from py_geast.data import MixedDataSet
from py_geast.definitions import discrete_latent
from py_geast.estimation import EmParameters, Estimation, LocalEm, ParameterGenerator
from py_geast.log import SearchLog
from py_geast.model import LatentTreeModel


@pytest.fixture
def mixed_frame():
    """Two well separated clusters over two continuous and two discrete columns"""
    rng = np.random.default_rng(0)
    cluster = rng.integers(2, size=120)
    return pd.DataFrame({
        "x1": rng.normal(cluster * 4.0, 1.0),
        "x2": rng.normal(cluster * -3.0, 1.0),
        "c1": np.where(rng.random(120) < 0.9, cluster, 1 - cluster).astype(str),
        "c2": np.where(rng.random(120) < 0.8, cluster, 1 - cluster).astype(str),
    })


@pytest.fixture
def mixed_data(mixed_frame):
    return MixedDataSet.from_dataframe(mixed_frame, name="mixed")


@pytest.fixture
def continuous_data(mixed_frame):
    return MixedDataSet.from_dataframe(mixed_frame[["x1", "x2"]], name="continuous")


@pytest.fixture
def fast_em(continuous_data):
    """Cheap EM for tests"""
    return LocalEm(continuous_data,
                   EmParameters(restarts=2, max_steps=20, threshold=0.01),
                   ParameterGenerator(continuous_data, seed=1))


@pytest.fixture
def context(continuous_data, fast_em):
    with Context.single_em(continuous_data, fast_em, SearchLog(None), threads=2) as ctx:
        yield ctx


@pytest.fixture
def two_leaf_model(continuous_data):
    """Binary latent root with the two continuous variables as leaves"""
    model = LatentTreeModel("two-leaf")
    root = discrete_latent(2)
    model.add_node(root)
    for variable in continuous_data.variables:
        model.add_node(variable)
        model.add_edge(variable, root)
    ParameterGenerator(continuous_data, seed=2).generate(model)
    return model


@pytest.fixture
def two_leaf_estimation(two_leaf_model, continuous_data):
    return Estimation.of(two_leaf_model, continuous_data)
