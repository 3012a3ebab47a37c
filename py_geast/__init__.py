"""
py-geast: structure learning of latent tree models from mixed discrete and
continuous data
"""

__version__ = "0.1.0"

from .bif import read_model, write_model
from .context import Context
from .data import MixedDataSet
from .definitions import Variable, VariableKind
from .errors import (EstimationError, GeastError, ModelFormatError, SearchError,
                     SettingsError, StructureMismatchError)
from .estimation import Estimation, FullEm, LocalEm
from .model import LatentTreeModel
from .search import Geast
from .settings import Settings

__all__ = [
    'Context',
    'Estimation',
    'EstimationError',
    'FullEm',
    'GeastError',
    'Geast',
    'LatentTreeModel',
    'LocalEm',
    'MixedDataSet',
    'ModelFormatError',
    'SearchError',
    'Settings',
    'SettingsError',
    'StructureMismatchError',
    'Variable',
    'VariableKind',
    'read_model',
    'write_model',
]
