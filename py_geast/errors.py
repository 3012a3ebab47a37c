"""Exception types raised by the latent tree search"""


class GeastError(Exception):
    """Base class of all errors raised by py-geast"""


class StructureMismatchError(GeastError):
    """Data and model disagree on a variable's kind or cardinality"""


class EstimationError(GeastError):
    """Parameter estimation of a single model failed"""

    def __init__(self, message: str, model_name: str = None):
        super().__init__(message)
        self.model_name = model_name


class SettingsError(GeastError, ValueError):
    """Invalid settings file or setting value"""


class ModelFormatError(GeastError, ValueError):
    """Model file cannot be parsed"""


class SearchError(GeastError):
    """The search driver was used incorrectly"""
