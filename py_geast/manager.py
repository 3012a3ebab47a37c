"""Wiring of data, initial model and settings files into a learning run"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Union

from . import bif
from .data import MixedDataSet
from .estimation import Estimation
from .model import LatentTreeModel
from .settings import Settings

logger = logging.getLogger(__name__)


def default_output(data_file: Union[str, Path]) -> Path:
    """<data stem>-result.bif next to the data file"""
    data_file = Path(data_file)
    return data_file.with_name(f"{data_file.stem}-result.bif")


@dataclass
class LearningManager:
    """Loads the inputs of a run, learns and writes the result"""
    data: MixedDataSet
    initial: LatentTreeModel
    settings: Settings

    @classmethod
    def from_files(cls, data_file: Union[str, Path], initial_file: Union[str, Path],
                   settings_file: Union[str, Path, None] = None,
                   class_variable: Union[str, int, None] = None,
                   threads: Optional[int] = None) -> "LearningManager":
        """Create a manager from data, initial model and settings files"""
        data_file = Path(data_file)
        sep = "\t" if data_file.suffix in (".tsv", ".tab") else ","
        data = MixedDataSet.from_file(data_file, sep=sep, class_variable=class_variable)
        initial = bif.read_model(initial_file)
        settings = Settings.from_yaml(settings_file)
        if threads is not None:
            settings = replace(settings, threads=threads)
        return cls(data, initial, settings)

    def run(self, output: Union[str, Path]) -> Estimation:
        """Learn from the initial model and write the result to output"""
        geast = self.settings.create_geast(self.data, log_suffix=self.data.name)
        result = geast.learn(self.initial)
        path = bif.write_model(output, result)
        logger.info("Result written to %s", path)
        return result
