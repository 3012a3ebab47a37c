"""Search log: progress messages and model snapshots of one run"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from . import bif

logger = logging.getLogger(__name__)

SEARCH_LOGGER = "py_geast.search"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class SearchLog:
    """
    Records the progress of a search through the py_geast.search logger.
    When a path is given, the messages also go to search.log in a run
    directory created on first use, together with BIF snapshots of the
    initial, accepted and final models.
    """

    def __init__(self, path: Union[str, Path, None] = "output", suffix: Optional[str] = None):
        self.path = None if path is None else Path(path)
        self.suffix = suffix
        self.logger = logging.getLogger(SEARCH_LOGGER)
        self._directory: Optional[Path] = None
        self._handler: Optional[logging.Handler] = None
        self._step = 0
        self.closed = False
        self._lock = threading.Lock()

    @property
    def directory(self) -> Optional[Path]:
        """Run directory, created on first access"""
        self._open()
        return self._directory

    def _open(self):
        with self._lock:
            if self.path is not None and self._directory is None:
                name = datetime.now().strftime("%Y%m%d-%H%M%S")
                if self.suffix:
                    name += f"-{self.suffix}"
                self._directory = self.path / name
                self._directory.mkdir(parents=True, exist_ok=True)

                self._handler = logging.FileHandler(self._directory / "search.log")
                self._handler.setFormatter(logging.Formatter(LOG_FORMAT))
                self.logger.addHandler(self._handler)
                if self.logger.level == logging.NOTSET or self.logger.level > logging.INFO:
                    self.logger.setLevel(logging.INFO)

    def _info(self, message: str, *args):
        self._open()
        self.logger.info(message, *args)

    def write_settings(self, settings: dict):
        for key, value in settings.items():
            self._info("Setting %s: %s", key, value)

    def write_data(self, data):
        self._info("Data %s: %d cases, %d variables, total weight %.1f",
                   data.name, data.size, len(data.variables), data.total_weight)

    def write_start(self, procedure):
        self._info("Start %s", procedure.name)

    def write_end(self, procedure, estimation):
        self._info("End %s: %s", procedure.name, estimation)

    def write_step(self, procedure, candidate, improvement: float):
        """Record an accepted candidate and snapshot its model"""
        self._step += 1
        self._info("Step %d [%s] %s: improvement %.6f, BIC %.4f, %s",
                   self._step, procedure.name, candidate.name, improvement,
                   candidate.estimation.bic, candidate.model.describe())
        self.write_estimation(candidate.estimation, f"step-{self._step}")

    def write_refinement_step(self, procedure, candidate):
        self._info("Refine [%s] %s: BIC %.4f", procedure.name, candidate.name,
                   candidate.estimation.bic)

    def write_estimation(self, estimation, name: str):
        """Snapshot an estimation as <name>.bif in the run directory"""
        self._info("Model %s: %s", name, estimation)
        if self.directory is not None:
            bif.write_model(self.directory / f"{name}.bif", estimation)

    def write_failure(self, candidate, error: Exception):
        self._open()
        self.logger.warning("Estimation of %s failed: %s", candidate.name, error)

    def close(self):
        """Detach the file handler; safe to call more than once"""
        with self._lock:
            if self._handler is not None:
                self.logger.removeHandler(self._handler)
                self._handler.close()
                self._handler = None
            self.closed = True
