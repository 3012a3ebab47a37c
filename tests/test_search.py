"""End-to-end tests of the search driver, settings, manager and command line"""
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import SimpleNamespace

import pytest

from py_geast import bif
from py_geast.cli import main
from py_geast.context import Context
from py_geast.definitions import continuous_scalar, discrete_observed
from py_geast.errors import EstimationError, SearchError, SettingsError, StructureMismatchError
from py_geast.estimation import ConstantCovarianceConstrainer, VariableCovarianceConstrainer
from py_geast.log import SEARCH_LOGGER, SearchLog
from py_geast.manager import LearningManager, default_output
from py_geast.model import build_local_independence_model
from py_geast.search import Geast
from py_geast.settings import Settings

CHEAP_SETTINGS = """
threads: 2
screening: 4
threshold: 0.01
seed: 11
log:
  path: {log_path}
em:
  screening:
    restarts: 1
    max_steps: 10
  selection:
    restarts: 2
    max_steps: 20
  estimation:
    restarts: 2
    max_steps: 30
"""


class TestGeast:
    def test_learns_pouch_mixture(self, continuous_data, fast_em, tmp_path):
        geast = Geast.pouch_mixture(continuous_data, fast_em, SearchLog(tmp_path), threads=2)

        result = geast.learn()

        assert result.model.is_tree()
        assert result.model.is_regular()
        assert result.model.missing_parameters() == []
        assert geast.context.closed
        assert geast.context.log.closed
        run_directory = next(tmp_path.iterdir())
        assert (run_directory / "initial.bif").exists()
        assert (run_directory / "final.bif").exists()
        assert (run_directory / "search.log").exists()

    def test_result_not_worse_than_start(self, continuous_data, fast_em, two_leaf_estimation):
        geast = Geast.without_pouch(continuous_data, fast_em, threads=2)

        result = geast.learn(two_leaf_estimation.model)

        assert result.bic >= two_leaf_estimation.bic - 1.0

    def test_learns_once(self, continuous_data, fast_em):
        geast = Geast.pouch_mixture(continuous_data, fast_em)
        geast.learn()
        with pytest.raises(SearchError):
            geast.learn()

    def test_default_procedures(self, context):
        geast = Geast(context)
        assert [p.name for p in geast.procedures] == [
            "ExpandProcedure", "AdjustProcedure", "SimplifyProcedure"]

    def test_needs_procedures(self, context):
        with pytest.raises(ValueError):
            Geast(context, [])

    def test_without_pouch_procedures(self, continuous_data, fast_em):
        geast = Geast.without_pouch(continuous_data, fast_em)
        assert [p.name for p in geast.procedures] == ["ExpandProcedure", "SimplifyProcedure"]
        geast.context.shutdown()

    def test_releases_resources_on_mismatch(self, continuous_data, fast_em, tmp_path):
        geast = Geast.pouch_mixture(continuous_data, fast_em, SearchLog(tmp_path), threads=2)
        initial = build_local_independence_model(
            [discrete_observed("x1", ["a", "b"]), continuous_scalar("x2")])

        with pytest.raises(StructureMismatchError):
            geast.learn(initial)

        assert geast.context.closed
        assert geast.context.log.closed

    def test_releases_resources_on_estimation_failure(self, continuous_data, fast_em,
                                                       tmp_path, monkeypatch):
        geast = Geast.without_pouch(continuous_data, fast_em, SearchLog(tmp_path), threads=2)

        def fail(model, focus=None):
            raise EstimationError("singular", model.name)

        monkeypatch.setattr(geast.context.estimation_em, "estimate", fail)

        with pytest.raises(EstimationError):
            geast.learn()

        assert geast.context.closed
        assert geast.context.log.closed


class TestContext:
    def test_shutdown_once(self, continuous_data, fast_em):
        context = Context.single_em(continuous_data, fast_em)
        context.shutdown()
        context.shutdown()
        assert context.closed

    def test_invalid(self, continuous_data, fast_em):
        with pytest.raises(ValueError):
            Context.single_em(continuous_data, fast_em, threads=0)

    def test_describe(self, context):
        summary = context.describe()
        assert summary["threads"] == 2
        assert summary["covariance_constraints"]["type"] == "constant"


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_yaml(None)
        assert settings.threads == 1
        assert settings.em["estimation"]["name"] == "FullEm"
        assert settings.em_parameters("screening").restarts == 1
        assert not settings.em_parameters("screening").reuse_parameters

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(CHEAP_SETTINGS.format(log_path=tmp_path / "logs"))

        settings = Settings.from_yaml(path)

        assert settings.threads == 2
        assert settings.screening == 4
        assert settings.log_path == str(tmp_path / "logs")
        assert settings.em_parameters("selection").restarts == 2
        # unspecified keys keep their defaults
        assert settings.em_parameters("selection").second_stage_steps == 50

    @pytest.mark.parametrize("text", [
        "threads: 0",
        "unknown: 1",
        "em:\n  screening:\n    name: NoEm",
        "em:\n  screening:\n    steps: 3",
        "em:\n  other:\n    restarts: 3",
        "covariance_constraints:\n  type: diagonal",
        "- a list",
    ])
    def test_invalid(self, tmp_path, text):
        path = tmp_path / "settings.yaml"
        path.write_text(text)
        with pytest.raises(SettingsError):
            Settings.from_yaml(path)

    def test_invalid_em_value(self):
        settings = Settings(em={"estimation": {"restarts": 0}})
        with pytest.raises(SettingsError):
            settings.em_parameters("estimation")

    def test_constrainers(self, continuous_data):
        constant = Settings(covariance_constraints={"type": "constant",
                                                    "eigenvalue_lower": 0.5})
        variable = Settings(covariance_constraints={"type": "variable", "multiplier": 5})

        assert isinstance(constant.create_constrainer(continuous_data),
                          ConstantCovarianceConstrainer)
        assert constant.create_constrainer(continuous_data).lower == 0.5
        assert variable.create_constrainer(continuous_data).multiplier == 5.0
        assert isinstance(variable.create_constrainer(continuous_data),
                          VariableCovarianceConstrainer)


class TestSearchLog:
    def test_concurrent_failures_open_once(self, tmp_path):
        log = SearchLog(tmp_path)
        candidate = SimpleNamespace(name="candidate")

        with ThreadPoolExecutor(8) as executor:
            list(executor.map(lambda i: log.write_failure(candidate, ValueError(i)),
                              range(32)))

        handlers = [h for h in logging.getLogger(SEARCH_LOGGER).handlers
                    if isinstance(h, logging.FileHandler)
                    and Path(h.baseFilename).parent.parent == tmp_path]
        assert len(handlers) == 1
        assert len(list(tmp_path.iterdir())) == 1

        log.close()
        assert handlers[0] not in logging.getLogger(SEARCH_LOGGER).handlers
        assert "failed" in (log.directory / "search.log").read_text()


@pytest.fixture
def input_files(tmp_path, mixed_frame, continuous_data):
    data_file = tmp_path / "clusters.csv"
    mixed_frame[["x1", "x2"]].to_csv(data_file, index=False)
    initial_file = bif.write_model(
        tmp_path / "initial.bif",
        build_local_independence_model(continuous_data.variables, name="initial"))
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text(CHEAP_SETTINGS.format(log_path=tmp_path / "logs"))
    return data_file, initial_file, settings_file


class TestManager:
    def test_default_output(self, tmp_path):
        assert default_output(tmp_path / "data.csv") == tmp_path / "data-result.bif"

    def test_run(self, input_files, tmp_path):
        data_file, initial_file, settings_file = input_files
        manager = LearningManager.from_files(data_file, initial_file, settings_file,
                                             threads=1)
        assert manager.settings.threads == 1

        result = manager.run(tmp_path / "result.bif")

        loaded = bif.read_model(tmp_path / "result.bif")
        assert loaded.describe() == result.model.describe()


class TestCommandLine:
    def test_usage(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "none.csv"), "-i", str(tmp_path / "none.bif")]) == 1

    def test_learn(self, input_files, capsys):
        data_file, initial_file, settings_file = input_files

        assert main([str(data_file), "-i", str(initial_file), "-s", str(settings_file)]) == 0

        output = capsys.readouterr().out
        assert "Loglikelihood:" in output
        assert "BIC Score:" in output
        assert default_output(data_file).exists()

    @pytest.mark.parametrize("extra", [["-c", "middle"], ["-t", "0"]])
    def test_invalid_option(self, input_files, extra):
        data_file, initial_file, settings_file = input_files
        assert main([str(data_file), "-i", str(initial_file), "-s", str(settings_file)]
                    + extra) == 1

    def test_malformed_data(self, input_files, tmp_path):
        _, initial_file, settings_file = input_files
        data_file = tmp_path / "broken.csv"
        data_file.write_text('x1,x2\n1.0,"2.0\n')
        assert main([str(data_file), "-i", str(initial_file), "-s", str(settings_file)]) == 1
