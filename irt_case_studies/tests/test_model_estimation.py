"""
Tests for ModelEstimation with CmdStanModel mocked out.

Fits against the real engine live in test_stan_fits.py.
"""
import json
import pytest
import numpy as np
from unittest.mock import MagicMock

from irt_case_studies import model_estimation
from irt_case_studies.config import CaseStudyConfig
from irt_case_studies.model_estimation import FitResult, InferenceError, ModelEstimation

from .conftest import fake_fit


@pytest.fixture
def stan_file(tmp_path):
    path = tmp_path / "model.stan"
    path.write_text("parameters { real x; } model { x ~ normal(0, 1); }")
    return path


@pytest.fixture
def mock_cmdstan(monkeypatch, tmp_path):
    """Patch CmdStanModel so sample() returns a canned fit."""
    canned = fake_fit({"x": 0.0}, tmp_path)
    fit = MagicMock()
    fit.summary.return_value = canned.summary
    fit.draws_pd.return_value = canned.draws
    fit.diagnose.return_value = "Processing complete, no problems detected."

    model = MagicMock()
    model.sample.return_value = fit
    cls = MagicMock(return_value=model)
    monkeypatch.setattr(model_estimation, "CmdStanModel", cls)
    return cls, model, fit


class TestModelEstimation:

    def test_missing_program(self, tmp_path, mock_cmdstan):
        with pytest.raises(FileNotFoundError):
            ModelEstimation(tmp_path / "absent.stan", output_dir=tmp_path)

    def test_missing_program_creates_no_output_dir(self, tmp_path, mock_cmdstan):
        out = tmp_path / "out"
        with pytest.raises(FileNotFoundError):
            ModelEstimation(tmp_path / "absent.stan", output_dir=out)
        assert not out.exists()
        cls, _, _ = mock_cmdstan
        cls.assert_not_called()

    def test_compile_failure(self, tmp_path, stan_file, monkeypatch):
        monkeypatch.setattr(
            model_estimation, "CmdStanModel", MagicMock(side_effect=ValueError("syntax"))
        )
        with pytest.raises(InferenceError, match="compile"):
            ModelEstimation(stan_file, output_dir=tmp_path)

    def test_run_passes_controls(self, tmp_path, stan_file, mock_cmdstan):
        _, model, _ = mock_cmdstan
        estimation = ModelEstimation(
            stan_file, output_dir=tmp_path, chains=2, iter_warmup=50, iter_sampling=60, seed=3
        )
        estimation.run({"N": 1})
        kwargs = model.sample.call_args.kwargs
        assert kwargs["chains"] == 2
        assert kwargs["iter_warmup"] == 50
        assert kwargs["iter_sampling"] == 60
        assert kwargs["seed"] == 3

    def test_seed_override(self, tmp_path, stan_file, mock_cmdstan):
        _, model, _ = mock_cmdstan
        ModelEstimation(stan_file, output_dir=tmp_path, seed=3).run({"N": 1}, seed=99)
        assert model.sample.call_args.kwargs["seed"] == 99

    def test_run_writes_outputs(self, tmp_path, stan_file, mock_cmdstan):
        estimation = ModelEstimation(stan_file, output_dir=tmp_path)
        result = estimation.run({"y": np.array([1, 0])}, output_dir=tmp_path / "fit1")
        assert isinstance(result, FitResult)
        assert (tmp_path / "fit1" / "posterior_summary.csv").exists()
        assert (tmp_path / "fit1" / "diagnostics.txt").exists()
        with open(tmp_path / "fit1" / "input_data.json") as f:
            assert json.load(f) == {"y": [1, 0]}
        assert "R_hat" in result.summary.columns

    def test_sampling_failure(self, tmp_path, stan_file, mock_cmdstan):
        _, model, _ = mock_cmdstan
        model.sample.side_effect = RuntimeError("Error during sampling")
        estimation = ModelEstimation(stan_file, output_dir=tmp_path)
        with pytest.raises(InferenceError, match="Sampling failed"):
            estimation.run({"N": 1})

    def test_from_config(self, tmp_path, mock_cmdstan):
        config = CaseStudyConfig(
            case_study="2pl", chains=3, seed=8, results_dir=str(tmp_path)
        )
        estimation = ModelEstimation.from_config(config)
        assert estimation.model_path.name == "2pl_latent_reg.stan"
        assert estimation.chains == 3
        assert estimation.seed == 8
        assert estimation.output_dir == tmp_path


class TestFitResult:

    def test_chain_draws_shape(self, tmp_path):
        result = fake_fit({"a": 1.0, "b[1]": 2.0}, tmp_path, chains=3, n_draws=50)
        arrays = result.chain_draws(["a", "b[1]"])
        assert arrays["a"].shape == (3, 50)

    def test_parameter_draws(self, tmp_path):
        result = fake_fit({"a": 1.0}, tmp_path, chains=2, n_draws=10)
        assert result.parameter_draws("a").shape == (20,)
        with pytest.raises(KeyError):
            result.parameter_draws("zzz")

