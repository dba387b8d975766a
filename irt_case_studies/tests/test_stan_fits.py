"""
End-to-end fits against CmdStan.

These compile and sample the shipped Stan programs, so they are marked
``slow`` and skip when CmdStan is not installed::

    pytest -m slow
"""
import pytest
import numpy as np

from irt_case_studies.config import CaseStudyConfig
from irt_case_studies.diagnostics import rhat_from_summary
from irt_case_studies.model_estimation import ModelEstimation
from irt_case_studies.parameter_recovery import ParameterRecovery, discrepancy_table
from irt_case_studies.study_design import ItemResponseDesign


def _cmdstan_available():
    try:
        import cmdstanpy

        cmdstanpy.cmdstan_path()
    except (ImportError, ValueError, RuntimeError):
        return False
    return True


pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(not _cmdstan_available(), reason="CmdStan not installed"),
]


def _estimation(case_study, output_dir, **overrides):
    settings = dict(
        case_study=case_study,
        chains=4,
        parallel_chains=4,
        iter_warmup=500,
        iter_sampling=500,
        seed=2024,
        results_dir=str(output_dir),
    )
    settings.update(overrides)
    return ModelEstimation.from_config(CaseStudyConfig(**settings))


class TestRaschFit:

    def test_converges_with_sum_to_zero(self, tmp_path):
        design = ItemResponseDesign(model="rasch", n_items=10, n_persons=300)
        data = design.generate(seed=1)

        result = _estimation("rasch", tmp_path).run(data)
        report = rhat_from_summary(result.summary)
        assert report.converged, report.describe()
        assert "lp__" in report.rhat.index

        beta = result.draws[[f"beta[{i}]" for i in range(1, 11)]].to_numpy()
        np.testing.assert_allclose(beta.sum(axis=1), 0.0, atol=1e-8)

    def test_intervals_cover_generating_values(self, tmp_path):
        design = ItemResponseDesign(model="rasch", n_items=10, n_persons=300)
        recovery = ParameterRecovery(
            design,
            _estimation("rasch", tmp_path / "fits"),
            output_dir=tmp_path / "recovery",
            n_iterations=2,
            seed=7,
        )
        result = recovery.run()

        assert result.all_converged
        assert result.coverage.loc["beta", "coverage"] >= 0.8
        assert result.coverage.loc["all", "coverage"] >= 0.8


class TestGeneralizedPartialCreditFit:
    """Twenty three-category items answered by 500 persons."""

    def test_recovers_steps(self, tmp_path):
        design = ItemResponseDesign(model="gpcm", n_items=20, n_persons=500, n_steps=2)
        data = design.generate(seed=42)

        result = _estimation("gpcm", tmp_path).run(data)
        report = rhat_from_summary(result.summary)
        assert report.converged, report.describe()

        table = discrepancy_table(result.draws, design.true_values())
        beta = table[table["family"] == "beta"]
        assert len(beta) == 40
        assert beta["contains_zero"].mean() >= 0.8
        assert table[table["family"] == "alpha"]["contains_zero"].mean() >= 0.8
