"""
Tests for the study_design module.

Covers:
- ItemResponseDesign generating values for each IRT model
- seeded determinism and the Stan payload
- true_values naming
- CountDesign missingness and save/load
"""
import json
import pytest
import numpy as np

from irt_case_studies.config import CaseStudyConfig
from irt_case_studies.identification import PayloadError
from irt_case_studies.study_design import (
    CountDesign,
    ItemResponseDesign,
    design_from_config,
)


class TestGeneratingValues:

    def test_rasch_difficulties_centred(self):
        design = ItemResponseDesign(model="rasch", n_items=5, difficulty_range=(-1, 1))
        np.testing.assert_allclose(design.beta, [-1.0, -0.5, 0.0, 0.5, 1.0])
        assert design.alpha is None

    def test_asymmetric_range_is_centred(self):
        design = ItemResponseDesign(model="rasch", n_items=4, difficulty_range=(0, 3))
        assert design.beta.sum() == pytest.approx(0.0)

    def test_discriminations_cycle(self):
        design = ItemResponseDesign(model="2pl", n_items=7, discriminations=[0.8, 1.0, 1.2])
        np.testing.assert_allclose(design.alpha, [0.8, 1.0, 1.2, 0.8, 1.0, 1.2, 0.8])

    def test_gpcm_steps(self):
        design = ItemResponseDesign(model="gpcm", n_items=20, n_steps=2, step_spread=1.0)
        assert design.beta.size == 40
        assert design.beta.sum() == pytest.approx(0.0)
        steps = design.item_steps()
        assert len(steps) == 20
        for s in steps:
            assert s[1] - s[0] == pytest.approx(1.0)

    def test_sigma_fixed_for_discrimination_models(self):
        assert ItemResponseDesign(model="2pl", sigma=2.0).sigma == 1.0
        assert ItemResponseDesign(model="rasch", sigma=2.0).sigma == 2.0

    def test_unknown_model(self):
        with pytest.raises(ValueError):
            ItemResponseDesign(model="glmm")


class TestGenerate:

    def test_payload_shapes(self):
        design = ItemResponseDesign(model="rasch", n_items=6, n_persons=50)
        data = design.generate(seed=1)
        assert data["I"] == 6 and data["J"] == 50 and data["N"] == 300
        assert data["K"] == 3
        assert data["W"].shape == (50, 3)
        np.testing.assert_array_equal(data["W"][:, 0], 1.0)
        assert set(np.unique(data["y"])) <= {0, 1}

    def test_same_seed_same_data(self):
        a = ItemResponseDesign(model="2pl", n_items=5, n_persons=40).generate(seed=7)
        b = ItemResponseDesign(model="2pl", n_items=5, n_persons=40).generate(seed=7)
        np.testing.assert_array_equal(a["y"], b["y"])
        np.testing.assert_array_equal(a["W"], b["W"])

    def test_different_seed_different_data(self):
        design = ItemResponseDesign(model="rasch", n_items=5, n_persons=100)
        a = design.generate(seed=1)["y"].copy()
        b = design.generate(seed=2)["y"]
        assert not np.array_equal(a, b)

    def test_binary_covariate_alternates(self):
        design = ItemResponseDesign(
            model="rasch", n_items=3, n_persons=200, lambda_true=[0.0, 0.5, 0.5, 0.5]
        )
        design.generate(seed=3)
        assert set(np.unique(design.W[:, 2])) <= {0.0, 1.0}
        assert len(np.unique(design.W[:, 1])) > 2

    def test_without_latent_regression(self):
        design = ItemResponseDesign(model="rasch", n_items=3, n_persons=20, latent_regression=False)
        data = design.generate(seed=1)
        assert data["K"] == 1
        assert not any(k.startswith("lambda") for k in design.true_values())

    def test_gpcm_scenario(self):
        design = ItemResponseDesign(model="gpcm", n_items=20, n_persons=500)
        data = design.generate(seed=42)
        assert data["N"] == 20 * 500
        assert data["y"].max() == 2
        assert design.responses.shape == (500, 20)

    def test_discrimination_models_keep_regression_mean_separate(self):
        design = ItemResponseDesign(model="gpcm", n_items=4, n_persons=4000)
        design.generate(seed=5)
        np.testing.assert_allclose(design.regression_mean, design.W @ design.lambda_true)
        assert design.theta.mean() == pytest.approx(0.0, abs=0.05)
        assert design.theta.std() == pytest.approx(1.0, abs=0.05)

    def test_rasch_abilities_carry_regression_mean(self):
        design = ItemResponseDesign(model="rasch", n_items=4, n_persons=4000)
        design.generate(seed=5)
        assert design.regression_mean is None
        resid = design.theta - design.W @ design.lambda_true
        assert resid.std() == pytest.approx(design.sigma, abs=0.05)

    def test_unreachable_top_category_raises(self):
        design = ItemResponseDesign(
            model="pcm", n_items=2, n_persons=5, n_steps=3,
            difficulty_range=(6.0, 8.0), step_spread=4.0,
            lambda_true=[-3.0],
        )
        with pytest.raises(PayloadError, match="top category"):
            design.generate(seed=0)


class TestTrueValues:

    def test_rasch_names(self):
        values = ItemResponseDesign(model="rasch", n_items=3).true_values()
        assert set(values) == {
            "beta[1]", "beta[2]", "beta[3]",
            "lambda[1]", "lambda[2]", "lambda[3]",
            "sigma",
        }

    def test_gpcm_names(self):
        values = ItemResponseDesign(model="gpcm", n_items=2, n_steps=2).true_values()
        assert {"alpha[1]", "alpha[2]", "beta[4]"} <= set(values)
        assert "sigma" not in values
        assert "beta[5]" not in values

    def test_save_and_load(self, tmp_path):
        design = ItemResponseDesign(model="pcm", n_items=4, n_persons=300)
        design.generate(seed=9)
        path = design.save(tmp_path / "design.json")
        with open(path) as f:
            saved = json.load(f)
        assert saved["seed"] == 9
        assert "stan_data" in saved

        loaded = ItemResponseDesign.load(path)
        np.testing.assert_array_equal(loaded.responses, design.responses)
        assert loaded.true_values() == pytest.approx(design.true_values())


class TestCountDesign:

    def test_missing_cells_excluded(self):
        design = CountDesign(n_sites=8, n_years=5, missing_rate=0.3)
        data = design.generate(seed=4)
        assert data["n_obs"] + data["n_mis"] == 40
        assert data["n_mis"] == int(design.missing.sum())
        assert np.isnan(design.counts[design.missing]).all()

    def test_no_missing(self):
        data = CountDesign(n_sites=4, n_years=3, missing_rate=0.0).generate(seed=1)
        assert data["n_mis"] == 0

    def test_true_values(self):
        design = CountDesign(n_sites=3, n_years=2)
        design.generate(seed=1)
        values = design.true_values()
        assert values["mu"] == 1.5
        assert {"site_effect[3]", "year_effect[2]", "sd_site", "sd_year"} <= set(values)

    def test_withheld_values_match_missing_cells(self):
        design = CountDesign(n_sites=8, n_years=5, missing_rate=0.3)
        assert design.withheld_values() == {}
        data = design.generate(seed=4)
        withheld = design.withheld_values()
        assert len(withheld) == data["n_mis"]
        for k, (y, s) in enumerate(zip(data["year_mis"], data["site_mis"]), start=1):
            assert withheld[f"count_mis[{k}]"] == design.full_counts[y - 1, s - 1]

    def test_save_and_load(self, tmp_path):
        design = CountDesign(n_sites=5, n_years=4)
        design.generate(seed=2)
        loaded = CountDesign.load(design.save(tmp_path / "counts.json"))
        np.testing.assert_array_equal(loaded.full_counts, design.full_counts)


class TestDesignFromConfig:

    def test_irt(self):
        config = CaseStudyConfig(case_study="gpcm", n_items=8, results_dir="unused")
        design = design_from_config(config)
        assert isinstance(design, ItemResponseDesign)
        assert design.model == "gpcm" and design.I == 8

    def test_glmm(self):
        config = CaseStudyConfig(case_study="glmm", n_sites=12, results_dir="unused")
        design = design_from_config(config)
        assert isinstance(design, CountDesign)
        assert design.n_sites == 12
