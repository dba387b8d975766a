"""
Model Estimation Script

Fits a case study's Stan program to a saved Stan data JSON file (for
example the ``stan_data.json`` written by the simulate step) and saves the
posterior summary and CmdStan diagnostics.

Usage:
    python scripts/run_model_estimation.py --data PATH [--case-study NAME] [--config CONFIG_PATH]
"""
import os
import sys
import json
import argparse

# Add the project root directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from irt_case_studies.cli import _setup_logging
from irt_case_studies.config import MODEL_FILES, CaseStudyConfig
from irt_case_studies.diagnostics import rhat_from_summary
from irt_case_studies.model_estimation import ModelEstimation


def main():
    parser = argparse.ArgumentParser(description="Fit a case study model to saved data")
    parser.add_argument("--data", type=str, required=True, help="Stan data JSON file")
    parser.add_argument("--case-study", choices=sorted(MODEL_FILES), default="rasch")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--output-dir", type=str, default=None)
    args = parser.parse_args()

    _setup_logging()
    config = CaseStudyConfig.from_yaml(args.config, case_study=args.case_study)
    with open(args.data) as f:
        stan_data = json.load(f)

    estimation = ModelEstimation.from_config(config, output_dir=args.output_dir)
    result = estimation.run(stan_data)
    report = rhat_from_summary(result.summary, config.rhat_threshold)

    print(result.summary.round(3).to_string())
    print(f"\nDiagnostics: {report.describe()}")
    print(f"Results saved to: {result.output_dir}")


if __name__ == "__main__":
    main()
