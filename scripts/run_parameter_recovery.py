"""
Parameter Recovery Script

Simulates data from known generating values, fits the case study's Stan
program, checks R-hat and reports how often the posterior discrepancy
intervals contain zero.

Usage:
    python scripts/run_parameter_recovery.py [--case-study NAME] [--config CONFIG_PATH]

    The config file is a case study YAML (see irt_case_studies/configs/).

Examples:
    # GPCM with the shipped defaults
    python scripts/run_parameter_recovery.py --case-study gpcm

    # Five iterations of a custom Rasch config
    python scripts/run_parameter_recovery.py --config my_rasch.yaml --iterations 5
"""
import os
import sys
import argparse

# Add the project root directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from irt_case_studies.cli import _setup_logging
from irt_case_studies.config import MODEL_FILES, CaseStudyConfig
from irt_case_studies.study_runner import CaseStudyRunner


def main():
    parser = argparse.ArgumentParser(description="Run parameter recovery for a case study")
    parser.add_argument("--case-study", choices=sorted(MODEL_FILES), default="rasch")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--iterations", type=int, default=None, help="Override n_iterations")
    args = parser.parse_args()

    _setup_logging()
    config = CaseStudyConfig.from_yaml(args.config, case_study=args.case_study)
    if args.iterations:
        config.n_iterations = args.iterations

    info = CaseStudyRunner(config).recover()
    print(f"\nParameter recovery complete. Results saved to: {info['output_dir']}")
    for family, share in info["coverage"].items():
        print(f"  {family:<12} {share:6.1%} of intervals contain zero")


if __name__ == "__main__":
    main()
