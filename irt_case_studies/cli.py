"""
Command-line interface for the case studies.

Usage:
    python -m irt_case_studies validate --case-study gpcm
    python -m irt_case_studies simulate -c my_config.yaml
    python -m irt_case_studies recover --case-study rasch
    python -m irt_case_studies fit --case-study rasch --data stan_data.json
    python -m irt_case_studies example -c configs/gpcm.yaml
    python -m irt_case_studies run --case-study glmm
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import MODEL_FILES, CaseStudyConfig, ConfigError
from .identification import PayloadError
from .model_estimation import InferenceError

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(name)-32s  %(levelname)-8s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # cmdstanpy logs every chain start/finish at INFO
    logging.getLogger("cmdstanpy").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_config(args: argparse.Namespace) -> CaseStudyConfig:
    config = CaseStudyConfig.from_yaml(args.config, case_study=args.case_study)
    if getattr(args, "results_dir", None):
        config.results_dir = args.results_dir
    return config


# ── subcommands ─────────────────────────────────────────────────────

def cmd_validate(args: argparse.Namespace) -> None:
    """Validate configuration and check the Stan program exists."""
    config = _load_config(args)
    print(f"✅  Config valid  (case study {config.case_study}, "
          f"{config.chains} chains x {config.iter_sampling} draws, "
          f"R-hat threshold {config.rhat_threshold})")

    if config.model_path.exists():
        print(f"✅  Stan program found  ({config.model_path.name})")
    else:
        print(f"⚠️   Stan program not found at {config.model_path}")

    if config.data_file:
        if Path(config.data_file).exists():
            print(f"✅  Dataset found  ({config.data_file})")
        else:
            print(f"⚠️   Dataset not found at {config.data_file}")


def cmd_simulate(args: argparse.Namespace) -> None:
    """Simulate one dataset and save it with its generating values."""
    from .study_runner import CaseStudyRunner

    config = _load_config(args)
    info = CaseStudyRunner(config).simulate()
    print(f"✅  Simulated {config.case_study} data  ({info['n_true_values']} generating values)")
    print(f"    Design:    {info['design']}")
    print(f"    Stan data: {info['stan_data']}")


def cmd_recover(args: argparse.Namespace) -> None:
    """Run parameter recovery and print coverage."""
    from .study_runner import CaseStudyRunner

    config = _load_config(args)
    if args.iterations:
        config.n_iterations = args.iterations
    info = CaseStudyRunner(config).recover()

    print(f"✅  Recovery complete  ({config.n_iterations} iteration(s))")
    for family, share in info["coverage"].items():
        print(f"    {family:<12} {share:6.1%} of intervals contain zero")
    status = "✓ converged" if info["all_converged"] else "⚠️  R-hat above threshold"
    print(f"    Diagnostics: {status} (max R-hat {max(info['max_rhat']):.3f})")
    print(f"    Output: {info['output_dir']}")


def cmd_fit(args: argparse.Namespace) -> None:
    """Fit the case study's Stan program to a saved Stan data JSON file."""
    from .diagnostics import rhat_from_summary
    from .model_estimation import ModelEstimation

    config = _load_config(args)
    with open(args.data) as f:
        stan_data = json.load(f)

    estimation = ModelEstimation.from_config(config, output_dir=Path(config.results_dir) / "fit")
    result = estimation.run(stan_data)
    report = rhat_from_summary(result.summary, config.rhat_threshold)

    print("✅  Model fitting complete.")
    print(f"  Diagnostics: {report.describe()}")
    print(f"  Output: {result.output_dir}")


def cmd_example(args: argparse.Namespace) -> None:
    """Fit the configured real dataset and print posterior summaries."""
    from .examples import ExampleRunner

    config = _load_config(args)
    if args.data:
        config.data_file = args.data
    result = ExampleRunner(config).run()

    print(result.table.round(3).to_string())
    print()
    print(f"  Diagnostics: {result.report.describe()}")


def cmd_run(args: argparse.Namespace) -> None:
    """Run simulation, recovery and (if configured) the real-data example."""
    from .study_runner import CaseStudyRunner

    config = _load_config(args)
    summary = CaseStudyRunner(config).run(skip_example=args.skip_example)
    print(f"✅  Run complete  ({summary['duration_seconds']:.1f}s)")
    print(f"    Summary: {Path(config.results_dir) / 'run_summary.json'}")


# ── main entry point ────────────────────────────────────────────────

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("-c", "--config", default=None, help="Path to YAML config")
    p.add_argument(
        "--case-study",
        choices=sorted(MODEL_FILES),
        default="rasch",
        help="Shipped default config to use when --config is not given",
    )
    p.add_argument("--results-dir", default=None, help="Override output directory")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="irt_case_studies",
        description="IRT and GLMM case studies: simulate, fit, diagnose, recover",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Debug-level logging"
    )
    sub = parser.add_subparsers(dest="command")

    p_val = sub.add_parser("validate", help="Validate config and Stan program path")
    _add_common(p_val)
    p_val.set_defaults(func=cmd_validate)

    p_sim = sub.add_parser("simulate", help="Simulate data from generating values")
    _add_common(p_sim)
    p_sim.set_defaults(func=cmd_simulate)

    p_rec = sub.add_parser("recover", help="Parameter recovery on simulated data")
    _add_common(p_rec)
    p_rec.add_argument("-n", "--iterations", type=int, default=None,
                       help="Override n_iterations")
    p_rec.set_defaults(func=cmd_recover)

    p_fit = sub.add_parser("fit", help="Fit a saved Stan data JSON file")
    _add_common(p_fit)
    p_fit.add_argument("--data", required=True, help="Stan data JSON file")
    p_fit.set_defaults(func=cmd_fit)

    p_ex = sub.add_parser("example", help="Fit a real dataset")
    _add_common(p_ex)
    p_ex.add_argument("--data", default=None, help="Override data_file")
    p_ex.set_defaults(func=cmd_example)

    p_run = sub.add_parser("run", help="Simulate, recover and run the example")
    _add_common(p_run)
    p_run.add_argument("--skip-example", action="store_true",
                       help="Do not fit the real dataset")
    p_run.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except (ConfigError, PayloadError, InferenceError, FileNotFoundError) as e:
        logger.error("%s", e)
        sys.exit(1)
