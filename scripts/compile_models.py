#!/usr/bin/env python3
"""Compile every case study's Stan program and report which succeed."""
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cmdstanpy import CmdStanModel

from irt_case_studies.config import DEFAULT_MODELS_DIR, MODEL_FILES


def main():
    print("Testing Stan compilation...")
    failed = []
    for case_study, filename in MODEL_FILES.items():
        try:
            CmdStanModel(stan_file=str(DEFAULT_MODELS_DIR / filename))
            print(f"✓ {filename} compiled successfully!")
        except (RuntimeError, ValueError) as e:
            print(f"✗ {filename} failed: {e}")
            failed.append(case_study)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
