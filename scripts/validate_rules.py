#!/usr/bin/env python3
"""
Rule seed validation script for the Bazaar Access Layer.
This script validates authorization rule seed files before they are loaded.
"""

import argparse
import sys
from pathlib import Path
from typing import List

from shared.errors import ValidationError
from service_authorization.app.persistence.seed import read_seed_file
from service_authorization.app.rules.validation import find_problems, find_individual_problems


def validate_seed_file(seed_path: Path) -> List[str]:
    """Validate a single seed file with the same checks the loader applies."""
    try:
        data = read_seed_file(seed_path)
    except ValidationError as e:
        return [e.message]

    errors = []

    rules = data.get("rules") or []
    if isinstance(rules, list):
        errors.extend(find_problems(rules))
    else:
        errors.append("rules must be a list")

    individuals = data.get("individuals") or []
    if isinstance(individuals, list):
        errors.extend(find_individual_problems(individuals))
    else:
        errors.append("individuals must be a list")

    return errors


def main(argv=None):
    """Validate every seed file given on the command line."""
    parser = argparse.ArgumentParser(description="Validate authorization rule seed files")
    parser.add_argument("paths", nargs="+", type=Path, help="YAML seed files")
    args = parser.parse_args(argv)

    total_errors = 0

    for seed_path in args.paths:
        errors = validate_seed_file(seed_path)

        if errors:
            print(f"❌ {seed_path}: {len(errors)} validation errors")
            for error in errors:
                print(f"   - {error}")
            total_errors += len(errors)
        else:
            print(f"✅ {seed_path}: seed file is valid")

    print(f"\nValidation complete: {total_errors} total errors")
    return 0 if total_errors == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
