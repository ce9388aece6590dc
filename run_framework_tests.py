#!/usr/bin/env python3
"""
Framework Test Runner

Runs the unit tests for redis-up. No test needs a container runtime.

Usage:
    python run_framework_tests.py [pytest_args...]

Examples:
    python run_framework_tests.py                    # Run all unit tests
    python run_framework_tests.py -v                 # Verbose output
    python run_framework_tests.py -k planner         # Run only planner tests
    python run_framework_tests.py --cov=redis_up     # With coverage
"""

import sys
import subprocess
from pathlib import Path


def main():
    """Run framework tests using pytest."""

    project_dir = Path(__file__).parent

    pytest_args = [
        sys.executable, "-m", "pytest",
        str(project_dir / "framework_tests" / "unit"),
    ]

    if len(sys.argv) > 1:
        pytest_args.extend(sys.argv[1:])

    print("Running framework tests...")
    print(f"Command: {' '.join(pytest_args)}")
    print("-" * 60)

    try:
        result = subprocess.run(pytest_args, cwd=project_dir, check=False)
        sys.exit(result.returncode)
    except KeyboardInterrupt:
        print("\nTest run interrupted by user")
        sys.exit(130)
    except OSError as e:
        print(f"Error running tests: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
