#!/usr/bin/env python3
"""
Development tasks for vqlkit.

    python dev_tasks.py test [DATABASE_URL]

runs the suite on a throwaway SQLite file, or against DATABASE_URL
(e.g. a local PostgreSQL or SQL Server) through VQLKIT_TEST_DATABASE_URL.
Tools come from the ``dev`` and ``test`` extras.
"""

import os
import shutil
import subprocess
import sys

SOURCES = "vqlkit tests"


def run_command(command, check=True, env=None):
    print(f"Running: {command}")
    result = subprocess.run(command, shell=True, check=check, env=env)
    return result.returncode == 0


def clean():
    for path in ["build", "dist", ".pytest_cache", ".mypy_cache", "htmlcov", "vqlkit.egg-info"]:
        shutil.rmtree(path, ignore_errors=True)
    for root, dirs, _ in os.walk("."):
        if "__pycache__" in dirs:
            shutil.rmtree(os.path.join(root, "__pycache__"), ignore_errors=True)


def format_code():
    run_command(f"black {SOURCES}")
    run_command(f"isort {SOURCES}")


def lint():
    ok = run_command("mypy vqlkit", check=False)
    ok = run_command(f"flake8 {SOURCES}", check=False) and ok
    if not ok:
        sys.exit(1)


def test(database_url=None):
    env = dict(os.environ)
    if database_url:
        env["VQLKIT_TEST_DATABASE_URL"] = database_url
    if not run_command("pytest tests/ -q --cov=vqlkit --cov-report=term-missing", check=False, env=env):
        sys.exit(1)


def build():
    clean()
    run_command("python -m build")
    run_command("python -m twine check dist/*")


COMMANDS = {
    "clean": clean,
    "format": format_code,
    "lint": lint,
    "test": test,
    "build": build,
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print("Usage: python dev_tasks.py <command> [args]")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)
    COMMANDS[sys.argv[1]](*sys.argv[2:])


if __name__ == "__main__":
    main()
