#!/usr/bin/env python
import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("apply_migrations")


def main():
    parser = argparse.ArgumentParser(description="Upgrade the meal planner schema")
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()

    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    # Host-run migrations may need a different URL than the service container.
    migrations_url = os.getenv("MIGRATIONS_DATABASE_URL")
    if migrations_url:
        os.environ["DATABASE_URL"] = migrations_url

    logger.info("Upgrading schema to %s", args.revision)
    result = subprocess.run(["poetry", "run", "alembic", "upgrade", args.revision], cwd=repo_root)
    if result.returncode != 0:
        logger.error("Migration failed with exit code %s", result.returncode)
    sys.exit(result.returncode)


if __name__ == "__main__":
    main()
