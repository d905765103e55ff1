"""Create the generation job and queue tables."""

from __future__ import annotations

import argparse
import sys

from printcraft.config import AppConfig, build_engine
from printcraft.db import drop_db, init_db


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the generation tables.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop existing tables first (local development only).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = AppConfig.build_default()
    engine = build_engine(config)
    try:
        if args.reset:
            drop_db(engine)
        init_db(engine)
    finally:
        engine.dispose()
    print(f"Database initialized at {config.database_url}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
