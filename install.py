#!/usr/bin/env python3
"""Prepare a checkout for running the chat server.

Creates config.yaml and .env from the examples and the data directory. Install
the package itself with ``pip install -e .[dev]``.
"""

import shutil
import sys
from pathlib import Path

MIN_PYTHON = (3, 11)
ROOT = Path(__file__).resolve().parent


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required.")

    for example, target in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        if not (ROOT / target).exists():
            shutil.copy(ROOT / example, ROOT / target)
            print(f"Created {target} from {example}")

    (ROOT / "data").mkdir(exist_ok=True)

    env_text = (ROOT / ".env").read_text(encoding="utf-8")
    if "LIVECHAT_ADMIN_KEYS=change-me" in env_text:
        print("Set LIVECHAT_ADMIN_KEYS in .env before exposing the admin console.")

    print("Run `python -m livechat config-check`, then `python -m livechat start`.")


if __name__ == "__main__":
    main()
