#!/usr/bin/env python3
"""Provisioner for POS terminals.

This script creates a per-terminal configuration file under
``configs/terminals/`` and prints the environment variables the
terminal needs.  It never overwrites an existing configuration.

Usage (run from the repository root)::

    python scripts/provisioner.py --terminal-id till-1 --currency EUR

The script copies ``configs/terminals/sample.yaml`` to
``configs/terminals/<terminal_id>.yaml``, setting the fiat currency if
one is given.  Processor credentials stay in the environment and are
only printed as a suggestion.
"""

import argparse
from pathlib import Path

import yaml


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision a new POS terminal configuration")
    parser.add_argument("--terminal-id", required=True, help="Identifier of the terminal to create (e.g. 'till-1')")
    parser.add_argument("--currency", help="Fiat currency the terminal charges in (e.g. 'EUR')")
    parser.add_argument("--api-key", default="<strike api key>", help="Strike API key to suggest in the output")
    args = parser.parse_args()

    repo_root = Path(__file__).resolve().parents[1]
    src_cfg = repo_root / "configs" / "terminals" / "sample.yaml"
    dst_cfg = repo_root / "configs" / "terminals" / f"{args.terminal_id}.yaml"

    if not src_cfg.exists():
        raise SystemExit(f"Sample config not found at {src_cfg}. Please create it first.")

    if dst_cfg.exists():
        raise SystemExit(f"Target config {dst_cfg} already exists; aborting to avoid overwrite.")

    data = yaml.safe_load(src_cfg.read_text(encoding="utf-8")) or {}
    if args.currency:
        data["fiat_currency"] = args.currency.upper()

    dst_cfg.parent.mkdir(parents=True, exist_ok=True)
    dst_cfg.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    print(f"Created terminal config: {dst_cfg}")
    print("Please edit this file to adjust amount limits and polling timings.")
    print()
    print("Suggested environment variables:")
    print(f"  TERMINAL_ID={args.terminal_id}")
    print(f"  STRIKE_API_KEY={args.api_key}")
    print("  STRIKE_ENVIRONMENT=production")


if __name__ == "__main__":
    main()
