"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os

from .audio_utils import measure_duration
from .config import Config, apply_env, load_config, save_config
from .logging_utils import setup_logging
from .orchestrator import build_orchestrator
from .renderer import render_segment


def _load(path: str) -> Config:
    cfg = load_config(path) if os.path.exists(path) else Config()
    return apply_env(cfg)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="callscribe")
    parser.add_argument("--config", default="callscribe_config.yml", help="Config.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    sub = parser.add_subparsers(dest="command")

    process_cmd = sub.add_parser("process", help="Transcribe a captured raw PCM file.")
    process_cmd.add_argument("raw_path", help="Path to a raw s16le capture file.")
    process_cmd.add_argument(
        "--converter",
        choices=["ffmpeg", "numpy"],
        help="Override the configured converter.",
    )

    duration_cmd = sub.add_parser("duration", help="Print the duration of an audio file.")
    duration_cmd.add_argument("path", help="Audio file.")

    config_cmd = sub.add_parser("config", help="Write a default config file.")
    config_cmd.add_argument("--force", action="store_true", help="Overwrite.")

    args = parser.parse_args(argv)

    if args.command == "config":
        if os.path.exists(args.config) and not args.force:
            print(f"{args.config} exists; use --force to overwrite.")
            return 1
        save_config(args.config, Config())
        print(f"Wrote {args.config}")
        return 0

    if args.command == "duration":
        print(f"{measure_duration(args.path):.2f}")
        return 0

    if args.command == "process":
        cfg = _load(args.config)
        setup_logging(cfg.log_dir, level=logging.DEBUG if args.debug else cfg.log_level)
        if args.converter:
            cfg.upload.converter = args.converter
        if not os.path.exists(args.raw_path):
            print(f"Audio file not found at {args.raw_path}")
            return 1
        orchestrator = build_orchestrator(cfg)
        result = asyncio.run(
            orchestrator.process(args.raw_path, label=os.path.basename(args.raw_path))
        )
        print(render_segment(result, title=os.path.basename(args.raw_path)))
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
