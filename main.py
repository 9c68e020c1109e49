#!/usr/bin/env python3
"""Install Candidate Resolver - Entry Point"""

import argparse
import faulthandler
import json
import logging
import os
import sys
import traceback
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from install_candidates import InstallCandidate, confirmed_paths, resolve_candidates
from package_codec import load_codec
from resolver_settings import load_settings

CODEC_ENV_VAR = "NXRESOLVER_CODEC"

CONFIRM_TEXT = "Please confirm these are the files you wish to install."
OVERWRITE_TEXT = "Installing an Update or DLC will overwrite the previously installed one."


def setup_logging(log_dir: str | Path | None = None, verbose: bool = False) -> tuple[logging.Logger, Path]:
    if log_dir is None:
        log_dir = Path(os.environ.get("APPDATA", "~")).expanduser() / "NxInstallResolver"
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "nxinstallresolver.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(message)s"))

    logger = logging.getLogger("nxinstallresolver")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)

    if verbose:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(stream)

    return logger, log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    # Anything escaping run() is a resolver bug, not a bad input file
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception

    # Codec libraries are often native extensions; a segfault while decoding
    # a package bypasses logging entirely, so faulthandler gets its own file
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="List which console packages (.nsp/.xci/.nca) can be installed"
    )
    parser.add_argument("paths", nargs="+", metavar="PATH")
    parser.add_argument("--codec", help="Package codec as module:attribute")
    parser.add_argument("--settings", help="JSON settings file")
    parser.add_argument(
        "--exclude", action="append", default=[], metavar="PATH",
        help="Uncheck this file (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Print candidates as JSON")
    parser.add_argument(
        "--confirmed", action="store_true", help="Print only the confirmed paths"
    )
    parser.add_argument("--log-dir")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def apply_exclusions(candidates: list[InstallCandidate], excluded: list[str]) -> list[InstallCandidate]:
    excluded_set = set(excluded)
    return [c.toggled(False) if c.path in excluded_set else c for c in candidates]


def write_candidates(candidates: list[InstallCandidate], out: TextIO):
    out.write(CONFIRM_TEXT + "\n")
    out.write(OVERWRITE_TEXT + "\n\n")
    for c in candidates:
        mark = "x" if c.selected else " "
        out.write(f"[{mark}] {c.label}\n    {c.path}\n")


def run(args: argparse.Namespace, logger: logging.Logger, out: TextIO = sys.stdout) -> int:
    try:
        settings = load_settings(args.settings)
    except (ValueError, OSError) as e:
        logger.error("Invalid settings file %s: %s", args.settings, e)
        print(f"Invalid settings file {args.settings}: {e}", file=sys.stderr)
        return 2

    codec_ref = args.codec or os.environ.get(CODEC_ENV_VAR) or settings.codec
    if not codec_ref:
        print(
            f"No package codec configured (use --codec, {CODEC_ENV_VAR} or the settings file)",
            file=sys.stderr,
        )
        return 2

    try:
        codec = load_codec(codec_ref)
    except (ImportError, AttributeError, ValueError) as e:
        logger.error("Could not load codec %s: %s", codec_ref, e)
        print(f"Could not load codec {codec_ref}: {e}", file=sys.stderr)
        return 2

    logger.info("Resolving %d file(s) with codec %s", len(args.paths), codec_ref)
    candidates = resolve_candidates(args.paths, codec, settings, log_callback=logger.debug)
    candidates = apply_exclusions(candidates, args.exclude)

    if args.confirmed:
        for path in confirmed_paths(candidates):
            out.write(path + "\n")
    elif args.json:
        out.write(json.dumps([asdict(c) for c in candidates], indent=2, ensure_ascii=False) + "\n")
    else:
        write_candidates(candidates, out)

    return 0


def cli():
    args = parse_args()
    logger, log_dir = setup_logging(args.log_dir, verbose=args.verbose)
    install_crash_handler(logger, log_dir)
    logger.info("Starting Install Candidate Resolver")
    sys.exit(run(args, logger))


if __name__ == "__main__":
    cli()
