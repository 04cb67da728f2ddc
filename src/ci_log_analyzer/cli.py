from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from ci_log_analyzer.core.extract import NO_IGNORES, IgnorePatterns, resolve_extract_config
from ci_log_analyzer.core.index import load, load_or_create, save
from ci_log_analyzer.core.log_service import (
    LinePreprocessor,
    extract_from_path,
    iter_log_files,
    learn_from_paths,
    read_log,
)
from ci_log_analyzer.core.report import render_blocks
from ci_log_analyzer.core.sanitize import strip_timestamp
from ci_log_analyzer.core.storage import resolve_storage

INDEX_ENV = "LOG_ANALYZER_INDEX"
LOG_LEVEL_ENV = "LOG_ANALYZER_LOG_LEVEL"

logger = logging.getLogger(__name__)


def _configure_logging(verbose: int) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
        level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _multiplier(s: str) -> int:
    try:
        value = int(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError("multiplier must be an integer") from e
    if value < 0:
        raise argparse.ArgumentTypeError("multiplier must be >= 0")
    return value


def _ignore_patterns(args: argparse.Namespace) -> IgnorePatterns:
    if args.ignore_file is None:
        return NO_IGNORES
    return IgnorePatterns.from_json_file(args.ignore_file)


def _preprocess(args: argparse.Namespace) -> LinePreprocessor | None:
    return strip_timestamp if args.strip_timestamps else None


def _cmd_cat(args: argparse.Namespace) -> int:
    data = asyncio.run(read_log(args.input))
    if args.strip_control:
        data = bytes(b for b in data if b == 0x0A or not (b < 0x20 or b == 0x7F))
    if args.decode_utf8:
        data = data.decode("utf-8", errors="replace").encode("utf-8")
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()
    return 0


def _cmd_learn(args: argparse.Namespace) -> int:
    storage = resolve_storage(args.index_file)
    index = load_or_create(storage)
    asyncio.run(
        learn_from_paths(
            index, args.logs, multiplier=args.multiplier, preprocess=_preprocess(args)
        )
    )
    save(index, storage)
    return 0


def _cmd_extract_one(args: argparse.Namespace) -> int:
    index = load(resolve_storage(args.index_file))
    extraction = asyncio.run(
        extract_from_path(
            args.log,
            index,
            config=resolve_extract_config(None),
            ignore=_ignore_patterns(args),
            preprocess=_preprocess(args),
        )
    )
    text = render_blocks(extraction.blocks)
    if text:
        print(text)
    return 0


def _cmd_extract_dir(args: argparse.Namespace) -> int:
    index = load(resolve_storage(args.index_file))
    config = resolve_extract_config(None)
    ignore = _ignore_patterns(args)
    preprocess = _preprocess(args)
    source = Path(args.source)
    dest = Path(args.destination)
    if not source.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source}")
    dest.mkdir(parents=True, exist_ok=True)

    for old in iter_log_files([dest], recursive=False):
        old.unlink()

    async def run() -> int:
        count = 0
        for path in iter_log_files([source], recursive=False):
            count += 1
            logger.debug("Extracting errors from %s [%d/?]...", path, count)
            extraction = await extract_from_path(
                path, index, config=config, ignore=ignore, preprocess=preprocess
            )
            out = dest / f"{path.name}.err"
            text = render_blocks(extraction.blocks)
            out.write_text(text + "\n" if text else "", encoding="utf-8")
        return count

    asyncio.run(run())
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ci-log-analyzer",
        description="Learn from successful CI logs and extract the unusual parts of failed ones.",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    index_help = f"Index file or s3://bucket/key (default: ${INDEX_ENV})"

    def add_index_arg(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("-i", "--index-file", default=os.getenv(INDEX_ENV), help=index_help)

    def add_timestamp_arg(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "-t",
            "--strip-timestamps",
            action="store_true",
            help="Drop the leading timestamp of every line (GitHub Actions, Azure Pipelines)",
        )

    def add_ignore_arg(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "--ignore-file",
            default=None,
            help='JSON file of [["start phrase", "end phrase"], ...] spans to skip',
        )

    cat = sub.add_parser("cat", help="Dump a (possibly gzipped) log file to stdout.")
    cat.add_argument("-s", "--strip-control", action="store_true",
                     help="Remove ASCII control characters except newlines")
    cat.add_argument("-d", "--decode-utf8", action="store_true", help="Lossily decode as UTF-8")
    cat.add_argument("input")
    cat.set_defaults(func=_cmd_cat)

    learn = sub.add_parser("learn", help="Learn from logs of successful builds.")
    add_index_arg(learn)
    add_timestamp_arg(learn)
    learn.add_argument("-m", "--multiplier", type=_multiplier, default=1,
                       help="Weight applied to every learned 5-gram (default: 1)")
    learn.add_argument("logs", nargs="+",
                       help="Log files or directories (recursive; hidden files are ignored)")
    learn.set_defaults(func=_cmd_learn)

    one = sub.add_parser("extract-one", help="Extract unusual blocks from one log.")
    add_index_arg(one)
    add_ignore_arg(one)
    add_timestamp_arg(one)
    one.add_argument("log")
    one.set_defaults(func=_cmd_extract_one)

    many = sub.add_parser("extract-dir", help="Extract every log in a directory into <name>.err files.")
    add_index_arg(many)
    add_ignore_arg(many)
    add_timestamp_arg(many)
    many.add_argument("-s", "--source", required=True, help="Directory with log files (not recursive)")
    many.add_argument("-d", "--destination", required=True,
                      help="Output directory; existing non-hidden files are deleted")
    many.set_defaults(func=_cmd_extract_dir)

    return p


def main(argv: Sequence[str] | None = None) -> None:
    p = build_parser()
    args = p.parse_args(argv)
    _configure_logging(args.verbose)

    if getattr(args, "index_file", "unset") is None:
        p.error(f"--index-file is required (or set {INDEX_ENV})")

    try:
        code = args.func(args)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
