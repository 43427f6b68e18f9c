"""Command line entry point: upload stdin to a storage URI."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
import time
from pathlib import Path
from typing import Sequence

from liveuploader import __version__
from liveuploader.config import DEFAULT_CONFIG_FILE, Settings, load_config_file, parse_comma_map
from liveuploader.exceptions import ConfigurationError, UploaderError
from liveuploader.models.destination import Destination
from liveuploader.pipeline.orchestrator import upload
from liveuploader.storage import DriverResolver, describe_drivers
from liveuploader.utils.logging_setup import mask_credentials, setup_logging

logger = logging.getLogger("liveuploader.cli")

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# glog-style numeric verbosity.
_VERBOSITY_LEVELS = {"4": "INFO", "5": "DEBUG", "6": "DEBUG"}


def parse_duration(raw: str) -> float:
    """Parse ``30s``, ``5m``, ``1m30s``, ``500ms`` or plain seconds."""
    text = str(raw or "").strip()
    try:
        return float(text)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or not text:
        raise argparse.ArgumentTypeError(f"invalid duration: {raw!r}")
    return total


def _comma_map(raw: str) -> list[tuple[str, str]]:
    try:
        return parse_comma_map(raw)
    except ConfigurationError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _comma_list(raw: str) -> list[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liveuploader",
        description="Upload standard input to the given object store URI.",
    )
    parser.add_argument("uri", nargs="?", default="", help="destination URI with credentials")
    parser.add_argument("--version", action="store_true", help="print application version")
    parser.add_argument(
        "-j", dest="describe", action="store_true", help="describe supported storage drivers in JSON and exit"
    )
    parser.add_argument("-v", dest="verbosity", default=None, help="log verbosity {4|5|6} or a level name")
    parser.add_argument("-t", dest="timeout", type=parse_duration, default=None, help="upload timeout")
    parser.add_argument(
        "--segment-timeout", dest="segment_timeout", type=parse_duration, default=None, help="segment write timeout"
    )
    parser.add_argument(
        "--storage-fallback-urls",
        dest="storage_fallback_urls",
        type=_comma_map,
        default=None,
        help="comma-separated primary=backup URL prefixes; failed writes to a primary fall back to its backup",
    )
    parser.add_argument(
        "--disable-thumbs", dest="disable_thumbs", type=_comma_list, default=None, help="stream ids without thumbnails"
    )
    parser.add_argument(
        "--thumbs-url-rewrite",
        dest="thumbs_url_rewrite",
        type=_comma_map,
        default=None,
        help="comma-separated prefix=replacement rules for thumbnail URLs",
    )
    parser.add_argument("-l", dest="log_file", default=None, help="log file path")
    default_config = DEFAULT_CONFIG_FILE if Path(DEFAULT_CONFIG_FILE).exists() else ""
    parser.add_argument("--config", default=default_config, help="config file (optional)")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse flags; values from the config file fill in flags not given."""
    parser = build_parser()
    pre, _ = parser.parse_known_args(argv)
    file_values = load_config_file(pre.config)
    if file_values:
        defaults: dict[str, object] = {}
        for action in parser._actions:
            for key in (action.dest, *(s.lstrip("-") for s in action.option_strings)):
                if key in file_values and action.dest not in defaults:
                    raw = file_values[key]
                    if action.nargs == 0:
                        defaults[action.dest] = raw.lower() in {"", "1", "true", "yes", "on"}
                    else:
                        defaults[action.dest] = action.type(raw) if callable(action.type) else raw
        parser.set_defaults(**defaults)
    return parser.parse_args(argv)


def _apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    upload_cfg = settings.upload
    if args.timeout is not None:
        upload_cfg.write_timeout_s = float(args.timeout)
    if args.segment_timeout is not None:
        upload_cfg.segment_timeout_s = float(args.segment_timeout)
    if args.storage_fallback_urls is not None:
        upload_cfg.storage_fallback_urls = list(args.storage_fallback_urls)
    if args.disable_thumbs is not None:
        settings.thumbnails.disable_list = list(args.disable_thumbs)
    if args.thumbs_url_rewrite is not None:
        settings.thumbnails.url_rewrite_rules = list(args.thumbs_url_rewrite)
    if args.log_file:
        settings.logging.file = str(args.log_file)
    return settings


def run(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    resolver: DriverResolver | None = None,
) -> int:
    try:
        args = parse_args(argv)
        settings = _apply_args(settings or Settings(), args)
    except (ConfigurationError, ValueError) as exc:
        print(f"error parsing cli: {exc}", file=sys.stderr)
        return 1

    level = None
    if args.verbosity:
        level = _VERBOSITY_LEVELS.get(str(args.verbosity), str(args.verbosity))
    setup_logging(settings, level_override=level)

    if args.version:
        print(f"liveuploader version: {__version__}")
        return 0

    # list enabled drivers and exit
    if args.describe:
        sys.stdout.buffer.write(describe_drivers())
        sys.stdout.flush()
        return 0

    if not args.uri:
        logger.error("destination URI is not specified. See -j for usage.")
        return 1

    try:
        dest = Destination.parse(args.uri)
    except ConfigurationError as exc:
        logger.error("failed to parse URI: %s", exc)
        return 1

    # Keep stdout clean for the JSON result.
    stdout = sys.stdout
    devnull = open(os.devnull, "w")
    sys.stdout = devnull
    start = time.monotonic()
    try:
        result = upload(
            sys.stdin.buffer,
            dest,
            settings=settings,
            resolver=resolver or DriverResolver(testing=settings.testing),
        )
    except UploaderError as exc:
        logger.error("uploader failed (uri=%s, code=%s): %s", dest.redacted(), exc.error_code, exc)
        return 1
    finally:
        sys.stdout = stdout
        devnull.close()

    # After a failover this is the backup location.
    written = mask_credentials(result.final_uri)
    logger.info(
        "uploader succeeded (uri=%s, storage_request_id=%s, etag=%s, time_taken_ms=%d)",
        written,
        result.header("X-Amz-Request-Id"),
        result.header("Etag"),
        int((time.monotonic() - start) * 1000),
    )
    json.dump({"uri": written}, stdout)
    stdout.write("\n")
    stdout.flush()
    return 0


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
