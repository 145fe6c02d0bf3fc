"""CLI for Registry Survey."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog
import yaml

from .config import Config
from .exceptions import RegistrySurveyError
from .factory import Factory
from .services.survey import Surveyor


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="registry-survey",
        description="List repositories, manifests and tags in registries.",
    )
    parser.add_argument(
        "-c",
        "--config-file",
        "--file",
        type=Path,
        help="survey config file",
        default=None,
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
        default=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("repos", "List repositories"),
        ("manifests", "List manifests"),
        ("tags", "List tags"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "reference", help="registry reference, as <host>/<repository>"
        )
        sub.add_argument(
            "-r",
            "--recursive",
            action="store_true",
            help=f"{help_text} recursively",
            default=False,
        )
        sub.add_argument(
            "--json",
            action="store_true",
            help="Write results as JSON",
            default=False,
        )
    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> Config:
    if args.config_file is None:
        cfg = Config()
    else:
        cfg = Config.from_file(args.config_file)
    # Command line overrides the config file
    if args.debug:
        cfg.debug = True
    return cfg


def _configure_logging(debug: bool) -> None:
    # Results go to stdout, so log messages must not.
    log_level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _run(surveyor: Surveyor, args: argparse.Namespace) -> list[str]:
    """Run the requested listing and return the lines to print."""
    if args.command == "repos":
        repos = surveyor.repositories(
            args.reference, recursive=args.recursive
        )
        return [json.dumps(repos, indent=2)] if args.json else repos
    surveyed = surveyor.manifests(args.reference, recursive=args.recursive)
    if args.command == "manifests":
        if args.json:
            return [json.dumps([s.to_dict() for s in surveyed], indent=2)]
        return [line for s in surveyed for line in s.digest_lines()]
    if args.json:
        tags: list[dict[str, Any]] = [
            {
                "repository": str(s.reference),
                "tags": sorted({t for m in s.manifests for t in m.tags}),
            }
            for s in surveyed
        ]
        return [json.dumps(tags, indent=2)]
    return [line for s in surveyed for line in s.tag_lines()]


def main(argv: list[str] | None = None) -> None:
    """Survey a container registry."""
    args = _parse_args(argv)
    try:
        cfg = _load_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"registry-survey: cannot load config: {exc}", file=sys.stderr)
        sys.exit(1)
    _configure_logging(cfg.debug)

    surveyor = Factory(cfg).create_surveyor()
    try:
        lines = _run(surveyor, args)
    except RegistrySurveyError as exc:
        print(f"registry-survey: {exc}", file=sys.stderr)
        sys.exit(1)
    for line in lines:
        print(line)
