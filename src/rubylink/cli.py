"""Command line entry point.

Usage:
    rubylink resolve [VERSION] [--static] [--format cargo|flags|json|header]
    rubylink build VERSION [--static]
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from rubylink.config import Settings
from rubylink.errors import RubyLinkError
from rubylink.models import BuildTarget, LinkageMode
from rubylink.policy import Policy
from rubylink.resolve import RubyResolver
from rubylink.version import Version


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.version:
        settings = replace(settings, version=Version.parse(args.version))
    if args.static:
        settings = replace(settings, linkage=LinkageMode.STATIC)
    if args.target:
        settings = replace(
            settings, target=BuildTarget(host=settings.target.host, target=args.target)
        )
    if args.cache_dir:
        settings = replace(settings, cache_dir=Path(args.cache_dir))
    if args.offline:
        settings = replace(
            settings,
            policy=Policy(
                network_mode="offline",
                require_integrity=settings.policy.require_integrity,
            ),
        )
    return settings


def cmd_resolve(args: argparse.Namespace) -> None:
    resolver = RubyResolver(settings=_settings(args))
    try:
        resolution = resolver.resolve()
    finally:
        if args.log_file:
            resolver.logger.to_json_lines(args.log_file)
    directives = resolution.directives
    if args.format == "json":
        sys.stdout.write(directives.to_json())
    elif args.format == "header":
        sys.stdout.write(resolution.wrapper_header())
    elif args.format == "flags":
        print(" ".join(directives.linker_args()))
    else:
        for line in directives.cargo_directives():
            print(line)


def cmd_build(args: argparse.Namespace) -> None:
    resolver = RubyResolver(settings=_settings(args))
    try:
        installation = resolver.build()
    finally:
        if args.log_file:
            resolver.logger.to_json_lines(args.log_file)
    print(installation.root)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--static", action="store_true", help="Link Ruby statically")
    parser.add_argument("--target", help="Target triple (defaults to TARGET or the host)")
    parser.add_argument("--cache-dir", help="Cache root (defaults to RUBYLINK_CACHE_DIR)")
    parser.add_argument("--offline", action="store_true", help="Never download archives")
    parser.add_argument("--log-file", help="Write structured log records as JSON lines")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rubylink", description="Locate or build Ruby for linking")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve_p = sub.add_parser("resolve", help="Print link directives for a Ruby version")
    resolve_p.add_argument(
        "version",
        nargs="?",
        help="Ruby version (defaults to RUBYLINK_RUBY_VERSION, else the ruby on PATH)",
    )
    resolve_p.add_argument(
        "--format",
        choices=("cargo", "flags", "json", "header"),
        default="cargo",
        help="Output format (header: #include lines for bindgen)",
    )
    _add_common(resolve_p)

    build_p = sub.add_parser("build", help="Acquire and build a Ruby version into the cache")
    build_p.add_argument("version", help="Ruby version to build")
    _add_common(build_p)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "resolve":
            cmd_resolve(args)
        elif args.command == "build":
            cmd_build(args)
    except RubyLinkError as exc:
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
