"""Command-line entry point for installing template dependencies.

Usage::

    capx-install ./my-app --templates templates.yaml
    capx-install ./my-app --templates templates.json --package-manager pnpm --retries 2
    python -m capx_compose.cli ./my-app --templates templates.json --include-base
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from capx_compose.config import Config, InstallConfig, PackageManagerName
from capx_compose.errors import CapxError, ExitCode, error_class_for
from capx_compose.installer.orchestrator import InstallationOrchestrator
from capx_compose.reporter import display_installation_result, format_error_message
from capx_compose.resolver.merger import NEXTJS_BASE_TEMPLATE
from capx_compose.resolver.models import load_templates
from capx_compose.utils import (
    console,
    format_duration,
    print_error,
    print_header,
    print_success,
    print_summary_table,
    print_warning,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capx-install",
        description="Merge template dependencies into package.json and install them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  capx-install ./my-app --templates templates.yaml\n"
            "  capx-install ./my-app -t templates.json --package-manager yarn --retries 2\n"
            "  capx-install ./my-app -t templates.json --include-base --no-peer-analysis\n"
        ),
    )

    parser.add_argument("target", help="Project directory containing (or receiving) package.json")
    parser.add_argument(
        "--templates", "-t",
        default=None,
        help="JSON or YAML file listing template descriptors (default: none)",
    )
    parser.add_argument(
        "--include-base",
        action="store_true",
        help="Merge the default Next.js dependency set before the templates",
    )
    parser.add_argument(
        "--package-manager", "-p",
        choices=[m.value for m in PackageManagerName],
        default=None,
        help="Package manager to use (default: detect from lockfile, else npm)",
    )
    parser.add_argument("--retries", type=int, default=None, help="Retries after a failed attempt")
    parser.add_argument("--retry-delay-ms", type=int, default=None, help="Delay between attempts")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-attempt timeout")
    parser.add_argument("--project-name", default=None, help="Name for a newly created package.json")
    parser.add_argument("--config", default=None, help="JSON configuration file (default: environment)")
    parser.add_argument("--silent", action="store_true", help="Suppress all output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Echo package manager output")
    parser.add_argument("--production", action="store_true", help="Skip devDependencies")
    parser.add_argument(
        "--no-peer-analysis", action="store_true", help="Skip peer dependency analysis"
    )
    parser.add_argument(
        "--no-legacy-peer-deps",
        action="store_true",
        help="Do not retry npm with --legacy-peer-deps after peer conflicts",
    )
    parser.add_argument(
        "--offline-analysis",
        action="store_true",
        help="Use only the built-in peer table; make no registry requests",
    )
    parser.add_argument(
        "--pm-arg",
        action="append",
        dest="additional_args",
        default=None,
        metavar="ARG",
        help="Extra argument for the package manager, e.g. --pm-arg=--ignore-scripts (repeatable)",
    )
    return parser


def _build_config(args: argparse.Namespace) -> Config:
    config = Config.load(Path(args.config)) if args.config else Config.from_env()

    install_updates: dict[str, Any] = {}
    if args.package_manager:
        install_updates["package_manager"] = PackageManagerName(args.package_manager)
    if args.retries is not None:
        install_updates["retry_attempts"] = args.retries
    if args.retry_delay_ms is not None:
        install_updates["retry_delay_ms"] = args.retry_delay_ms
    if args.timeout_ms is not None:
        install_updates["timeout_ms"] = args.timeout_ms
    if args.silent:
        install_updates["silent"] = True
    if args.verbose:
        install_updates["verbose"] = True
    if args.production:
        install_updates["production"] = True
    if args.no_peer_analysis:
        install_updates["enable_peer_analysis"] = False
    if args.no_legacy_peer_deps:
        install_updates["legacy_peer_deps_fallback"] = False
    if args.additional_args:
        install_updates["additional_args"] = list(args.additional_args)

    # Re-validate so out-of-range CLI values are rejected.
    install = InstallConfig.model_validate({**config.install.model_dump(), **install_updates})
    analyzer = config.analyzer
    if args.offline_analysis:
        analyzer = analyzer.model_copy(update={"fetch_metadata": False})
    return Config(install=install, analyzer=analyzer)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for ``capx-install``."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _build_config(args)
    except (ValueError, OSError) as exc:
        print_error(f"Error: invalid configuration: {exc}")
        sys.exit(ExitCode.INVALID_ARGUMENTS)

    templates = []
    if args.templates:
        try:
            templates = load_templates(args.templates)
        except FileNotFoundError:
            print_error(f"Error: template file not found: {args.templates}")
            sys.exit(ExitCode.INVALID_ARGUMENTS)
        except ValueError as exc:
            print_error(f"Error: {exc}")
            sys.exit(ExitCode.VALIDATION_ERROR)
    if args.include_base:
        templates.insert(0, NEXTJS_BASE_TEMPLATE)

    silent = config.install.silent
    if not silent:
        names = ", ".join(t.name for t in templates) or "none"
        print_header(f"Installing dependencies ({names})")
        if not templates:
            print_warning("No templates selected; only the existing package.json is installed.")
        if config.install.verbose:
            print_summary_table(
                {
                    "Target": str(Path(args.target).resolve()),
                    "Package manager": (
                        config.install.package_manager.value
                        if config.install.package_manager
                        else "auto"
                    ),
                    "Retries": str(config.install.retry_attempts),
                    "Timeout": format_duration(config.install.timeout_seconds),
                    "Peer analysis": "on" if config.install.enable_peer_analysis else "off",
                },
                title="Install options",
            )

    orchestrator = InstallationOrchestrator(config)
    try:
        result = asyncio.run(
            orchestrator.install_dependencies(
                Path(args.target), templates, project_name=args.project_name
            )
        )
    except CapxError as exc:
        if not silent:
            console.print(f"[bold red]{exc.user_message}[/bold red]")
        sys.exit(exc.exit_code)

    if not silent:
        display_installation_result(result, verbose=config.install.verbose)

    if result.success:
        if not silent:
            print_success("Dependencies installed successfully!")
        return

    if silent:
        print(format_error_message(result, include_docs=False), file=sys.stderr)
    sys.exit(error_class_for(result.error_kind).exit_code)


if __name__ == "__main__":
    main()
