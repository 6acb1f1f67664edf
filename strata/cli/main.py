"""strata CLI - Command-line interface for environment resolution.

This module provides the main CLI entrypoint for strata, allowing operators
to build and check an environment overlay from the command line.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from strata.core.config import load_config
from strata.core.errors import PatchApplyError, PolicyViolationError, ResolutionError
from strata.k8s.environments import list_profiles
from strata.k8s.resolver import resolve_overlay

logger = logging.getLogger(__name__)


def main(argv=None):
    """Main CLI entrypoint for strata."""
    parser = argparse.ArgumentParser(
        prog="strata",
        description="strata - environment-conditional workload configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print the resolved prod manifests
  strata build manifests/overlays/prod

  # Write the resolved local manifests to a directory
  strata build manifests/overlays/local --out build/local/

  # Check an overlay without writing anything
  strata check manifests/overlays/prod -v

  # Resolve an overlay directory under a different environment tag
  strata check overlays/staging-copy --env prod

  # List environment profiles
  strata envs

Note:
  Settings are read from strata.json (or $STRATA_CONFIG) when present.
"""
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Resolve an overlay and emit the merged manifests"
    )
    build_parser.add_argument(
        "overlay",
        help="Path to the overlay directory (e.g. manifests/overlays/prod)"
    )
    build_parser.add_argument(
        "--env",
        help="Environment tag (default: the overlay directory name)"
    )
    build_parser.add_argument(
        "--out",
        help="Output directory (default: print to stdout)"
    )
    build_parser.add_argument(
        "--output-filename",
        default="resolved.yaml",
        help="Output filename when --out is given (default: resolved.yaml)"
    )
    build_parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)"
    )
    build_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Resolve an overlay and report policy violations"
    )
    check_parser.add_argument(
        "overlay",
        help="Path to the overlay directory"
    )
    check_parser.add_argument(
        "--env",
        help="Environment tag (default: the overlay directory name)"
    )
    check_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    # Envs command
    subparsers.add_parser(
        "envs",
        help="List environment profiles"
    )

    args = parser.parse_args(argv)

    # Setup logging
    if hasattr(args, 'verbose') and args.verbose:
        logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(levelname)s: %(message)s')

    # Handle commands
    if args.command == "build":
        return cmd_build(args)
    elif args.command == "check":
        return cmd_check(args)
    elif args.command == "envs":
        return cmd_envs(args)
    else:
        parser.print_help()
        return 1


def cmd_build(args):
    """Handle build command."""
    overlay_path = Path(args.overlay)
    if not overlay_path.is_dir():
        print(f"Error: Overlay directory not found: {overlay_path}", file=sys.stderr)
        return 1

    try:
        resolved = resolve_overlay(overlay_path, environment=args.env)
    except (ResolutionError, PatchApplyError) as e:
        _report_error(e)
        return 1

    if args.format == "json":
        output = json.dumps(
            {"environment": resolved.environment, "documents": _plain(resolved.documents)}, indent=2
        )
        filename = str(Path(args.output_filename).with_suffix(".json"))
    else:
        output = resolved.to_yaml()
        filename = args.output_filename

    if not args.out:
        print(output, end="" if output.endswith("\n") else "\n")
        return 0

    output_dir = Path(args.out)
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / filename).write_text(output, encoding="utf-8")
    print(f"Resolved env={resolved.environment}: wrote {output_dir / filename}")
    return 0


def cmd_check(args):
    """Handle check command."""
    overlay_path = Path(args.overlay)
    if not overlay_path.is_dir():
        print(f"Error: Overlay directory not found: {overlay_path}", file=sys.stderr)
        return 1

    try:
        resolved = resolve_overlay(overlay_path, environment=args.env)
    except (ResolutionError, PatchApplyError) as e:
        _report_error(e)
        return 1

    workload = resolved.workload
    print(f"✓ env={resolved.environment}: {workload.kind}/{workload.name} resolves cleanly")
    print(f"  replicas: {workload.replicas}")
    print(f"  readiness: {resolved.probe('readiness').kind}")
    print(f"  liveness: {resolved.probe('liveness').kind}")
    print(f"  maxUnavailable: {workload.strategy.max_unavailable}, maxSurge: {workload.strategy.max_surge}")
    budget = resolved.disruption_budget
    if budget is not None:
        print(f"  PodDisruptionBudget/{budget.name}: minAvailable={budget.min_available}")
    if resolved.warnings:
        print(f"\n⚠ {len(resolved.warnings)} warnings")
        for v in resolved.warnings:
            print(f"  - {v.id}: {v.message}")
    return 0


def cmd_envs(args):
    """Handle envs command."""
    for profile in list_profiles(load_config()):
        budget = "none" if profile.pdb_min_available is None else f"minAvailable={profile.pdb_min_available}"
        print(f"{profile.name}: {profile.description}")
        print(f"  probes: {profile.probe_kind} "
              f"(readiness {profile.readiness.initial_delay}s/{profile.readiness.period}s)")
        print(f"  rollout: maxUnavailable={profile.max_unavailable}, maxSurge={profile.max_surge}")
        print(f"  pdb: {budget}")
    return 0


def _report_error(error):
    print(f"Error: {error}", file=sys.stderr)
    details = getattr(error, "details", None)
    if isinstance(error, PolicyViolationError):
        for v in error.violations:
            print(f"  - {v.id}: {v.message}", file=sys.stderr)
    elif details:
        print(f"  {details}", file=sys.stderr)
    logger.debug("Resolution failed", exc_info=True)


def _plain(value):
    """Convert ruamel round-trip containers into plain JSON-serializable values."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


if __name__ == "__main__":
    sys.exit(main())
