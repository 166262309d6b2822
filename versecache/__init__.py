"""versecache - Offline cache manager and content checks for a static Bible study app."""

import argparse
import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Config

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _load_config(config_path: str | None) -> "Config":
    """Load the configuration file, or the built-in deployment when none is given."""
    from .config import default_config, load_config

    if config_path is None:
        return default_config()
    return load_config(config_path)


def _cmd_validate(args: argparse.Namespace) -> None:
    """Execute the validate command - check bibles/, xrefs/ and theology/ JSON files."""
    _setup_logging(args.verbose)

    from .config import ConfigError
    from .validator import validate_data

    try:
        config = _load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    root = args.root if args.root is not None else config.validator.root
    report = validate_data(root, max_excerpt_words=config.validator.max_excerpt_words)
    print(report.format_report())

    if not report.ok:
        sys.exit(1)


def _cmd_build(args: argparse.Namespace) -> None:
    """Execute the build command - write sw.js, manifest and registration snippet."""
    _setup_logging(args.verbose)

    from .config import ConfigError
    from ._pwa import write_assets

    try:
        config = _load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        written = write_assets(config, args.output)
    except OSError as e:
        print(f"Error: Failed to write assets - {e}")
        sys.exit(1)

    for path in written:
        print(f"Wrote {path}")
    print(f"\nCache: {config.cache.name} ({len(config.precache)} precached resources)")


def _cmd_check(args: argparse.Namespace) -> None:
    """Execute the check command - install and activate the configured version against the live site."""
    _setup_logging(args.verbose)

    from .config import ConfigError
    from .network import HttpFetcher
    from .registration import ServiceWorkerRegistration
    from .storage import SqliteCacheStorage, StorageError
    from .worker import PrecacheError, WorkerScript

    # 1. Load configuration
    try:
        config = _load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # 2. Open cache storage
    try:
        storage = SqliteCacheStorage(config.storage.path)
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)

    fetcher = HttpFetcher(config.app.origin, config.network)
    script = WorkerScript.from_config(config)
    registration = ServiceWorkerRegistration(lambda: script, storage, fetcher)
    existing = set(storage.keys())

    # 3. Install and activate
    try:
        registration.update()
    except PrecacheError as e:
        storage.close()
        print(f"Error: Install of {config.cache.name} failed - {e}")
        sys.exit(1)
    finally:
        fetcher.close()

    # 4. Report cache contents
    cache = storage.open(config.cache.name)
    print(f"Cache {config.cache.name}: {len(cache)} entries")
    for url in cache.keys():
        print(f"  {url}")

    removed = sorted(existing - set(storage.keys()))
    for name in removed:
        print(f"Deleted old cache: {name}")

    storage.close()


def main() -> None:
    """Main entry point for the versecache package."""
    parser = argparse.ArgumentParser(
        description="versecache - Offline cache manager for a static Bible study app"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"versecache {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Validate subcommand (default behavior)
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate bibles/, xrefs/ and theology/ JSON files (default)",
    )
    validate_parser.add_argument(
        "root",
        nargs="?",
        help="Directory containing the data folders (default: current directory)",
    )
    validate_parser.add_argument(
        "-c", "--config",
        help="Path to configuration file (default: built-in settings)",
    )
    validate_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    validate_parser.set_defaults(func=_cmd_validate)

    # Build subcommand
    build_parser = subparsers.add_parser(
        "build",
        help="Write sw.js, manifest.webmanifest and pwa-register.js",
    )
    build_parser.add_argument(
        "-c", "--config",
        help="Path to configuration file (default: built-in settings)",
    )
    build_parser.add_argument(
        "-o", "--output",
        default=".",
        help="Output directory (default: current directory)",
    )
    build_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    build_parser.set_defaults(func=_cmd_build)

    # Check subcommand
    check_parser = subparsers.add_parser(
        "check",
        help="Precache the configured version from the live site and activate it",
    )
    check_parser.add_argument(
        "-c", "--config",
        help="Path to configuration file (default: built-in settings)",
    )
    check_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    check_parser.set_defaults(func=_cmd_check)

    args = parser.parse_args()

    # Default to 'validate' if no command specified
    if args.command is None:
        args.root = None
        args.config = None
        args.verbose = False
        args.func = _cmd_validate

    args.func(args)
