# src/releasekeeper/cli.py

import argparse
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from releasekeeper import __version__, log_utils
from releasekeeper.config import LauncherConfig, load_config
from releasekeeper.exceptions import ConfigurationError
from releasekeeper.install import (
    InstallationManager,
    InstallationWorker,
    InstallOutcome,
    ProgressListener,
)
from releasekeeper.release import (
    BuildChannel,
    Profile,
    Release,
    ReleaseAggregator,
    ReleaseIdentifier,
    default_sources,
    with_local_releases,
)

logger = log_utils.logger


def _sorted_releases(releases: Iterable[Release]) -> List[Release]:
    return sorted(
        releases,
        key=lambda r: (r.id.profile.name, r.id.channel.name, r.metadata.published_at),
        reverse=True,
    )


def _filter(
    releases: Iterable[Release], profile: Optional[str], channel: Optional[str]
) -> List[Release]:
    return [
        r
        for r in releases
        if (profile is None or r.id.profile.name == profile)
        and (channel is None or r.id.channel.name == channel)
    ]


def _describe(release: Release, installed: bool) -> str:
    flags = []
    if installed:
        flags.append("installed")
    if release.archive_url is None:
        flags.append("local only")
    if not release.metadata.is_compatible_binary_format:
        flags.append("legacy format")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"{release.id.profile.name:<8} {release.id.channel.name:<8} "
        f"{release.id.display_version:<24} {release.metadata.published_at:%Y-%m-%d}{suffix}"
    )


def _fetch_catalog(config: LauncherConfig, manager: InstallationManager) -> List[Release]:
    aggregator = ReleaseAggregator(default_sources(config))
    catalog = aggregator.aggregate()
    return _sorted_releases(with_local_releases(catalog, manager.index.local_releases()))


def _find_release(
    releases: Iterable[Release], version: str, profile: str, channel: str
) -> Optional[Release]:
    for release in releases:
        if (
            release.id.display_version == version
            and release.id.profile.name == profile
            and release.id.channel.name == channel
        ):
            return release
    return None


def _find_installed(
    manager: InstallationManager, version: str, profile: str, channel: str
) -> Optional[ReleaseIdentifier]:
    for identifier in manager.index.snapshot():
        if (
            identifier.display_version == version
            and identifier.profile.name == profile
            and identifier.channel.name == channel
        ):
            return identifier
    return None


def _log_progress(listener: ProgressListener) -> None:
    if listener.progress and listener.progress % 10 == 0:
        logger.info(f"Download progress: {listener.progress}%")


def cmd_list(args: argparse.Namespace, config: LauncherConfig, manager: InstallationManager) -> int:
    releases = _filter(_fetch_catalog(config, manager), args.profile, args.channel)
    if not releases:
        logger.info("No releases found.")
        return 0
    for release in releases:
        logger.info(_describe(release, manager.index.covers(release.id)))
    return 0


def cmd_installed(args: argparse.Namespace, config: LauncherConfig, manager: InstallationManager) -> int:
    releases = _filter(_sorted_releases(manager.index.local_releases()), args.profile, args.channel)
    if not releases:
        logger.info(f"Nothing installed under {config.install_dir}")
        return 0
    for release in releases:
        logger.info(_describe(release, True))
    return 0


def cmd_install(args: argparse.Namespace, config: LauncherConfig, manager: InstallationManager) -> int:
    release = _find_release(_fetch_catalog(config, manager), args.version, args.profile, args.channel)
    if release is None:
        logger.error(f"No release {args.profile}/{args.channel}/{args.version} is offered")
        return 1
    if release.archive_url is None:
        logger.error(f"Release {release.id} is no longer available for download")
        return 1

    worker = InstallationWorker(manager)
    unit = worker.submit_install(release, ProgressListener(_log_progress))
    try:
        result = unit.result()
    except KeyboardInterrupt:
        logger.info("Cancelling download...")
        unit.cancel()
        worker.shutdown(wait=True)
        return 130
    except Exception:
        # Already logged by the worker
        worker.shutdown()
        return 1
    worker.shutdown()

    if result.outcome is InstallOutcome.CANCELLED:
        logger.info("Installation cancelled.")
        return 130
    logger.info(f"Installed {release.id} into {result.path}")
    return 0


def cmd_remove(args: argparse.Namespace, config: LauncherConfig, manager: InstallationManager) -> int:
    identifier = _find_installed(manager, args.version, args.profile, args.channel)
    if identifier is None:
        logger.error(f"{args.profile}/{args.channel}/{args.version} is not installed")
        return 1

    worker = InstallationWorker(manager)
    unit = worker.submit_remove(identifier)
    try:
        unit.result()
    except Exception:
        # Already logged by the worker
        worker.shutdown()
        return 1
    worker.shutdown()
    return 0


def cmd_clean_cache(args: argparse.Namespace, config: LauncherConfig, manager: InstallationManager) -> int:
    manager.clean_cache()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Releasekeeper - discover, install and manage game releases"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a configuration YAML file")
    parser.add_argument(
        "--log-level",
        help="Console log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument("--log-dir", help="Also write a rotating log file into this directory")
    subparsers = parser.add_subparsers(dest="command")

    profiles = [p.name for p in Profile]
    channels = [c.name for c in BuildChannel]

    for name, help_text in (
        ("list", "List releases offered by all sources"),
        ("installed", "List installed releases"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--profile", type=str.upper, choices=profiles)
        sub.add_argument("--channel", type=str.upper, choices=channels)

    for name, help_text in (
        ("install", "Download and install a release"),
        ("remove", "Remove an installed release"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("version", help="Display version, as shown by 'list'")
        sub.add_argument("--profile", type=str.upper, choices=profiles, default=Profile.FULL.name)
        sub.add_argument(
            "--channel", type=str.upper, choices=channels, default=BuildChannel.STABLE.name
        )

    subparsers.add_parser("clean-cache", help="Delete downloaded archives")
    return parser


COMMANDS = {
    "list": cmd_list,
    "installed": cmd_installed,
    "install": cmd_install,
    "remove": cmd_remove,
    "clean-cache": cmd_clean_cache,
}


def main(argv: Optional[List[str]] = None) -> int:
    # Logging is automatically initialized by importing log_utils
    """
    Entry point for the Releasekeeper command-line interface.

    Parses arguments, loads the configuration and dispatches to one of the
    list, installed, install, remove and clean-cache subcommands.

    Returns:
        int: Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        log_utils.set_log_level(args.log_level)
    if args.log_dir:
        log_utils.add_file_logging(Path(args.log_dir), args.log_level or "INFO")

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    manager = InstallationManager(config)
    return COMMANDS[args.command](args, config, manager)


if __name__ == "__main__":
    sys.exit(main())
