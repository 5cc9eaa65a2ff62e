"""Command line interface."""

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from .core.types import DEFAULT_DOCKER_HOST, DEFAULT_MIRROR, RegistryTarget, RunConfig
from .exceptions import ImageSyncError, PullFailedError, UsageError
from .logging_utils import configure_logging
from .runner import execute

logger = logging.getLogger(__name__)

PROG = "image-sync"

USAGE = (
    f"{PROG} -f <path_to_images_or_manifest_file> [keep] [save] "
    "[push <registry:port> [<username> <password>]]"
)

DESCRIPTION = """\
Pull, save and push sets of container images. This program must be run with
root privileges.

Parameters:
  -f <path_to_images_file>   Path to the file containing a list of container
                             images and tags (one per line). Alternatively, a
                             .tar.gz file created by this program for
                             air-gapped mode.
  keep                       Do NOT delete the images from the local Docker
                             daemon at the end.
  save                       Save the images (and offline Docker packages) to
                             a .tar.gz file.
  push <registry:port>       Push the images to the given registry.
  <username> <password>      Optional registry credentials; a password is
                             required when a username is given."""

EPILOG = f"""\
Examples:
  Pull and save images:
    sudo {PROG} -f my_images.txt save

  Pull, save, and push to a registry:
    sudo {PROG} -f my_images.txt save push my-registry.com:5000

  Load images from a local file and push (air-gapped):
    sudo {PROG} -f container_images_...tar.gz push my-registry.com:5000

  Load images from a local file and keep them without pushing:
    sudo {PROG} -f container_images_...tar.gz keep"""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        usage=USAGE,
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-f", dest="images_file", required=True, help=argparse.SUPPRESS)
    parser.add_argument("words", nargs="*", help=argparse.SUPPRESS)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")
    parser.add_argument(
        "--mirror",
        default=os.environ.get("IMAGE_SYNC_MIRROR", DEFAULT_MIRROR),
        help="Mirror registry used when a pull from the origin fails",
    )
    parser.add_argument(
        "--output-dir", default=".", help="Directory receiving the saved archive"
    )
    parser.add_argument(
        "--docker-host",
        default=os.environ.get("DOCKER_HOST", DEFAULT_DOCKER_HOST),
        help="Docker daemon address",
    )
    parser.add_argument(
        "--no-offline-packages",
        action="store_true",
        help="Do not bundle offline Docker packages when saving",
    )
    return parser


def parse_words(words: Sequence[str]) -> dict:
    """Interpret the positional mode words.

    Returns:
        Keyword arguments (save, push, keep, registry) for :class:`RunConfig`

    Raises:
        UsageError: On unknown words or incomplete push arguments
    """
    modes = {"save": False, "push": False, "keep": False}
    push_args: list[str] = []
    for word in words:
        if word in modes:
            modes[word] = True
        elif modes["push"] and len(push_args) < 3:
            push_args.append(word)
        else:
            raise UsageError(f"Unknown parameter '{word}'.")

    registry = None
    if modes["push"]:
        if not push_args:
            raise UsageError("<registry:port> is required when <push> is specified.")
        registry = RegistryTarget.parse(*push_args)
    return dict(modes, registry=registry)


def build_config(args: argparse.Namespace) -> RunConfig:
    """Build the immutable run configuration from parsed arguments."""
    if not args.images_file:
        raise UsageError("-f requires a file path.")
    return RunConfig(
        images_file=Path(args.images_file),
        mirror=args.mirror,
        output_dir=Path(args.output_dir),
        docker_host=args.docker_host,
        offline_packages=not args.no_offline_packages,
        **parse_words(args.words),
    )


def _usage_error(parser: argparse.ArgumentParser, error: UsageError) -> int:
    print(f"Error: {error}\n", file=sys.stderr)
    parser.print_help(sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_intermixed_args(argv)
        config = build_config(args)
    except UsageError as e:
        return _usage_error(parser, e)

    configure_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        asyncio.run(execute(config))
    except UsageError as e:
        return _usage_error(parser, e)
    except PullFailedError as e:
        logger.error("Critical: One or more images failed to pull. Exiting.")
        logger.debug("Pull failure", exc_info=e)
        return 1
    except ImageSyncError as e:
        logger.error("Error: %s", e)
        logger.debug("Run failed", exc_info=e)
        return 1

    logger.info("Completed successfully.")
    return 0
