"""Pull stage: fetch every manifest entry, falling back to a mirror."""

import logging
from collections.abc import Sequence

from .core.engine import ContainerEngine
from .core.types import DEFAULT_MIRROR, ImageOutcome, StageReport
from .exceptions import EngineError, PullFailedError

logger = logging.getLogger(__name__)


async def _pull_from_mirror(engine: ContainerEngine, ref: str, mirror: str) -> ImageOutcome:
    """Pull ``ref`` through the mirror and rename it to the original name."""
    mirror_ref = f"{mirror}/{ref}"
    try:
        await engine.pull(mirror_ref)
    except EngineError as e:
        return ImageOutcome(ref, False, str(e))

    logger.info("Successfully pulled from %s. Retagging image...", mirror)
    try:
        await engine.tag(mirror_ref, ref)
    except EngineError as e:
        logger.error("Failed to retag '%s' to '%s': %s", mirror_ref, ref, e)
        # Drop the mirror copy so no half-pulled name is left behind
        try:
            await engine.remove_image(mirror_ref)
        except EngineError as rm_error:
            logger.warning("Could not remove '%s': %s", mirror_ref, rm_error)
        return ImageOutcome(ref, False, str(e))

    logger.info("Successfully retagged to '%s'.", ref)
    return ImageOutcome(ref, True)


async def pull_image(
    engine: ContainerEngine, ref: str, mirror: str = DEFAULT_MIRROR
) -> ImageOutcome:
    """Pull one image from its origin, then from the mirror.

    Args:
        engine: Container engine
        ref: Image reference
        mirror: Mirror registry host tried when the origin pull fails

    Returns:
        ImageOutcome for ``ref``
    """
    logger.info("Pulling image: %s", ref)
    try:
        await engine.pull(ref)
    except EngineError as e:
        logger.info("Initial pull failed (%s). Retrying with %s...", e, mirror)
    else:
        logger.info("Successfully pulled '%s' from original source.", ref)
        return ImageOutcome(ref, True)

    outcome = await _pull_from_mirror(engine, ref, mirror)
    if not outcome.success:
        logger.warning("Failed to pull image '%s' from both sources.", ref)
    return outcome


async def pull_images(
    engine: ContainerEngine,
    references: Sequence[str],
    mirror: str = DEFAULT_MIRROR,
) -> StageReport:
    """Pull every reference in order without stopping at failures.

    Args:
        engine: Container engine
        references: Manifest entries
        mirror: Mirror registry host (default: mirror.gcr.io)

    Returns:
        StageReport with one outcome per reference

    Examples:
        report = await pull_images(engine, ["ubuntu:20.04", "library/nginx"])
        ensure_pulled(report)
    """
    logger.info("--- Starting image pull process ---")
    outcomes = []
    for ref in references:
        outcomes.append(await pull_image(engine, ref, mirror))

    report = StageReport("pull", tuple(outcomes))
    if report.ok:
        logger.info("--- All images pulled successfully ---")
    return report


def ensure_pulled(report: StageReport) -> None:
    """Raise if any image of the pull stage failed.

    Raises:
        PullFailedError: Listing every failing reference
    """
    if report.ok:
        return

    logger.error("--- Summary of failed pulls ---")
    for ref in report.failed:
        logger.error("Failed: %s", ref)
    raise PullFailedError(report.failed)
