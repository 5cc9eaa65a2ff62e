"""Push stage: retag images for the target registry and push them."""

import logging
from collections.abc import Sequence

from .core.engine import ContainerEngine
from .core.types import ImageOutcome, RegistryTarget, StageReport
from .exceptions import (
    EmptyManifestError,
    EngineError,
    PushFailedError,
    RegistryLoginError,
)
from .utils.reference import rewrite_reference

logger = logging.getLogger(__name__)


async def login(engine: ContainerEngine, registry: RegistryTarget) -> None:
    """Authenticate against the target registry when credentials are given.

    Without a username the push is anonymous and nothing is sent.

    Raises:
        RegistryLoginError: If the registry rejects the credentials
    """
    if not registry.authenticated:
        logger.info("No credentials given, pushing to %s anonymously.", registry.address)
        return

    logger.info("Logging in to registry %s...", registry.address)
    try:
        await engine.login(registry.address, registry.username, registry.password)
    except EngineError as e:
        raise RegistryLoginError(
            f"Failed to log in to registry '{registry.address}' "
            f"with the provided credentials: {e}"
        ) from e
    logger.info("Logged in to registry.")


async def push_image(
    engine: ContainerEngine, ref: str, registry: RegistryTarget
) -> ImageOutcome:
    """Tag one image for ``registry``, push it and drop the temporary tag.

    Args:
        engine: Container engine
        ref: Local image reference
        registry: Destination registry

    Returns:
        ImageOutcome for ``ref``
    """
    new_tag = rewrite_reference(ref, registry.address)

    logger.info("Tagging '%s' as '%s'...", ref, new_tag)
    try:
        await engine.tag(ref, new_tag)
    except EngineError as e:
        logger.error("Failed to tag image '%s'. Skipping push for this image.", ref)
        return ImageOutcome(ref, False, str(e))

    logger.info("Pushing '%s' to registry...", new_tag)
    try:
        await engine.push(new_tag)
    except EngineError as e:
        logger.error("Failed to push image '%s'. Skipping.", new_tag)
        return ImageOutcome(ref, False, str(e))

    logger.info("Push successful. Removing temporary tag '%s'...", new_tag)
    try:
        await engine.remove_image(new_tag)
    except EngineError as e:
        logger.warning("Failed to remove temporary tag '%s': %s", new_tag, e)

    return ImageOutcome(ref, True)


async def push_images(
    engine: ContainerEngine,
    references: Sequence[str],
    registry: RegistryTarget,
) -> StageReport:
    """Push every reference to the target registry, preserving its path.

    The caller must have authenticated with :func:`login` first. Images that
    were pushed stay pushed when others fail.

    Args:
        engine: Container engine
        references: Manifest entries
        registry: Destination registry

    Returns:
        StageReport with one outcome per reference

    Raises:
        EmptyManifestError: If there is nothing to push

    Examples:
        target = RegistryTarget.parse("reg.local:5000")
        report = await push_images(engine, ["ubuntu"], target)
        # pushes reg.local:5000/library/ubuntu
    """
    if not references:
        raise EmptyManifestError(
            "No images found to push. Check your input file or manifest."
        )

    logger.info("--- Starting image push process ---")
    outcomes = []
    for ref in references:
        outcomes.append(await push_image(engine, ref, registry))

    report = StageReport("push", tuple(outcomes))
    if report.ok:
        logger.info("--- All images pushed successfully ---")
    return report


def ensure_pushed(report: StageReport) -> None:
    """Raise if any image of the push stage failed.

    Raises:
        PushFailedError: Listing every failing reference
    """
    if report.ok:
        return

    logger.error("--- Summary of failed pushes ---")
    for ref in report.failed:
        logger.error("Failed to push: %s", ref)
    raise PushFailedError(report.failed)
