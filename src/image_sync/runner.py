"""Run controller: sequences preflight, pull/load, save, push and cleanup."""

import enum
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .archive import ArchiveContents, ArchiveReader, ArchiveWriter
from .archive.models import OFFLINE_PACKAGES_DIR
from .core.engine import ContainerEngine, DockerEngine
from .core.types import RunConfig, StageReport
from .exceptions import EngineError, PreconditionError
from .host import HostSystem
from .manifest import Manifest, load_manifest
from .pull import ensure_pulled, pull_images
from .push import ensure_pushed, login, push_images

logger = logging.getLogger(__name__)

WORKDIR_PREFIX = "docker-pull-push-"


class RunState(enum.Enum):
    INIT = "init"
    PREFLIGHT_CHECKED = "preflight-checked"
    MANIFEST_LOADED = "manifest-loaded"
    PULLED_OR_LOADED = "pulled-or-loaded"
    SAVED = "saved"
    PUSHED = "pushed"
    CLEANED = "cleaned"
    DONE = "done"


@dataclass(frozen=True)
class RunResult:
    """What a completed run did."""

    manifest: Manifest
    pull: Optional[StageReport] = None
    push: Optional[StageReport] = None
    archive: Optional[ArchiveContents] = None
    removed: tuple[str, ...] = ()


class Runner:
    """Drives one sync run for a :class:`RunConfig`.

    The working area is a temporary directory created for the run and
    removed on every exit path.
    """

    def __init__(
        self,
        config: RunConfig,
        engine: ContainerEngine,
        host: HostSystem,
        workdir_root: Optional[str] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.host = host
        self.workdir_root = workdir_root
        self.state = RunState.INIT

    def _enter(self, state: RunState) -> None:
        logger.debug("Run state: %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> RunResult:
        """Execute the run.

        Returns:
            RunResult

        Raises:
            PreconditionError: If the host cannot run the sync
            ManifestError: If the image list or archive is unusable
            PullFailedError: If any image could not be pulled
            ArchiveWriteError: If saving fails
            PushFailedError: If any image could not be pushed
        """
        self.host.require_root()
        self.host.detect_os()

        workdir = tempfile.TemporaryDirectory(prefix=WORKDIR_PREFIX, dir=self.workdir_root)
        logger.info("Created temporary directory: %s", workdir.name)
        try:
            result = await self._run(Path(workdir.name))
        finally:
            workdir.cleanup()
            logger.info("Removed temporary directory: %s", workdir.name)
        self._enter(RunState.DONE)
        return result

    async def _run(self, workdir: Path) -> RunResult:
        config = self.config

        logger.info("--- Performing prerequisite checks ---")
        extracted = None
        offline_dir = None
        if config.air_gapped:
            logger.info("--- Air-gapped mode detected ---")
            reader = ArchiveReader(config.images_file)
            extracted = await reader.extract(workdir)
            offline_dir = await reader.offline_packages_dir(extracted)

        await self.host.ensure_engine(self.engine, workdir, offline_dir)
        if config.push:
            await self.host.install_registry_certificate(config.registry)
        logger.info("--- Prerequisite checks complete ---")
        self._enter(RunState.PREFLIGHT_CHECKED)

        if extracted is not None:
            logger.info("--- Handling container images in air-gapped mode ---")
            manifest = await ArchiveReader.load(extracted, self.engine)
        else:
            manifest = await load_manifest(config.images_file)
        self._enter(RunState.MANIFEST_LOADED)

        pull_report = None
        if not config.air_gapped:
            pull_report = await pull_images(self.engine, manifest, config.mirror)
            ensure_pulled(pull_report)
        self._enter(RunState.PULLED_OR_LOADED)

        archive = None
        if config.save and config.air_gapped:
            logger.warning("Ignoring <save>: images were loaded from an archive.")
        elif config.save:
            archive = await self._save(manifest, workdir)
            self._enter(RunState.SAVED)

        push_report = None
        if config.push:
            await login(self.engine, config.registry)
            push_report = await push_images(self.engine, manifest, config.registry)
            ensure_pushed(push_report)
            self._enter(RunState.PUSHED)

        removed = await self._cleanup(manifest, push_report)
        return RunResult(
            manifest=manifest,
            pull=pull_report,
            push=push_report,
            archive=archive,
            removed=removed,
        )

    async def _save(self, manifest: Manifest, workdir: Path) -> ArchiveContents:
        logger.info("--- Starting image save process ---")
        packages_dir = None
        if self.config.offline_packages:
            try:
                packages_dir = await self.host.download_offline_packages(
                    workdir / OFFLINE_PACKAGES_DIR
                )
            except PreconditionError as e:
                logger.warning("Saving without offline Docker packages: %s", e)

        writer = ArchiveWriter(workdir, self.config.output_dir)
        return await writer.write(self.engine, manifest, packages_dir)

    def _should_remove(self, push_report: Optional[StageReport]) -> bool:
        if self.config.keep:
            return False
        if self.config.push:
            return push_report is not None and push_report.ok
        return self.config.air_gapped

    async def _cleanup(
        self, manifest: Manifest, push_report: Optional[StageReport]
    ) -> tuple[str, ...]:
        """Delete local images when the run no longer needs them."""
        if not self._should_remove(push_report):
            return ()

        logger.info("--- Deleting local images ---")
        removed = []
        for ref in dict.fromkeys(manifest):
            try:
                await self.engine.remove_image(ref)
            except EngineError as e:
                logger.warning("Could not delete local image '%s': %s", ref, e)
            else:
                removed.append(ref)

        if len(removed) == len(set(manifest)):
            logger.info("Successfully deleted local images.")
        else:
            logger.warning("Could not delete all local images. Some may still exist.")
        self._enter(RunState.CLEANED)
        return tuple(removed)


async def execute(config: RunConfig, host: Optional[HostSystem] = None) -> RunResult:
    """Run a sync against the Docker engine named in ``config``."""
    async with DockerEngine(config.docker_host) as engine:
        return await Runner(config, engine, host or HostSystem()).run()
