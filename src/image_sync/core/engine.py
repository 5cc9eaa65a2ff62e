"""Container engine capability and its Docker Engine API implementation."""

import base64
import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any, Dict, Optional, Protocol, runtime_checkable
from urllib.parse import urlsplit

import aiohttp

from ..exceptions import EngineError
from ..utils.reference import split_reference
from .types import DEFAULT_DOCKER_HOST

logger = logging.getLogger(__name__)


@runtime_checkable
class ContainerEngine(Protocol):
    """Operations the sync workflow needs from a local container engine.

    Every method raises :class:`EngineError` on failure.
    """

    async def pull(self, ref: str) -> None: ...

    async def tag(self, source: str, target: str) -> None: ...

    async def push(self, ref: str) -> None: ...

    async def remove_image(self, ref: str) -> None: ...

    def export_images(self, refs: Iterable[str]) -> AsyncIterator[bytes]: ...

    async def import_images(self, chunks: AsyncIterator[bytes]) -> None: ...

    async def login(self, registry: str, username: str, password: str) -> None: ...

    async def is_installed(self) -> bool: ...


def encode_registry_auth(auth: Dict[str, str]) -> str:
    """Encode credentials for the ``X-Registry-Auth`` header."""
    return base64.urlsafe_b64encode(json.dumps(auth).encode("utf-8")).decode("ascii")


def resolve_docker_host(docker_host: str) -> tuple[str, Optional[str]]:
    """Translate a DOCKER_HOST value into a base URL and unix socket path.

    Args:
        docker_host: ``unix:///path``, ``tcp://host:port`` or ``http(s)://...``

    Returns:
        tuple[str, Optional[str]]: (base URL, socket path or None)

    Raises:
        EngineError: If the scheme is not supported
    """
    parts = urlsplit(docker_host)
    if parts.scheme == "unix":
        return "http://docker", parts.path
    if parts.scheme == "tcp":
        return f"http://{parts.netloc}", None
    if parts.scheme in ("http", "https"):
        return docker_host.rstrip("/"), None
    raise EngineError(f"Unsupported docker host: {docker_host}")


class DockerEngine:
    """Docker Engine API async client."""

    def __init__(
        self,
        docker_host: str = DEFAULT_DOCKER_HOST,
        timeout: int = 3600,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        """Initialize the engine client.

        Args:
            docker_host: Docker daemon address (e.g., unix:///var/run/docker.sock)
            timeout: Total timeout in seconds for a single engine call
            chunk_size: Chunk size for streamed image exports
        """
        self.docker_host = docker_host
        self.base_url, self.socket_path = resolve_docker_host(docker_host)
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.session: Optional[aiohttp.ClientSession] = None
        self._auth: Dict[str, Dict[str, str]] = {}

    async def __aenter__(self) -> "DockerEngine":
        """Enter async context manager."""
        if not self.session:
            connector = (
                aiohttp.UnixConnector(path=self.socket_path)
                if self.socket_path
                else None
            )
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise EngineError("Engine session is not open")
        return self.session

    async def _raise_for_status(
        self, resp: aiohttp.ClientResponse, action: str, ref: str
    ) -> None:
        if resp.status < 400:
            return
        try:
            body = await resp.json(content_type=None)
            detail = body.get("message", "") if isinstance(body, dict) else str(body)
        except (aiohttp.ClientError, ValueError):
            detail = (await resp.text()).strip()
        raise EngineError(f"Failed to {action} '{ref}': {detail or resp.reason}", ref)

    async def _consume_progress(
        self, resp: aiohttp.ClientResponse, action: str, ref: str
    ) -> None:
        """Read a streamed JSON progress response, failing on error messages."""
        async for raw in resp.content:
            line = raw.strip()
            if not line:
                continue
            try:
                message: Dict[str, Any] = json.loads(line)
            except ValueError:
                logger.debug("%s %s: %s", action, ref, line)
                continue

            error = message.get("error") or (message.get("errorDetail") or {}).get(
                "message"
            )
            if error:
                raise EngineError(f"Failed to {action} '{ref}': {error}", ref)
            if "status" in message or "stream" in message:
                logger.debug(
                    "%s %s: %s",
                    action,
                    ref,
                    (message.get("status") or message.get("stream") or "").strip(),
                )

    async def is_installed(self) -> bool:
        """Check if the Docker daemon answers on the configured address.

        Returns:
            True if ``/_ping`` succeeds
        """
        try:
            async with self._require_session().get(self._url("/_ping")) as resp:
                return resp.status == 200
        except (aiohttp.ClientError, OSError):
            return False

    async def pull(self, ref: str) -> None:
        """Pull an image reference.

        Args:
            ref: Image reference (tag or digest form)

        Raises:
            EngineError: If the pull fails
        """
        name, tag, digest = split_reference(ref)
        if digest:
            params = {"fromImage": f"{name}@{digest}"}
        else:
            params = {"fromImage": name, "tag": tag or "latest"}

        headers = {}
        registry_auth = self._auth_for(ref)
        if registry_auth:
            headers["X-Registry-Auth"] = registry_auth

        try:
            async with self._require_session().post(
                self._url("/images/create"), params=params, headers=headers
            ) as resp:
                await self._raise_for_status(resp, "pull", ref)
                await self._consume_progress(resp, "pull", ref)
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to pull '{ref}': {e}", ref) from e

    async def tag(self, source: str, target: str) -> None:
        """Add a new name to a local image.

        Args:
            source: Existing local reference
            target: New reference (repository[:tag])

        Raises:
            EngineError: If tagging fails or ``target`` carries a digest
        """
        repo, tag, digest = split_reference(target)
        if digest:
            raise EngineError(
                f"Failed to tag '{source}' as '{target}': "
                "a digest reference cannot be used as a tag",
                source,
            )
        params = {"repo": repo, "tag": tag or "latest"}
        try:
            async with self._require_session().post(
                self._url(f"/images/{source}/tag"), params=params
            ) as resp:
                await self._raise_for_status(resp, "tag", source)
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to tag '{source}' as '{target}': {e}", source) from e

    async def push(self, ref: str) -> None:
        """Push a local image reference to its registry.

        Raises:
            EngineError: If the push fails or ``ref`` is a digest reference
        """
        name, tag, digest = split_reference(ref)
        if digest:
            raise EngineError(
                f"Failed to push '{ref}': only tagged references can be pushed", ref
            )
        headers = {"X-Registry-Auth": self._auth_for(ref) or encode_registry_auth({})}
        try:
            async with self._require_session().post(
                self._url(f"/images/{name}/push"),
                params={"tag": tag or "latest"},
                headers=headers,
            ) as resp:
                await self._raise_for_status(resp, "push", ref)
                await self._consume_progress(resp, "push", ref)
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to push '{ref}': {e}", ref) from e

    async def remove_image(self, ref: str) -> None:
        """Remove a local image name (untag, deleting unreferenced layers).

        Raises:
            EngineError: If removal fails
        """
        try:
            async with self._require_session().delete(
                self._url(f"/images/{ref}")
            ) as resp:
                await self._raise_for_status(resp, "remove", ref)
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to remove '{ref}': {e}", ref) from e

    async def export_images(self, refs: Iterable[str]) -> AsyncIterator[bytes]:
        """Stream a ``docker save`` tarball of the given references.

        Args:
            refs: Image references to include

        Yields:
            Chunks of the uncompressed tar stream

        Raises:
            EngineError: If the export fails
        """
        refs = list(refs)
        params = [("names", ref) for ref in refs]
        label = ", ".join(refs)
        try:
            async with self._require_session().get(
                self._url("/images/get"), params=params
            ) as resp:
                await self._raise_for_status(resp, "export", label)
                async for chunk in resp.content.iter_chunked(self.chunk_size):
                    yield chunk
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to export images: {e}") from e

    async def import_images(self, chunks: AsyncIterator[bytes]) -> None:
        """Load a (optionally compressed) ``docker save`` stream.

        Args:
            chunks: Async iterator over the archive bytes

        Raises:
            EngineError: If loading fails
        """
        try:
            async with self._require_session().post(
                self._url("/images/load"),
                params={"quiet": "1"},
                data=chunks,
                headers={"Content-Type": "application/x-tar"},
            ) as resp:
                await self._raise_for_status(resp, "load", "image archive")
                await self._consume_progress(resp, "load", "image archive")
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to load images: {e}") from e

    async def login(self, registry: str, username: str, password: str) -> None:
        """Validate credentials and keep them for later pushes to ``registry``.

        Raises:
            EngineError: If the registry rejects the credentials
        """
        auth = {"username": username, "password": password, "serveraddress": registry}
        try:
            async with self._require_session().post(
                self._url("/auth"), json=auth
            ) as resp:
                await self._raise_for_status(resp, "log in to", registry)
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise EngineError(f"Failed to log in to '{registry}': {e}", registry) from e

        token = (body or {}).get("IdentityToken")
        if token:
            self._auth[registry] = {"identitytoken": token, "serveraddress": registry}
        else:
            self._auth[registry] = auth
        logger.debug("Stored credentials for %s", registry)

    def _auth_for(self, ref: str) -> Optional[str]:
        registry = ref.split("/", 1)[0]
        auth = self._auth.get(registry)
        return encode_registry_auth(auth) if auth else None
