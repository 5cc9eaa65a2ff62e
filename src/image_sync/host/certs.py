"""Registry TLS certificate retrieval and CA trust installation."""

import asyncio
import logging
import ssl
from pathlib import Path

from ..core.process import run_cmd
from ..core.types import RegistryTarget
from ..exceptions import CommandError, PreconditionError
from .packages import Runner

logger = logging.getLogger(__name__)

TRUST_STORES = {
    "debian": ("usr/local/share/ca-certificates", ["update-ca-certificates"]),
    "rhel": ("etc/pki/ca-trust/source/anchors", ["update-ca-trust", "extract"]),
    "suse": ("etc/pki/ca-trust/source/anchors", ["update-ca-trust", "extract"]),
}


async def fetch_certificate(host: str, port: int, timeout: float = 10) -> str:
    """Retrieve the PEM certificate presented by ``host:port``.

    Raises:
        PreconditionError: If the TLS handshake fails
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            None,
            lambda: ssl.get_server_certificate((host, port), timeout=timeout),
        )
    except (OSError, ssl.SSLError) as e:
        raise PreconditionError(
            f"Failed to retrieve certificate from '{host}:{port}'. Please ensure "
            f"the registry is accessible and the port is correct: {e}"
        ) from e


async def install_registry_certificate(
    registry: RegistryTarget,
    family: str,
    root: Path = Path("/"),
    run: Runner = run_cmd,
) -> Path:
    """Trust the certificate of the target registry system-wide.

    Args:
        registry: Destination registry (port defaults to 443)
        family: OS family selecting the trust store
        root: Filesystem root
        run: Command runner

    Returns:
        Path of the installed certificate

    Raises:
        PreconditionError: If the certificate cannot be fetched or trusted
    """
    if family not in TRUST_STORES:
        raise PreconditionError(
            f"Unsupported OS family '{family}'. "
            "Manual certificate installation may be required."
        )
    anchors, update_cmd = TRUST_STORES[family]
    port = registry.port or 443

    logger.info("Attempting to retrieve certificate for %s:%d...", registry.host, port)
    pem = await fetch_certificate(registry.host, port)

    cert_path = root / anchors / f"{registry.host}.crt"
    cert_path.parent.mkdir(parents=True, exist_ok=True)
    cert_path.write_text(pem, encoding="utf-8")
    logger.info("Certificate saved to %s.", cert_path)

    try:
        await run(update_cmd)
    except CommandError as e:
        raise PreconditionError(f"Failed to update CA trust store: {e}") from e
    logger.info("Certificate store updated successfully.")
    return cert_path
