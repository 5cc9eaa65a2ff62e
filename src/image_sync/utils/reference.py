"""Image reference parsing and destination-registry tag rewriting."""

import re

from ..exceptions import InvalidReferenceError

OFFICIAL_NAMESPACE = "library"

_WHITESPACE = re.compile(r"\s")


def validate_reference(ref: str) -> str:
    """Check that an image reference is non-empty and has no whitespace.

    Args:
        ref: Image reference

    Returns:
        The reference, unchanged

    Raises:
        InvalidReferenceError: If the reference is empty or contains whitespace
    """
    if not ref:
        raise InvalidReferenceError("Image reference must not be empty")
    if _WHITESPACE.search(ref):
        raise InvalidReferenceError(f"Image reference contains whitespace: '{ref}'")
    return ref


def is_registry_host(segment: str) -> bool:
    """Check if the first path segment names a registry host."""
    return "." in segment or segment == "localhost"


def has_registry_host(ref: str) -> bool:
    """Check if a reference starts with an embedded registry host."""
    first, sep, _ = ref.partition("/")
    return bool(sep) and is_registry_host(first)


def repository_path(ref: str) -> str:
    """Return the registry-relative repository path of a reference.

    The tag or digest of the reference is kept.

    Examples:
        repository_path("ubuntu")                  # "library/ubuntu"
        repository_path("longhornio/manager:v1")   # "longhornio/manager:v1"
        repository_path("myregistry.io:443/app:1") # "app:1"
    """
    first, sep, rest = ref.partition("/")
    if sep and is_registry_host(first):
        return rest
    if sep:
        return ref
    return f"{OFFICIAL_NAMESPACE}/{ref}"


def rewrite_reference(ref: str, registry: str) -> str:
    """Qualify an image reference with a destination registry.

    An embedded registry host (first segment containing a ``.`` or equal to
    ``localhost``) is dropped, organisation-qualified names are kept as they
    are and bare official image names get the ``library/`` namespace.

    Args:
        ref: Original image reference (e.g., "ubuntu:20.04")
        registry: Destination registry address (e.g., "reg.local:5000")

    Returns:
        Destination reference (e.g., "reg.local:5000/library/ubuntu:20.04")

    Examples:
        rewrite_reference("ubuntu", "reg.local:5000")
        # "reg.local:5000/library/ubuntu"

        rewrite_reference("localhost/foo", "reg.local:5000")
        # "reg.local:5000/foo"
    """
    return f"{registry.rstrip('/')}/{repository_path(ref)}"


def restore_reference(new_ref: str, registry: str) -> str:
    """Map a rewritten reference back to the name it was pulled under.

    The inverse of :func:`rewrite_reference` for references without an
    embedded registry host: the registry prefix is removed and the
    ``library/`` namespace added for official images is dropped again.

    Args:
        new_ref: Reference qualified with ``registry``
        registry: Destination registry address

    Returns:
        The original reference

    Raises:
        ValueError: If ``new_ref`` does not live under ``registry``
    """
    prefix = f"{registry.rstrip('/')}/"
    if not new_ref.startswith(prefix):
        raise ValueError(f"'{new_ref}' is not a reference in registry '{registry}'")

    path = new_ref[len(prefix) :]
    namespace, sep, name = path.partition("/")
    if sep and namespace == OFFICIAL_NAMESPACE and "/" not in name:
        return name
    return path


def split_reference(ref: str) -> tuple[str, str | None, str | None]:
    """Split a reference into name, tag and digest components.

    Only a ``:`` after the last ``/`` starts a tag, so registry ports are
    left in the name.

    Args:
        ref: Image reference

    Returns:
        tuple[str, str | None, str | None]: (name, tag, digest)

    Examples:
        split_reference("localhost:5000/app:1.0")  # ("localhost:5000/app", "1.0", None)
        split_reference("nginx@sha256:abc")        # ("nginx", None, "sha256:abc")
        split_reference("nginx")                   # ("nginx", None, None)
    """
    digest = None
    if "@" in ref:
        ref, digest = ref.split("@", 1)

    tag = None
    last_slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > last_slash:
        ref, tag = ref[:colon], ref[colon + 1 :] or None

    return ref, tag, digest
