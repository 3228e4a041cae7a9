"""Parsing of orb references such as ``namespace/orb@version``."""

from __future__ import annotations

import re

_FULL_REFERENCE = re.compile(r"(.+)/(.+)@(.+)")


def split_into_orb_and_namespace(ref: str) -> tuple[str, str]:
    """Split ``namespace/orb`` into its namespace and orb name."""
    parts = ref.split("/")
    if len(parts) != 2:
        raise ValueError(
            f"Invalid orb {ref}. Expected a namespace and orb in the form 'namespace/orb'"
        )
    namespace, orb = parts
    return namespace, orb


def split_into_orb_namespace_and_version(ref: str) -> tuple[str, str, str]:
    """Split ``namespace/orb@version`` into namespace, orb and version."""
    match = _FULL_REFERENCE.fullmatch(ref)
    if match is None:
        raise ValueError(
            f"Invalid orb reference '{ref}': Expected a namespace, orb and version "
            "in the format 'namespace/orb@version'"
        )
    namespace, orb, version = match.groups()
    return namespace, orb, version


def is_dev_version(version: str) -> bool:
    """Return True when ``version`` is a development label (``dev:...``)."""
    return version.startswith("dev:")


def is_orb_ref_with_optional_version(ref: str) -> None:
    """Raise ValueError unless ``ref`` is ``namespace/orb`` or ``namespace/orb@version``."""
    try:
        split_into_orb_namespace_and_version(ref)
        return
    except ValueError:
        pass

    try:
        split_into_orb_and_namespace(ref)
        return
    except ValueError:
        pass

    raise ValueError(
        f"Invalid orb reference '{ref}': expected a string of the form "
        "namespace/orb or namespace/orb@version"
    )