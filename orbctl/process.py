"""Expansion of ``<<include(file)>>`` statements in orb sources."""

from __future__ import annotations

import itertools
import os
import re

_INCLUDE = re.compile(r"<<[\s]*include\(([-\w/.]+)\)?[\s]*>>", re.ASCII)


def maybe_include_file(s: str, orb_directory: str) -> str:
    """Return the escaped contents of the included file, or ``s`` unchanged.

    When ``s`` is an ``<<include(file)>>`` statement, the file is read relative
    to ``orb_directory`` and every ``<<`` in it is escaped as ``\\<<``.
    """
    matches = list(itertools.islice(_INCLUDE.finditer(s), 2))
    if len(matches) > 1:
        raise ValueError(f"multiple include statements: '{s}'")
    if not matches:
        return s

    match = matches[0]
    if match.group(0) != s:
        raise ValueError(f"entire string must be include statement: '{s}'")

    path = os.path.normpath(os.path.join(orb_directory, match.group(1)))
    try:
        with open(path, encoding="utf-8") as handle:
            content = handle.read()
    except OSError as err:
        raise ValueError(f"could not open {path} for inclusion") from err

    return content.replace("<<", "\\<<")