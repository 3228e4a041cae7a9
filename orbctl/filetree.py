"""Build a tree of YAML files from a directory and merge it into one mapping."""

from __future__ import annotations

import os
import re
import stat
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

_SPECIAL_CASE = re.compile(r"@.*\.(yml|yaml)")
_DOTFILE = re.compile(r"\..+")
_YAML = re.compile(r".+\.(yml|yaml)\Z")


class FileTreeError(Exception):
    """Raised when a tree cannot be rendered into a mapping."""


def _merge_tree(*trees: Any) -> dict[Any, Any]:
    result: dict[Any, Any] = {}
    for tree in trees:
        if tree is None:
            continue
        if not isinstance(tree, Mapping):
            raise FileTreeError(f"cannot merge a `{type(tree).__name__}` into a map")
        result.update(tree)
    return result


def _is_dotfile(name: str) -> bool:
    return _DOTFILE.match(name) is not None


def _is_yaml(name: str) -> bool:
    return _YAML.search(name) is not None


@dataclass(eq=False)
class Node:
    """A file or directory in the tree."""

    full_path: str
    basename: str
    is_dir: bool
    is_file: bool
    children: list[Node] = field(default_factory=list)
    parent: Node | None = field(default=None, repr=False)

    @property
    def stem(self) -> str:
        """The base name without its extension."""
        return os.path.splitext(self.basename)[0]

    def _root(self) -> Node | None:
        root = self.parent
        while root is not None and root.parent is not None:
            root = root.parent
        return root

    def _is_root_file(self) -> bool:
        return self.is_file and self._root() is self.parent

    def _is_special_case(self) -> bool:
        return _SPECIAL_CASE.fullmatch(self.basename) is not None

    def marshal_yaml(self) -> Any:
        """Render this node and its descendants into a mapping (or None)."""
        if not self.children:
            return self._marshal_leaf()
        return self._marshal_parent()

    def _marshal_parent(self) -> dict[Any, Any]:
        subtree: dict[Any, Any] = {}
        for child in self.children:
            content = child.marshal_yaml()
            if content is not None and not isinstance(content, Mapping):
                raise FileTreeError(
                    f"expected a map, got a `{type(content).__name__}` which is not "
                    f'supported at this time for "{child.full_path}"'
                )

            if child._is_root_file():
                subtree = _merge_tree(subtree, content)
            elif child._is_special_case():
                parent_name = child.parent.stem if child.parent is not None else ""
                subtree = _merge_tree(subtree, subtree.get(parent_name), content)
            else:
                subtree[child.stem] = _merge_tree(subtree.get(child.stem), content)
        return subtree

    def _marshal_leaf(self) -> Any:
        if self.is_dir or not _is_yaml(self.basename):
            return None
        with open(self.full_path, encoding="utf-8") as handle:
            text = handle.read()
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as err:
            raise FileTreeError(str(err)) from err


def _collect_nodes(abs_root_path: str, allowed_dirs: frozenset[str]) -> dict[str, Node]:
    nodes: dict[str, Node] = {}

    def visit(path: str) -> None:
        info = os.lstat(path)
        name = os.path.basename(path)
        is_dir = stat.S_ISDIR(info.st_mode)

        allowed = name in allowed_dirs if allowed_dirs and is_dir else True
        dotfolder = is_dir and _is_dotfile(name)
        if path != abs_root_path and (dotfolder or not allowed):
            return

        nodes[path] = Node(
            full_path=os.path.abspath(path),
            basename=name,
            is_dir=is_dir,
            is_file=stat.S_ISREG(info.st_mode),
        )
        if is_dir:
            for entry in sorted(os.listdir(path)):
                visit(os.path.join(path, entry))

    visit(abs_root_path)
    return nodes


def _build_tree(abs_root_path: str, nodes: dict[str, Node]) -> Node | None:
    root: Node | None = None
    for path, node in nodes.items():
        if path != abs_root_path and node.is_file:
            if _is_dotfile(node.basename) or not _is_yaml(node.basename):
                continue
        parent = nodes.get(os.path.dirname(path))
        if parent is not None and parent is not node:
            node.parent = parent
            parent.children.append(node)
        else:
            root = node
    return root


def new_tree(root_path: str, *allowed_directories: str) -> Node | None:
    """Build a tree rooted at ``root_path``.

    When directory names are given, only directories with those names are
    descended into below the root.
    """
    abs_root_path = os.path.abspath(root_path)
    nodes = _collect_nodes(abs_root_path, frozenset(allowed_directories))
    return _build_tree(abs_root_path, nodes)