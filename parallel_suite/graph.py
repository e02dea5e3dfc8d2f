"""Transport of cyclic result graphs across a process boundary.

A result tree links every child back to its parent, so a plain JSON dump
either recurses forever or copies each ancestor once per descendant.
``decycle`` replaces every object met a second time by a reference to the
JSONPath of its first occurrence::

    {"kind": "suite", "title": "", "root": true, "suites": [
        {"kind": "suite", "title": "math", "parent": {"$ref": "$"}, ...}
    ], ...}

``retrocycle`` rebuilds the objects, then resolves each reference to the
rebuilt object itself, so ``child.parent is root`` holds again.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from parallel_suite.models.result import NODE_KINDS, ResultNode, TestError

REF_KEY = "$ref"
ROOT_PATH = "$"


class GraphDecodeError(ValueError):
    """Raised when an encoded graph cannot be rebuilt."""


@dataclass(frozen=True)
class _Ref:
    """Unresolved reference left by the first decoding pass."""

    path: str


def encode_suite(root: ResultNode) -> dict[str, Any]:
    """Encode a result tree into an acyclic, JSON-serializable dict."""
    encoded: dict[str, Any] = decycle(root)
    return encoded


def decode_suite(data: Any) -> ResultNode:
    """Rebuild a result tree produced by ``encode_suite``."""
    node = retrocycle(data)
    if not isinstance(node, ResultNode):
        raise GraphDecodeError(
            f"Expected an encoded suite, got {type(data).__name__}"
        )
    if node.parent is not None:
        raise GraphDecodeError(f"Top-level suite {node.title!r} has a parent")
    _check_tree(node)
    return node


def decycle(value: Any) -> Any:
    """Return a copy of ``value`` where repeated objects become references."""
    return _decycle(value, ROOT_PATH, {})


def retrocycle(data: Any) -> Any:
    """Reverse ``decycle``, restoring shared and cyclic references."""
    registry: dict[str, Any] = {}
    built = _build(data, ROOT_PATH, registry)
    if isinstance(built, _Ref):
        raise GraphDecodeError(f"Top-level value is a reference: {built.path}")
    _relink(built, registry)
    return built


def _child_path(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}[{json.dumps(key)}]"


def _node_fields(node: ResultNode) -> dict[str, Any]:
    error = None
    if node.error is not None:
        error = {"message": node.error.message, "longrepr": node.error.longrepr}
    return {
        "kind": node.kind,
        "title": node.title,
        "root": node.root,
        "file": node.file,
        "status": node.status,
        "duration": node.duration,
        "error": error,
        "suites": node.suites,
        "tests": node.tests,
        "parent": node.parent,
    }


def _decycle(value: Any, path: str, seen: dict[int, tuple[Any, str]]) -> Any:
    if isinstance(value, ResultNode):
        items: Mapping[Any, Any] = _node_fields(value)
    elif isinstance(value, Mapping):
        items = value
    elif isinstance(value, list | tuple):
        items = dict(enumerate(value))
    else:
        return value

    # Holding the object keeps its id() from being reused mid-traversal.
    if (previous := seen.get(id(value))) is not None:
        return {REF_KEY: previous[1]}
    seen[id(value)] = (value, path)

    if isinstance(value, list | tuple):
        return [_decycle(item, _child_path(path, i), seen) for i, item in items.items()]
    return {
        str(key): _decycle(item, _child_path(path, str(key)), seen)
        for key, item in items.items()
    }


def _is_ref(value: Mapping[str, Any]) -> bool:
    return len(value) == 1 and isinstance(value.get(REF_KEY), str)


def _build(value: Any, path: str, registry: dict[str, Any]) -> Any:
    if isinstance(value, list):
        built_list: list[Any] = []
        registry[path] = built_list
        built_list.extend(
            _build(item, _child_path(path, i), registry) for i, item in enumerate(value)
        )
        return built_list

    if not isinstance(value, dict):
        return value

    if _is_ref(value):
        return _Ref(value[REF_KEY])

    if value.get("kind") in NODE_KINDS:
        return _build_node(value, path, registry)

    built_dict: dict[str, Any] = {}
    registry[path] = built_dict
    for key, item in value.items():
        built_dict[key] = _build(item, _child_path(path, key), registry)
    return built_dict


def _build_node(value: dict[str, Any], path: str, registry: dict[str, Any]) -> ResultNode:
    try:
        node = ResultNode(
            title=value["title"],
            kind=value["kind"],
            root=bool(value.get("root", False)),
            file=value.get("file"),
            status=value.get("status"),
            duration=value.get("duration"),
            error=_build_error(value.get("error")),
        )
    except (KeyError, TypeError) as e:
        raise GraphDecodeError(f"Malformed node at {path}: {e!r}") from e
    registry[path] = node

    for attr in ("suites", "tests"):
        children = value.get(attr) or []
        if not isinstance(children, list):
            raise GraphDecodeError(f"Expected a list at {_child_path(path, attr)}")
        children_path = _child_path(path, attr)
        built_children = getattr(node, attr)
        registry[children_path] = built_children
        built_children.extend(
            _build(child, _child_path(children_path, i), registry)
            for i, child in enumerate(children)
        )

    if (parent := value.get("parent")) is not None:
        node.parent = _build(parent, _child_path(path, "parent"), registry)
    return node


def _build_error(value: Any) -> TestError | None:
    if value is None:
        return None
    return TestError(message=value["message"], longrepr=value.get("longrepr"))


def _resolve(value: Any, registry: dict[str, Any]) -> Any:
    if not isinstance(value, _Ref):
        return value
    try:
        return registry[value.path]
    except KeyError:
        raise GraphDecodeError(f"Unresolvable reference: {value.path}") from None


def _relink(value: Any, registry: dict[str, Any]) -> None:
    # Until its references are resolved the built graph is a tree, so a plain
    # walk that does not follow resolved targets terminates.
    if isinstance(value, ResultNode):
        if isinstance(value.parent, _Ref):
            value.parent = _resolve(value.parent, registry)
        elif value.parent is not None:
            _relink(value.parent, registry)
        if value.parent is not None and not isinstance(value.parent, ResultNode):
            raise GraphDecodeError(f"Parent of {value.title!r} is not a node")
        for children in (value.suites, value.tests):
            _relink(children, registry)
    elif isinstance(value, list):
        for i, item in enumerate(value):
            if isinstance(item, _Ref):
                value[i] = _resolve(item, registry)
            else:
                _relink(item, registry)
    elif isinstance(value, dict):
        for key, item in value.items():
            if isinstance(item, _Ref):
                value[key] = _resolve(item, registry)
            else:
                _relink(item, registry)


def _check_tree(root: ResultNode) -> None:
    """Require every child to be a node owned by exactly one parent."""
    seen = {id(root)}
    stack = [root]
    while stack:
        node = stack.pop()
        for attr in ("suites", "tests"):
            for child in getattr(node, attr):
                if not isinstance(child, ResultNode):
                    raise GraphDecodeError(
                        f"Expected a node in {attr} of {node.title!r}, "
                        f"got {type(child).__name__}"
                    )
                if child.parent is not node or id(child) in seen:
                    raise GraphDecodeError(
                        f"Node {child.title!r} is not a child of {node.title!r}"
                    )
                seen.add(id(child))
                stack.append(child)
