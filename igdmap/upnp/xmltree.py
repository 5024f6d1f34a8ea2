"""Conversion of XML documents into nested mappings.

Every element with child elements becomes a dict mapping each child's local
name to a *list* of values, one per occurrence; elements without children
become their stripped text. Callers unwrap the single-element lists
themselves.
"""

from __future__ import annotations

from typing import Any

import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

# Exceptions raised for malformed or hostile documents
XML_ERRORS = (ET.ParseError, DefusedXmlException)

Node = Any


def local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on tags."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _convert(element: Any) -> Node:
    children = list(element)
    if not children:
        return (element.text or "").strip()

    node: dict[str, list[Node]] = {}
    for child in children:
        node.setdefault(local_name(child.tag), []).append(_convert(child))
    return node


def parse_xml(text: str | bytes) -> dict[str, Node]:
    """Parse an XML document into ``{root_name: root_node}``.

    Raises:
        ET.ParseError: malformed XML
        DefusedXmlException: forbidden constructs (entities, DTDs)

    """
    root = ET.fromstring(text)  # nosec B314 - defusedxml
    return {local_name(root.tag): _convert(root)}


def unwrap(value: Node) -> Node:
    """Return the first element of a single-element list, else the value."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def unwrap_fields(node: dict[str, list[Node]]) -> dict[str, Node]:
    """Unwrap every field of a mapping node to a scalar (or nested node)."""
    return {name: unwrap(value) for name, value in node.items()}


def descend(node: Node, *path: str) -> Node:
    """Follow ``path`` through nested mappings, unwrapping at each step.

    Raises:
        KeyError: a path component is missing

    """
    current = node
    for name in path:
        if not isinstance(current, dict) or name not in current:
            raise KeyError(name)
        current = unwrap(current[name])
    return current
