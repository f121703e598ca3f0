"""S3 XML response parsing helpers for miniolite."""

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from xml.etree import ElementTree

logger = logging.getLogger(__name__)

SCALAR = "scalar"
MAPPING = "mapping"
SEQUENCE = "sequence"


def parse_xml(body: bytes | str) -> dict[str, Any]:
    """Parse an S3 XML document into nested plain mappings.

    The root element is dropped and its children become the top-level keys,
    so ``<ListAllMyBucketsResult><Buckets>...`` parses to
    ``{"Buckets": ...}``. Namespaces are stripped from tag names, repeated
    sibling elements become lists, and leaf text becomes a string. A root
    without child elements maps to ``{root_tag: text}``. Attributes are
    ignored.

    Args:
        body: The raw response body.

    Returns:
        The parsed mapping, or ``{}`` for an empty or non-XML body.
    """
    if not body or not body.strip():
        return {}
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as exc:
        logger.debug("Response body is not XML: %s", exc)
        return {}

    value = _element_value(root)
    if isinstance(value, dict):
        return value
    return {_strip_namespace(root.tag): value}


def flatten(value: Any) -> Any:
    """Recursively convert nested mappings/sequences into plain dicts and lists.

    Each value is classified as a scalar, a mapping or a sequence; mappings
    become ``dict`` with string keys, sequences become ``list``, and scalars
    (including ``str`` and ``bytes``) are returned unchanged.
    """
    kind = classify(value)
    if kind == MAPPING:
        return {str(key): flatten(item) for key, item in value.items()}
    if kind == SEQUENCE:
        return [flatten(item) for item in value]
    return value


def classify(value: Any) -> str:
    """Return the variant tag (scalar, mapping or sequence) for a value."""
    if isinstance(value, Mapping):
        return MAPPING
    if isinstance(value, (str, bytes, bytearray)):
        return SCALAR
    if isinstance(value, (Sequence, set, frozenset)):
        return SEQUENCE
    return SCALAR


def _element_value(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children:
        return element.text or ""

    result: dict[str, Any] = {}
    for child in children:
        tag = _strip_namespace(child.tag)
        value = _element_value(child)
        if tag not in result:
            result[tag] = value
        elif isinstance(result[tag], list):
            result[tag].append(value)
        else:
            result[tag] = [result[tag], value]
    return result


def _strip_namespace(tag: str) -> str:
    """``{http://s3.amazonaws.com/doc/2006-03-01/}Name`` -> ``Name``."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag
