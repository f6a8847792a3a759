"""
Deep Search Utilities
Namespace- and shape-agnostic lookups over parsed insurer payloads

Insurer return files arrive with different prefixes (ans:, tiss:, none) and
different nesting depths. These helpers walk the dict/list tree produced by
the XML reader (or a JSON payload) and never raise: absence is always None
or an empty list, and callers decide the default.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Pattern, Sequence, Union

DEFAULT_MAX_DEPTH = 10

TRUE_VALUES = {"true", "1", "s", "sim", "yes", "y"}
FALSE_VALUES = {"false", "0", "n", "não", "nao", "no"}

_CURRENCY_CHARS = re.compile(r"[R$\s]")


def strip_namespace(key: str) -> str:
    """Return the local part of a prefixed key ('ans:valor' -> 'valor')"""
    if not isinstance(key, str):
        return key
    return key.split(":")[-1]


def _matches(candidate: Any, key: str, ignore_namespace: bool, case_insensitive: bool) -> bool:
    if not isinstance(candidate, str):
        return False
    if ignore_namespace:
        candidate = strip_namespace(candidate)
        key = strip_namespace(key)
    if case_insensitive:
        return candidate.lower() == key.lower()
    return candidate == key


def find_key_in_object(
    doc: Any,
    key: str,
    ignore_namespace: bool = True,
    max_depth: int = DEFAULT_MAX_DEPTH,
    case_insensitive: bool = False,
    _depth: int = 0,
) -> Optional[Any]:
    """
    Find the first value stored under ``key`` anywhere in ``doc``.

    Keys of the current level are checked before descending, so the
    shallowest match wins within a branch. A key holding None counts as
    absent and the search continues.

    Args:
        doc: Parsed document (dicts, lists and scalars)
        key: Logical field name, with or without prefix
        ignore_namespace: Compare only the part after the last ':'
        max_depth: Levels to descend before giving up
        case_insensitive: Compare keys ignoring case

    Returns:
        The matching value or None
    """
    if doc is None or _depth > max_depth:
        return None

    if isinstance(doc, dict):
        for candidate, value in doc.items():
            if value is not None and _matches(candidate, key, ignore_namespace, case_insensitive):
                return value
        children = doc.values()
    elif isinstance(doc, (list, tuple)):
        children = doc
    else:
        return None

    for child in children:
        if isinstance(child, (dict, list, tuple)):
            found = find_key_in_object(
                child, key, ignore_namespace, max_depth, case_insensitive, _depth + 1
            )
            if found is not None:
                return found
    return None


def find_first_key(doc: Any, keys: Sequence[str], **options) -> Optional[Any]:
    """Try each alternative key in order and return the first value found"""
    for key in keys:
        value = find_key_in_object(doc, key, **options)
        if value is not None:
            return value
    return None


def find_all_keys(
    doc: Any,
    key: str,
    ignore_namespace: bool = True,
    max_depth: int = DEFAULT_MAX_DEPTH,
    case_insensitive: bool = False,
) -> List[Any]:
    """Collect every value stored under ``key``, depth-first, including nested matches"""
    results: List[Any] = []

    def walk(node: Any, depth: int) -> None:
        if node is None or depth > max_depth:
            return
        if isinstance(node, dict):
            for candidate, value in node.items():
                if value is not None and _matches(candidate, key, ignore_namespace, case_insensitive):
                    results.append(value)
                if isinstance(value, (dict, list, tuple)):
                    walk(value, depth + 1)
        elif isinstance(node, (list, tuple)):
            for item in node:
                walk(item, depth + 1)

    walk(doc, 0)
    return results


def find_by_pattern(
    doc: Any,
    patterns: Iterable[Union[str, Pattern]],
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> List[Any]:
    """Collect values whose local key name matches any of the regular expressions"""
    compiled = [re.compile(p) if isinstance(p, str) else p for p in patterns]
    results: List[Any] = []

    def walk(node: Any, depth: int) -> None:
        if node is None or depth > max_depth:
            return
        if isinstance(node, dict):
            for candidate, value in node.items():
                local = strip_namespace(candidate)
                if value is not None and isinstance(local, str) and any(p.search(local) for p in compiled):
                    results.append(value)
                if isinstance(value, (dict, list, tuple)):
                    walk(value, depth + 1)
        elif isinstance(node, (list, tuple)):
            for item in node:
                walk(item, depth + 1)

    walk(doc, 0)
    return results


def _unwrap(value: Any) -> Any:
    # Single-element arrays and {'#text': ...} wrappers from the XML reader
    while True:
        if isinstance(value, (list, tuple)):
            if not value:
                return None
            value = value[0]
        elif isinstance(value, dict):
            if "#text" not in value:
                return None
            value = value["#text"]
        else:
            return value


def extract_text(value: Any) -> Optional[str]:
    """Normalize a resolved value into a stripped string"""
    value = _unwrap(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def extract_number(value: Any) -> Optional[Decimal]:
    """
    Normalize a resolved value into a Decimal.

    Accepts Brazilian formatting ('R$ 1.234,56', '10,50') as well as plain
    '10.50'. Returns None for anything that is not a finite number.
    """
    value = _unwrap(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    if not isinstance(value, str):
        return None

    text = _CURRENCY_CHARS.sub("", value)
    if not text:
        return None
    if "," in text:
        # Comma is the decimal separator; dots are thousand separators
        text = text.replace(".", "").replace(",", ".")
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def extract_boolean(value: Any) -> Optional[bool]:
    """Recognize yes/no spellings; anything ambiguous is None"""
    value = _unwrap(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def normalize_array(value: Any) -> List[Any]:
    """Wrap a single occurrence into a list; None becomes an empty list"""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def get_path(obj: Any, path: Sequence[str]) -> Optional[Any]:
    """
    Follow an explicit path. Each segment is tried as given and then without
    its prefix; when the current node is a list and the segment is not on it,
    the first element is used.
    """
    current = obj
    for segment in path:
        if current is None:
            return None
        if isinstance(current, list):
            if not current:
                return None
            current = current[0]
        if not isinstance(current, dict):
            return None

        if segment in current:
            current = current[segment]
            continue

        local = strip_namespace(segment)
        match = None
        for candidate, value in current.items():
            if strip_namespace(candidate) == local:
                match = value
                break
        if match is None:
            return None
        current = match
    return current


def list_all_keys(doc: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> List[str]:
    """Dotted paths of every key in the document (debugging aid for new insurer layouts)"""
    paths: List[str] = []

    def walk(node: Any, prefix: str, depth: int) -> None:
        if depth > max_depth:
            return
        if isinstance(node, dict):
            for candidate, value in node.items():
                path = f"{prefix}.{candidate}" if prefix else str(candidate)
                paths.append(path)
                walk(value, path, depth + 1)
        elif isinstance(node, list):
            for index, item in enumerate(node):
                walk(item, f"{prefix}[{index}]", depth + 1)

    walk(doc, "", 0)
    return paths


def find_text(doc: Any, keys: Sequence[str]) -> Optional[str]:
    return extract_text(find_first_key(doc, keys))


def find_number(doc: Any, keys: Sequence[str]) -> Optional[Decimal]:
    return extract_number(find_first_key(doc, keys))
