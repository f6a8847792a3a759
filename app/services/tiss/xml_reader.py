"""
TISS XML Reader
Decodes insurer files and converts them into the dict tree used by deep search
"""

import codecs
import logging
import re
from typing import Any, Dict, Optional, Tuple

from lxml import etree

from app.core.error_handling import ValidationException

logger = logging.getLogger(__name__)

_DECLARED_ENCODING = re.compile(rb'<\?xml[^>]*encoding=["\']([A-Za-z0-9_\-]+)["\']', re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_BETWEEN_TAGS = re.compile(r">\s+<")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")

_BOMS = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


def detect_encoding(data: bytes) -> Tuple[str, int]:
    """
    Detect the encoding of an insurer file.

    Returns:
        (encoding, bom_length)
    """
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, len(bom)

    match = _DECLARED_ENCODING.search(data[:200])
    if match:
        declared = match.group(1).decode("ascii").lower()
        try:
            codecs.lookup(declared)
            return declared, 0
        except LookupError:
            logger.warning(f"Unknown declared encoding '{declared}', detecting instead")

    try:
        data.decode("utf-8")
        return "utf-8", 0
    except UnicodeDecodeError:
        # Older insurer systems still export Latin-1 / Windows-1252
        return "windows-1252", 0


def decode_document(data: bytes) -> str:
    encoding, offset = detect_encoding(data)
    try:
        return data[offset:].decode(encoding)
    except UnicodeDecodeError:
        logger.warning(f"File is not valid {encoding}; falling back to iso-8859-1")
        return data[offset:].decode("iso-8859-1")


def sanitize_xml(text: str) -> str:
    """Strip control characters, normalize line endings and whitespace between tags"""
    text = text.lstrip("\ufeff")
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BETWEEN_TAGS.sub("><", text)
    return text.strip()


def is_tiss_document(text: str) -> bool:
    if "mensagemTISS" not in text and "loteGuias" not in text:
        return False
    return re.search(r"<(\w+:)?guia\w*[\s>]", text) is not None


def _qualified_name(element) -> str:
    qname = etree.QName(element)
    if element.prefix:
        return f"{element.prefix}:{qname.localname}"
    return qname.localname


def element_to_value(element) -> Any:
    """
    Convert one element into a dict, a string, or None.

    Attributes become '@name' keys, text alongside children becomes '#text',
    and repeated child elements are grouped into lists.
    """
    node: Dict[str, Any] = {}

    for name, value in element.attrib.items():
        node[f"@{etree.QName(name).localname}"] = value

    for child in element:
        if not isinstance(child.tag, str):
            # Comments and processing instructions
            continue
        key = _qualified_name(child)
        value = element_to_value(child)
        if key in node:
            existing = node[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[key] = [existing, value]
        else:
            node[key] = value

    text = (element.text or "").strip()
    if not node:
        return text or None
    if text:
        node["#text"] = text
    return node


def xml_to_dict(text: str) -> Dict[str, Any]:
    """Parse an XML document into {root_key: value}"""
    parser = etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=False,
    )
    # lxml refuses str input that carries an encoding declaration
    body = _XML_DECLARATION.sub("", text, count=1)
    try:
        root = etree.fromstring(body.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError as e:
        raise ValidationException(f"Arquivo XML inválido: {e}") from e
    return {_qualified_name(root): element_to_value(root)}


def read_insurer_document(data: bytes, require_tiss: bool = True) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Decode, sanitize and parse an insurer file.

    Returns:
        (document, detected_encoding)
    """
    encoding, _ = detect_encoding(data)
    return parse_insurer_text(decode_document(data), require_tiss), encoding


def parse_insurer_text(text: str, require_tiss: bool = True) -> Dict[str, Any]:
    """Parse already decoded insurer XML (e.g. the raw_content stored with a return)"""
    text = sanitize_xml(text)
    if not text:
        raise ValidationException("Arquivo de retorno vazio")
    if require_tiss and not is_tiss_document(text):
        raise ValidationException("Arquivo não parece ser um XML TISS")
    return xml_to_dict(text)
