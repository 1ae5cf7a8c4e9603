"""eBay Trading API XML helpers.

Request bodies are built and responses parsed with xml.etree.ElementTree.
Responses are converted to plain dicts that keep every field, so the raw
record persisted for an order or item is the full platform payload.
"""

from typing import Any, Dict, List, Optional, Tuple
import xml.etree.ElementTree as ET

from core.errors import TransportError

TRADING_ENDPOINT = "https://api.ebay.com/ws/api.dll"
NAMESPACE = "urn:ebay:apis:eBLBaseComponents"
SITE_ID = "0"
COMPATIBILITY_LEVEL = "1421"

# Error codes the Trading API returns for an invalid or expired token
AUTH_ERROR_CODES = {"931", "932", "16110", "17470", "21916013", "21917053"}


def trading_headers(call_name: str) -> Dict[str, str]:
    return {
        "X-EBAY-API-SITEID": SITE_ID,
        "X-EBAY-API-COMPATIBILITY-LEVEL": COMPATIBILITY_LEVEL,
        "X-EBAY-API-CALL-NAME": call_name,
        "Content-Type": "text/xml",
    }


def _append(parent: ET.Element, name: str, value: Any) -> None:
    if isinstance(value, dict):
        child = ET.SubElement(parent, name)
        for key, nested in value.items():
            _append(child, key, nested)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _append(parent, name, item)
    elif value is not None:
        ET.SubElement(parent, name).text = str(value)


def build_request(call_name: str, fields: Dict[str, Any], auth_token: Optional[str] = None) -> bytes:
    """Build a ``<CallNameRequest>`` document.

    Args:
        call_name: Trading API call, e.g. "GetOrders"
        fields: Nested dict of request elements (lists repeat the element)
        auth_token: Auth'n'Auth token for RequesterCredentials, if any
    """
    root = ET.Element(f"{call_name}Request", xmlns=NAMESPACE)
    if auth_token:
        credentials = ET.SubElement(root, "RequesterCredentials")
        ET.SubElement(credentials, "eBayAuthToken").text = auth_token
    for name, value in fields.items():
        _append(root, name, value)
    return b'<?xml version="1.0" encoding="utf-8"?>' + ET.tostring(root, encoding="utf-8")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def element_to_dict(element: ET.Element) -> Any:
    """Convert an element to plain Python values.

    - a leaf becomes its text
    - a leaf with attributes becomes {"value": text, "@attr": ...}
    - children become keys; a repeated tag becomes a list
    """
    children = list(element)
    attributes = {f"@{_local(k)}": v for k, v in element.attrib.items()}

    if not children:
        text = (element.text or "").strip()
        if attributes:
            return {"value": text, **attributes}
        return text

    result: Dict[str, Any] = dict(attributes)
    for child in children:
        key = _local(child.tag)
        value = element_to_dict(child)
        if key in result:
            if not isinstance(result[key], list):
                result[key] = [result[key]]
            result[key].append(value)
        else:
            result[key] = value
    return result


def as_list(value: Any) -> List[Any]:
    """A field that may be missing, single or repeated, as a list."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def leaf_text(value: Any) -> Optional[str]:
    """Text of a leaf produced by element_to_dict (plain or with attributes)."""
    if isinstance(value, dict):
        value = value.get("value")
    if value is None or value == "":
        return None
    return str(value)


def parse_response(text: str) -> Tuple[str, List[Dict[str, Any]], Dict[str, Any]]:
    """Parse a Trading API response.

    Returns:
        (ack, errors, body) where errors are the ``Errors`` entries as dicts

    Raises:
        TransportError: Body is not well-formed XML (not retried)
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise TransportError(f"Malformed XML payload: {e}", 200, text[:500])

    body = element_to_dict(root)
    if not isinstance(body, dict):
        body = {}
    ack = leaf_text(body.get("Ack")) or ""
    errors = [e for e in as_list(body.get("Errors")) if isinstance(e, dict)]
    return ack, errors, body


def is_auth_failure(errors: List[Dict[str, Any]]) -> bool:
    for error in errors:
        if leaf_text(error.get("ErrorCode")) in AUTH_ERROR_CODES:
            return True
    return False


def describe_errors(errors: List[Dict[str, Any]]) -> str:
    parts = []
    for error in errors:
        code = leaf_text(error.get("ErrorCode")) or "?"
        message = leaf_text(error.get("LongMessage")) or leaf_text(error.get("ShortMessage")) or ""
        parts.append(f"[{code}] {message}")
    return "; ".join(parts) or "unknown error"
