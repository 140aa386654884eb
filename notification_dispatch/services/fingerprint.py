"""
Request fingerprinting for idempotent submission.

Two submissions are the same logical request when their canonical payloads
hash to the same digest. The canonical payload keeps a fixed top-level field
order, normalizes the recipient email and sorts every object key inside
``variables`` recursively; the recipient display name is left out on purpose.

The digest is taken over the bytes ``JSON.stringify`` would emit for the
canonical payload, so records fingerprinted by other services sharing the
table replay as the same request.
"""
import hashlib
import json
import math
from typing import Any, Dict

from notification_dispatch.schemas.notification import NotificationCreate


def sort_deep(value: Any) -> Any:
    """Return ``value`` with all mapping keys sorted recursively. Lists keep their order.

    Keys compare by UTF-16 code units, the order JavaScript's ``Array.prototype.sort`` uses.
    """
    if isinstance(value, dict):
        return {key: sort_deep(value[key]) for key in sorted(value, key=lambda k: str(k).encode("utf-16-be"))}
    if isinstance(value, (list, tuple)):
        return [sort_deep(item) for item in value]
    return value


def format_number(value) -> str:
    """Render a number exactly as ``JSON.stringify`` would.

    Floats use the shortest round-trip digits from ``repr`` laid out by the
    ECMAScript Number-to-String rules: integral values drop the fraction and
    exponents outside [-7, 21) switch to ``1e+21`` / ``1e-7`` notation.
    Non-finite values serialize as ``null``.
    """
    if isinstance(value, int):
        # Beyond 2**53 a JS Number has already lost the low digits
        if abs(value) <= 2 ** 53:
            return str(value)
        value = float(value)

    if math.isnan(value) or math.isinf(value):
        return "null"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    text = repr(abs(value))
    mantissa, _, exponent = text.partition("e")
    point = mantissa.find(".")
    if point == -1:
        point = len(mantissa)
    digits = mantissa.replace(".", "")

    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip("0")

    # value == 0.<digits> * 10**n
    n = point + int(exponent or 0)
    k = len(digits)

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * -n + digits

    e = n - 1
    exp_text = f"e{'+' if e >= 0 else '-'}{abs(e)}"
    if k == 1:
        return sign + digits + exp_text
    return sign + digits[0] + "." + digits[1:] + exp_text


def _is_array_index(key: str) -> bool:
    return key.isdigit() and key.isascii() and (key == "0" or not key.startswith("0")) and int(key) < 2 ** 32 - 1


def _property_order(items):
    # JS objects enumerate integer-like keys first, ascending, then the rest in insertion order
    indexes = sorted((item for item in items if _is_array_index(item[0])), key=lambda item: int(item[0]))
    return indexes + [item for item in items if not _is_array_index(item[0])]


def to_canonical_json(value: Any) -> str:
    """Compact JSON with the same bytes ``JSON.stringify`` produces for ``value``."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        # json's string escaping (quotes, backslash, \b\f\n\r\t, lowercase \u00XX) matches JS
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        items = [(str(key), item) for key, item in value.items()]
        return "{" + ",".join(f"{to_canonical_json(key)}:{to_canonical_json(item)}" for key, item in _property_order(items)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(to_canonical_json(item) for item in value) + "]"
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def canonical_payload(
    tenant_id: str,
    event_type: str,
    priority: str,
    to_email: str,
    template_id: str,
    variables: Dict[str, Any],
) -> Dict[str, Any]:
    # Insertion order is part of the digest, keep it stable
    return {
        "tenantId": tenant_id,
        "eventType": event_type,
        "priority": priority,
        "toEmail": normalize_email(to_email),
        "templateId": template_id,
        "variables": sort_deep(variables),
    }


def compute_request_hash(
    tenant_id: str,
    event_type: str,
    priority: str,
    to_email: str,
    template_id: str,
    variables: Dict[str, Any],
) -> str:
    payload = canonical_payload(tenant_id, event_type, priority, to_email, template_id, variables)
    serialized = to_canonical_json(payload)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def fingerprint_submission(payload: NotificationCreate) -> str:
    return compute_request_hash(
        tenant_id=payload.tenant_id,
        event_type=payload.event_type,
        priority=payload.priority.value,
        to_email=payload.to.email,
        template_id=payload.template_id,
        variables=payload.variables,
    )
