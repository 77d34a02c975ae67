"""
Wire payload rendering.

Item bodies carry a few tenantops-only fields (break-glass designation,
report-only flag, the ``enforcementState`` alias). They are folded into
the service's own fields before transmission; the rendered payload is
also what verification compares against.
"""

from __future__ import annotations

import copy
import ipaddress
from typing import Any

from tenantops.store.models import ItemKind

REPORT_ONLY_STATE = "enabledForReportingButNotEnforced"

LOCAL_FIELDS = frozenset({"breakGlass", "reportOnly", "enforcementState"})

# Server-managed properties that must not be sent back on restore
READ_ONLY_FIELDS = frozenset(
    {"id", "createdDateTime", "modifiedDateTime", "deletedDateTime", "renewedDateTime"}
)

# The one OData annotation the service needs on writes (derived types)
ODATA_TYPE = "@odata.type"

IP_NAMED_LOCATION = "#microsoft.graph.ipNamedLocation"
COUNTRY_NAMED_LOCATION = "#microsoft.graph.countryNamedLocation"


def _cidr_range(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    network = ipaddress.ip_network(value, strict=False)
    version = "iPv4" if network.version == 4 else "iPv6"
    return {ODATA_TYPE: f"#microsoft.graph.{version}CidrRange", "cidrAddress": value}


def _render_named_location(payload: dict[str, Any]) -> None:
    if payload.get("ipRanges"):
        payload.setdefault(ODATA_TYPE, IP_NAMED_LOCATION)
        payload["ipRanges"] = [_cidr_range(value) for value in payload["ipRanges"]]
        if not payload.get("countriesAndRegions"):
            payload.pop("countriesAndRegions", None)
    elif payload.get("countriesAndRegions"):
        payload.setdefault(ODATA_TYPE, COUNTRY_NAMED_LOCATION)
        payload.pop("ipRanges", None)
        payload.pop("isTrusted", None)


def render_payload(kind: ItemKind, name: str, body: dict[str, Any]) -> dict[str, Any]:
    """Build the document sent to the directory service for an item."""
    payload = {k: copy.deepcopy(v) for k, v in body.items() if k not in LOCAL_FIELDS}

    if kind is not ItemKind.AUTH_METHOD_POLICY:
        payload.setdefault("displayName", name)

    if kind is ItemKind.ACCESS_POLICY:
        state = body.get("state") or body.get("enforcementState")
        if body.get("reportOnly") is True and state == "enabled":
            state = REPORT_ONLY_STATE
        if state is not None:
            payload["state"] = state

    if kind is ItemKind.NAMED_LOCATION:
        _render_named_location(payload)

    return payload


def writable(document: dict[str, Any]) -> dict[str, Any]:
    """Strip server-managed properties and OData annotations other than the type."""
    return {
        k: v
        for k, v in document.items()
        if k not in READ_ONLY_FIELDS and (k == ODATA_TYPE or not k.startswith("@odata"))
    }


def drift_fields(intended: dict[str, Any], actual: dict[str, Any] | None, prefix: str = "") -> list[str]:
    """Dotted paths of fields declared in ``intended`` that differ in ``actual``.

    Fields the remote side adds on its own are ignored; lists compare whole.
    """
    if actual is None:
        return [prefix.rstrip(".") or "*"]

    drifted = []
    for field_name, expected in writable(intended).items():
        path = f"{prefix}{field_name}"
        current = actual.get(field_name)
        if isinstance(expected, dict) and isinstance(current, dict):
            drifted.extend(drift_fields(expected, current, prefix=f"{path}."))
        elif expected != current:
            drifted.append(path)
    return drifted


def matches(intended: dict[str, Any] | None, actual: dict[str, Any] | None) -> bool:
    """True when ``actual`` carries every field ``intended`` declares (None means absent)."""
    if intended is None or actual is None:
        return intended is None and actual is None
    return not drift_fields(intended, actual)


def same_state(left: dict[str, Any] | None, right: dict[str, Any] | None) -> bool:
    """True when both documents carry the same writable fields (None means absent).

    Unlike ``matches`` this is symmetric: a field present on only one side
    is a difference.
    """
    if left is None or right is None:
        return left is None and right is None
    return not drift_fields(left, right) and not drift_fields(right, left)
