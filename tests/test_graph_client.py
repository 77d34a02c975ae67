import json

import pytest
import respx
from httpx import ConnectError, Response
from tenantops.clients.graph import GraphDirectoryClient
from tenantops.clients.payload import render_payload
from tenantops.core.errors import NotFoundError, TerminalRemoteError, TransientRemoteError
from tenantops.store.models import ItemKind

BASE = "https://graph.example.com/v1.0"
GROUPS = f"{BASE}/groups"
LOCATIONS = f"{BASE}/identity/conditionalAccess/namedLocations"
AUTH_METHODS = f"{BASE}/policies/authenticationMethodsPolicy/authenticationMethodConfigurations"


@pytest.fixture
def graph():
    with GraphDirectoryClient(BASE, "test-token", circuit_failure_threshold=2) as client:
        yield client


def test_upsert_creates_missing_object(graph):
    with respx.mock:
        lookup = respx.get(GROUPS).mock(return_value=Response(200, json={"value": []}))
        create = respx.post(GROUPS).mock(return_value=Response(201, json={"id": "gid-1"}))

        remote_id = graph.create_or_update(
            ItemKind.GROUP, "break-glass", {"displayName": "break-glass", "id": "stale"}
        )

        assert remote_id == "gid-1"
        assert lookup.calls.last.request.url.params["$filter"] == "displayName eq 'break-glass'"
        request = create.calls.last.request
        assert request.headers["Authorization"] == "Bearer test-token"
        assert b'"id"' not in request.content


def test_upsert_patches_existing_object(graph):
    with respx.mock:
        respx.get(GROUPS).mock(
            return_value=Response(200, json={"value": [{"id": "gid-1", "displayName": "ops"}]})
        )
        patch = respx.patch(f"{GROUPS}/gid-1").mock(return_value=Response(204))
        create = respx.post(GROUPS)

        remote_id = graph.create_or_update(ItemKind.GROUP, "ops", {"displayName": "ops"})

        assert remote_id == "gid-1"
        assert patch.call_count == 1
        assert create.call_count == 0


def test_named_location_keeps_odata_type(graph):
    body = render_payload(ItemKind.NAMED_LOCATION, "office", {"ipRanges": ["10.0.0.0/8"]})
    with respx.mock:
        respx.get(LOCATIONS).mock(return_value=Response(200, json={"value": []}))
        create = respx.post(LOCATIONS).mock(return_value=Response(201, json={"id": "loc-1"}))

        graph.create_or_update(
            ItemKind.NAMED_LOCATION, "office", {**body, "@odata.context": "ctx", "id": "stale"}
        )

        sent = json.loads(create.calls.last.request.content)
        assert sent == {
            "@odata.type": "#microsoft.graph.ipNamedLocation",
            "displayName": "office",
            "ipRanges": [{"@odata.type": "#microsoft.graph.iPv4CidrRange", "cidrAddress": "10.0.0.0/8"}],
        }


def test_name_with_quote_is_escaped(graph):
    with respx.mock:
        lookup = respx.get(LOCATIONS).mock(return_value=Response(200, json={"value": []}))

        with pytest.raises(NotFoundError):
            graph.get(ItemKind.NAMED_LOCATION, "o'hare")

        assert lookup.calls.last.request.url.params["$filter"] == "displayName eq 'o''hare'"


def test_ambiguous_name_is_terminal(graph):
    with respx.mock:
        respx.get(GROUPS).mock(
            return_value=Response(200, json={"value": [{"id": "a"}, {"id": "b"}]})
        )

        with pytest.raises(TerminalRemoteError, match="ambiguous"):
            graph.get(ItemKind.GROUP, "ops")


def test_auth_method_policy_is_addressed_by_id(graph):
    with respx.mock:
        patch = respx.patch(f"{AUTH_METHODS}/fido2").mock(return_value=Response(204))

        assert graph.create_or_update(ItemKind.AUTH_METHOD_POLICY, "fido2", {"state": "enabled"}) == "fido2"
        assert patch.call_count == 1

        with pytest.raises(TerminalRemoteError, match="cannot be deleted"):
            graph.delete(ItemKind.AUTH_METHOD_POLICY, "fido2")


def test_delete_resolves_id_first(graph):
    with respx.mock:
        respx.get(GROUPS).mock(return_value=Response(200, json={"value": [{"id": "gid-1"}]}))
        delete = respx.delete(f"{GROUPS}/gid-1").mock(return_value=Response(204))

        graph.delete(ItemKind.GROUP, "ops")

        assert delete.call_count == 1


def test_retryable_status_is_transient(graph):
    with respx.mock:
        respx.get(GROUPS).mock(return_value=Response(503, text="busy"))

        with pytest.raises(TransientRemoteError, match="503"):
            graph.get(ItemKind.GROUP, "ops")


def test_network_error_is_transient(graph):
    with respx.mock:
        respx.get(GROUPS).mock(side_effect=ConnectError("connection refused"))

        with pytest.raises(TransientRemoteError):
            graph.get(ItemKind.GROUP, "ops")


def test_forbidden_is_terminal(graph):
    with respx.mock:
        route = respx.get(GROUPS).mock(return_value=Response(403, text="Authorization_RequestDenied"))

        with pytest.raises(TerminalRemoteError) as exc_info:
            graph.get(ItemKind.GROUP, "ops")

        assert exc_info.value.details["status"] == 403
        assert route.call_count == 1


def test_circuit_opens_after_repeated_transient_failures(graph):
    with respx.mock:
        route = respx.get(GROUPS).mock(return_value=Response(502))

        for _ in range(2):
            with pytest.raises(TransientRemoteError):
                graph.get(ItemKind.GROUP, "ops")

        with pytest.raises(TransientRemoteError, match="circuit open"):
            graph.get(ItemKind.GROUP, "ops")

        assert route.call_count == 2
