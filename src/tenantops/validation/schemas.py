"""
Structural schemas for each configuration kind.

These mirror the directory service's wire shapes closely enough to catch
typos and missing fields before anything is sent. Unknown fields are
allowed and passed through untouched.
"""

from __future__ import annotations

import ipaddress
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from tenantops.store.models import ConfigurationItem, ItemKind

PolicyState = Literal["enabled", "disabled", "enabledForReportingButNotEnforced"]

GrantControl = Literal[
    "block",
    "mfa",
    "compliantDevice",
    "domainJoinedDevice",
    "approvedApplication",
    "compliantApplication",
    "passwordChange",
]


class _Spec(BaseModel):
    model_config = ConfigDict(extra="allow")


class GroupSpec(_Spec):
    displayName: Optional[str] = Field(None, description="Defaults to the item name")
    description: Optional[str] = None
    mailNickname: Optional[str] = None
    securityEnabled: bool = True
    mailEnabled: bool = False
    breakGlass: bool = Field(False, description="Designates an emergency-access group")


class NamedLocationSpec(_Spec):
    displayName: Optional[str] = None
    ipRanges: list[str] = Field(default_factory=list, description="CIDR ranges")
    countriesAndRegions: list[str] = Field(default_factory=list)
    isTrusted: bool = False

    @field_validator("ipRanges")
    @classmethod
    def _valid_cidrs(cls, value: list[str]) -> list[str]:
        for cidr in value:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                raise ValueError(f"invalid CIDR range {cidr!r}") from e
        return value

    @model_validator(mode="after")
    def _has_location(self) -> NamedLocationSpec:
        if not self.ipRanges and not self.countriesAndRegions:
            raise ValueError("either ipRanges or countriesAndRegions is required")
        return self


class UserConditions(_Spec):
    includeUsers: list[str] = Field(default_factory=list)
    excludeUsers: list[str] = Field(default_factory=list)
    includeGroups: list[str] = Field(default_factory=list)
    excludeGroups: list[str] = Field(default_factory=list)


class ApplicationConditions(_Spec):
    includeApplications: list[str] = Field(default_factory=list)
    excludeApplications: list[str] = Field(default_factory=list)


class LocationConditions(_Spec):
    includeLocations: list[str] = Field(default_factory=list)
    excludeLocations: list[str] = Field(default_factory=list)


class PolicyConditions(_Spec):
    users: UserConditions
    applications: ApplicationConditions = Field(default_factory=ApplicationConditions)
    locations: Optional[LocationConditions] = None
    clientAppTypes: list[str] = Field(default_factory=list)


class GrantControls(_Spec):
    operator: Literal["AND", "OR"] = "OR"
    builtInControls: list[GrantControl] = Field(default_factory=list)


class AccessPolicySpec(_Spec):
    displayName: Optional[str] = None
    state: Optional[PolicyState] = None
    enforcementState: Optional[PolicyState] = None
    reportOnly: bool = False
    conditions: PolicyConditions
    grantControls: Optional[GrantControls] = None
    sessionControls: Optional[dict] = None

    @model_validator(mode="after")
    def _has_state(self) -> AccessPolicySpec:
        if self.state is None and self.enforcementState is None:
            raise ValueError("state (or enforcementState) is required")
        return self


class ServicePrincipalSpec(_Spec):
    displayName: Optional[str] = None
    appId: str = Field(..., min_length=1, description="Application (client) id or placeholder")
    accountEnabled: bool = True
    appRoleAssignmentRequired: bool = False
    tags: list[str] = Field(default_factory=list)


class SSOAppSpec(_Spec):
    displayName: Optional[str] = None
    signInAudience: str = "AzureADMyOrg"
    preferredSingleSignOnMode: Optional[Literal["saml", "oidc", "password", "notSupported"]] = None
    identifierUris: list[str] = Field(default_factory=list)
    web: Optional[dict] = None


class AuthTarget(_Spec):
    targetType: Literal["group", "user"] = "group"
    id: str = Field(..., min_length=1)


class AuthMethodPolicySpec(_Spec):
    state: Literal["enabled", "disabled"]
    includeTargets: list[AuthTarget] = Field(default_factory=list)
    excludeTargets: list[AuthTarget] = Field(default_factory=list)


SCHEMAS: dict[ItemKind, type[BaseModel]] = {
    ItemKind.GROUP: GroupSpec,
    ItemKind.NAMED_LOCATION: NamedLocationSpec,
    ItemKind.ACCESS_POLICY: AccessPolicySpec,
    ItemKind.SERVICE_PRINCIPAL: ServicePrincipalSpec,
    ItemKind.SSO_APP: SSOAppSpec,
    ItemKind.AUTH_METHOD_POLICY: AuthMethodPolicySpec,
}


def schema_errors(item: ConfigurationItem) -> list[str]:
    """Return human-readable schema violations for an item (empty if valid)."""
    model = SCHEMAS[item.kind]
    try:
        model.model_validate(item.body)
    except ValidationError as e:
        messages = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"]) or "spec"
            messages.append(f"{location}: {err['msg']}")
        return messages
    return []
