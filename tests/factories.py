"""Builders for configuration documents used across the tests."""

from tenantops.store.models import ConfigurationItem, ItemKind
from tenantops.store.references import extract_references


def group(name, **spec):
    return {"kind": "Group", "name": name, "spec": spec}


def named_location(name, ranges=("10.0.0.0/8",)):
    return {"kind": "NamedLocation", "name": name, "spec": {"ipRanges": list(ranges)}}


def access_policy(
    name,
    state="enabledForReportingButNotEnforced",
    exclude_groups=("{{Group:break-glass}}",),
    controls=("mfa",),
    **extra,
):
    spec = {
        "state": state,
        "conditions": {
            "users": {"includeUsers": ["All"], "excludeGroups": list(exclude_groups)},
            "applications": {"includeApplications": ["All"]},
        },
        "grantControls": {"operator": "OR", "builtInControls": list(controls)},
    }
    spec.update(extra)
    return {"kind": "AccessPolicy", "name": name, "spec": spec}


def item(document):
    """Turn a document into a ConfigurationItem the way the loader does."""
    return ConfigurationItem(
        kind=ItemKind.parse(document["kind"]),
        name=document["name"],
        body=document["spec"],
        raw_references=extract_references(document["spec"]),
    )


def baseline():
    """Break-glass group, trusted location and a report-only MFA policy."""
    return [
        group("break-glass", breakGlass=True, description="Emergency access"),
        named_location("office"),
        access_policy(
            "require-mfa",
            conditions={
                "users": {"includeUsers": ["All"], "excludeGroups": ["{{Group:break-glass}}"]},
                "applications": {"includeApplications": ["All"]},
                "locations": {
                    "includeLocations": ["All"],
                    "excludeLocations": ["{{NamedLocation:office}}"],
                },
            },
        ),
    ]
