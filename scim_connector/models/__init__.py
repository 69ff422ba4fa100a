"""
SCIM Connector Models Package

Pydantic models for SCIM 2.0 resources, query predicates and responses.
"""

from .scim_resources import (
    CanonicalUser,
    CanonicalGroup,
    MemberOperation,
    SCIMMember,
    QueryPredicate,
    SCIMListResponse,
    SCIMError,
    SCIM_USER_SCHEMA,
    SCIM_GROUP_SCHEMA,
    SCIM_LIST_RESPONSE_SCHEMA,
    SCIM_ERROR_SCHEMA,
    USER_RESOURCE,
    GROUP_RESOURCE,
    IDENTITY_ATTRIBUTES,
)

__all__ = [
    "CanonicalUser",
    "CanonicalGroup",
    "MemberOperation",
    "SCIMMember",
    "QueryPredicate",
    "SCIMListResponse",
    "SCIMError",
    "SCIM_USER_SCHEMA",
    "SCIM_GROUP_SCHEMA",
    "SCIM_LIST_RESPONSE_SCHEMA",
    "SCIM_ERROR_SCHEMA",
    "USER_RESOURCE",
    "GROUP_RESOURCE",
    "IDENTITY_ATTRIBUTES",
]
