"""
SCIM 2.0 Resource Models

Pydantic models for the canonical (SCIM) side of the connector: users, groups,
member operations, query predicates and the list/error response envelopes
handed back to the protocol handler.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# SCIM 2.0 Schema URNs
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class SCIMMember(BaseModel):
    """Derived group member / user group reference"""
    value: str  # Canonical id of the referenced resource
    display: Optional[str] = None


class MemberOperation(BaseModel):
    """
    Single member change inside a group modification.

    The protocol handler flattens SCIM PATCH member operations into this
    shape; an absent operation means "add".
    """
    value: str  # Canonical user id (userName)
    display: Optional[str] = None
    operation: Optional[str] = None

    @property
    def is_delete(self) -> bool:
        return (self.operation or "add").lower() == "delete"


class CanonicalUser(BaseModel):
    """
    SCIM 2.0 User resource as received from the protocol handler.

    Only userName is required. Any other canonical attribute is carried
    through untouched and left to the attribute mapping table.
    """
    id: Optional[str] = None  # Mirrors userName
    userName: str

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "schemas": [SCIM_USER_SCHEMA],
                "userName": "jane.example",
                "name": {"givenName": "Jane", "familyName": "Example"},
                "emails": [{"value": "jane.example@contoso.com", "type": "work"}],
                "active": True,
            }
        }


class CanonicalGroup(BaseModel):
    """
    SCIM 2.0 Group resource as received from the protocol handler.

    Members on input are member operations; on output they are derived
    {value, display} pairs and never read from storage as-is.
    """
    id: Optional[str] = None  # Mirrors displayName
    displayName: str
    members: Optional[List[MemberOperation]] = None

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "schemas": [SCIM_GROUP_SCHEMA],
                "displayName": "Engineering Team",
                "members": [{"value": "jane.example"}],
            }
        }


class QueryPredicate(BaseModel):
    """
    Query predicate passed by the protocol handler.

    Either the attribute/operator/value triplet, a raw filter expression,
    or nothing at all (list everything).
    """
    attribute: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[Any] = None
    rawFilter: Optional[str] = None

    @classmethod
    def from_request(cls, get_obj: Optional[Dict[str, Any]]) -> "QueryPredicate":
        """
        Build a predicate from the handler's request object.

        Paging keys (startIndex, count) are ignored. When an operator is
        present the raw filter is kept only as text for error messages.
        """
        get_obj = get_obj or {}
        return cls(
            attribute=get_obj.get("attribute") or None,
            operator=get_obj.get("operator") or None,
            value=get_obj.get("value"),
            rawFilter=get_obj.get("rawFilter") or None,
        )

    @property
    def is_empty(self) -> bool:
        return not self.operator and not self.rawFilter

    def describe(self) -> str:
        if self.rawFilter:
            return self.rawFilter
        if self.operator:
            return f"{self.attribute} {self.operator} {self.value!r}"
        return "<all>"


class SCIMListResponse(BaseModel):
    """
    SCIM 2.0 List Response

    totalResults always equals the number of returned resources; paging is
    left to the protocol handler.
    """
    schemas: List[str] = Field(default=[SCIM_LIST_RESPONSE_SCHEMA])
    totalResults: int
    startIndex: int = 1
    itemsPerPage: int
    Resources: List[Dict[str, Any]]

    @classmethod
    def from_resources(cls, resources: List[Dict[str, Any]]) -> "SCIMListResponse":
        return cls(
            totalResults=len(resources),
            itemsPerPage=len(resources),
            Resources=resources,
        )


class SCIMError(BaseModel):
    """
    SCIM 2.0 Error Response

    Standard error format rendered from connector errors.
    """
    schemas: List[str] = Field(default=[SCIM_ERROR_SCHEMA])
    status: str  # HTTP status code
    detail: Optional[str] = None  # Error detail message
    scimType: Optional[str] = None  # SCIM error type

    class Config:
        json_schema_extra = {
            "example": {
                "schemas": [SCIM_ERROR_SCHEMA],
                "status": "409",
                "detail": "Duplicate key on username",
                "scimType": "uniqueness",
            }
        }


# Resource types and their identity attribute; the canonical id mirrors it
USER_RESOURCE = "user"
GROUP_RESOURCE = "group"
IDENTITY_ATTRIBUTES = {
    USER_RESOURCE: "userName",
    GROUP_RESOURCE: "displayName",
}
