"""Connector error taxonomy.

Every failure the protocol handler sees is one of these. Storage errors are
wrapped into them and never passed through raw.
"""

from typing import Iterable, Optional

from .models import SCIMError


class ConnectorError(Exception):
    """Base exception for all connector operations.

    Attributes:
        detail: Human readable error detail
        status: HTTP status the protocol handler should render
        scim_type: Optional SCIM error type
    """

    status = 500
    scim_type: Optional[str] = None

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)

    def to_scim_error(self) -> SCIMError:
        """Render as a SCIM error response body."""
        return SCIMError(
            status=str(self.status),
            detail=self.detail,
            scimType=self.scim_type,
        )


class MappingError(ConnectorError):
    """A field transform failed or the mapping table is invalid."""

    status = 400
    scim_type = "invalidValue"


class UnsupportedFilterError(ConnectorError):
    """Query shape outside the supported subset of the filter grammar."""

    status = 400
    scim_type = "invalidFilter"


class DuplicateKeyError(ConnectorError):
    """Storage reported a uniqueness violation.

    Attributes:
        fields: Storage field(s) that collided
    """

    status = 409
    scim_type = "uniqueness"

    def __init__(self, detail: str, fields: Iterable[str] = ()):
        self.fields = list(fields)
        super().__init__(detail)


class NotFoundError(ConnectorError):
    """Entity absent for get, update or delete."""

    status = 404


class MemberNotFoundError(ConnectorError):
    """A group modification referenced a user that does not exist."""

    status = 400
    scim_type = "invalidValue"


class MembershipCleanupError(ConnectorError):
    """A deleted user could not be detached from every group.

    The underlying failure is chained as __cause__.
    """

    status = 500


class ValidationError(ConnectorError):
    """Storage rejected a write, or the input resource is invalid."""

    status = 400
    scim_type = "invalidValue"


class StorageUnavailableError(ConnectorError):
    """A storage read failed."""

    status = 503
