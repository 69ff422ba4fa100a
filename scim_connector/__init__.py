"""
SCIM Connector

Translates SCIM 2.0 user/group provisioning into document store operations,
keeping group membership consistent on both sides.
"""

__version__ = "1.0.0"
