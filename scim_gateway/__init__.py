"""
SCIM Gateway

Bridges an upstream SCIM 2.0 identity provider to a downstream SCIM API with
an extended role schema and OAuth2 client-credentials authentication.
"""

__version__ = "1.0.0"
