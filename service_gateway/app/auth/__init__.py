"""
Authentication helpers for the gateway.
"""

from .verifier import TokenVerifier, extract_bearer_token

__all__ = [
    "TokenVerifier",
    "extract_bearer_token",
]
