"""Authentication helpers for the container registry.

This module centralizes creation of the boto3 ECR client and applies small
normalization rules (such as turning the registry proxy endpoint into a
bare host name) so image references are well formed.
"""

import base64

import boto3
from botocore.exceptions import BotoCoreError, NoRegionError, ProfileNotFound


class AuthError(RuntimeError):
    """Raised when the registry client cannot be created or authorized."""


def _format_auth_error(message: str, profile: str | None) -> str:
    """Return a user-friendly auth error message."""
    if profile:
        return (
            f"AWS authentication failed for profile '{profile}': {message}\n"
            f"Re-authenticate with:\n  $ aws sso login --profile {profile}"
        )
    return f"AWS authentication failed: {message}"


def sanitize_registry_host(endpoint: str | None) -> str | None:
    """
    Normalize a registry endpoint into a host name.

    - Removes the URL scheme (e.g. 'https://')
    - Removes trailing slashes

    ECR returns its proxy endpoint as a URL, while image references need
    the bare host.
    """
    if not endpoint:
        return endpoint
    host = endpoint.split("://", 1)[-1]
    return host.rstrip("/")


def decode_authorization_token(token: str) -> tuple[str, str]:
    """Split a base64 `user:password` registry token into its parts."""
    try:
        decoded = base64.b64decode(token).decode("utf-8")
        username, password = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError) as exc:
        raise AuthError("Registry returned a malformed authorization token.") from exc
    return username, password


def get_ecr_client(region: str | None = None, profile: str | None = None):
    """
    Create and return a boto3 ECR client.

    Credentials are resolved by the standard AWS chain (environment,
    shared config/profile, web identity in CI). A profile is only used
    when given explicitly.
    """
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
        return session.client("ecr")
    except (ProfileNotFound, NoRegionError) as exc:
        raise AuthError(_format_auth_error(str(exc), profile)) from exc
    except BotoCoreError as exc:
        raise AuthError(_format_auth_error(str(exc), profile)) from exc
