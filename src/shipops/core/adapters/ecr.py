from __future__ import annotations

import threading
from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from shipops.core.adapters.docker import DockerAdapter
from shipops.core.auth import (
    AuthError,
    decode_authorization_token,
    sanitize_registry_host,
)
from shipops.core.errors import (
    RegistryError,
    RegistryNotFoundError,
    RegistryPermissionError,
    TransientRegistryError,
)

_TRANSIENT_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailableException",
    "ServerException",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
}
_PERMISSION_CODES = {
    "AccessDeniedException",
    "AccessDenied",
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}
_NOT_FOUND_CODES = {"RepositoryNotFoundException", "RegistryNotFoundException"}
_NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


def _translate(exc: Exception, action: str) -> RegistryError:
    """Map a boto3 failure onto the registry error taxonomy."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        message = f"{action} failed ({code}): {exc}"
        if code in _TRANSIENT_CODES:
            return TransientRegistryError(message)
        if code in _PERMISSION_CODES:
            return RegistryPermissionError(message)
        if code in _NOT_FOUND_CODES:
            return RegistryNotFoundError(message)
        return RegistryError(message)
    if isinstance(exc, _NETWORK_ERRORS):
        return TransientRegistryError(f"{action} failed: {exc}")
    return RegistryPermissionError(f"{action} failed: {exc}")


class EcrRegistryAdapter:
    """Adapter around Amazon ECR (boto3) plus `docker push` for uploads."""

    def __init__(
        self,
        client: Any,
        docker: DockerAdapter,
        *,
        scan_on_push: bool = True,
        registry_host: str | None = None,
    ) -> None:
        self.client = client
        self.docker = docker
        self.scan_on_push = scan_on_push
        self._registry_host = registry_host
        self._login_lock = threading.Lock()
        self._logged_in = False

    def _authorization(self) -> dict:
        try:
            data = self.client.get_authorization_token()["authorizationData"]
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, "get_authorization_token") from exc
        if not data:
            raise AuthError("Registry returned no authorization data.")
        return data[0]

    @property
    def registry_host(self) -> str:
        """Return the registry host, discovering it from the auth endpoint once."""
        if not self._registry_host:
            self._registry_host = sanitize_registry_host(self._authorization()["proxyEndpoint"])
        return self._registry_host

    def login(self) -> None:
        """Log the docker client in with a short-lived, pipeline-scoped token."""
        auth = self._authorization()
        self._registry_host = sanitize_registry_host(auth["proxyEndpoint"])
        username, password = decode_authorization_token(auth["authorizationToken"])
        self.docker.login(self._registry_host, username, password)
        self._logged_in = True

    def _ensure_login(self) -> None:
        with self._login_lock:
            if not self._logged_in:
                self.login()

    def repository_uri(self, namespace: str) -> str:
        return f"{self.registry_host}/{namespace}"

    def namespace_exists(self, namespace: str) -> bool:
        try:
            self.client.describe_repositories(repositoryNames=[namespace])
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "RepositoryNotFoundException":
                return False
            raise _translate(exc, f"describe_repositories({namespace})") from exc
        except BotoCoreError as exc:
            raise _translate(exc, f"describe_repositories({namespace})") from exc
        return True

    def create_namespace(self, namespace: str) -> None:
        """Create a repository; an existing repository counts as success."""
        try:
            self.client.create_repository(
                repositoryName=namespace,
                imageTagMutability="MUTABLE",
                imageScanningConfiguration={"scanOnPush": self.scan_on_push},
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "RepositoryAlreadyExistsException":
                return
            raise _translate(exc, f"create_repository({namespace})") from exc
        except BotoCoreError as exc:
            raise _translate(exc, f"create_repository({namespace})") from exc

    def upload(self, image_ref: str) -> str:
        self._ensure_login()
        return self.docker.push(image_ref)

    def resolve_tag(self, namespace: str, tag: str) -> str | None:
        """Return the digest a tag points at, or None when the tag is absent."""
        try:
            response = self.client.describe_images(
                repositoryName=namespace,
                imageIds=[{"imageTag": tag}],
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ImageNotFoundException":
                return None
            raise _translate(exc, f"describe_images({namespace}:{tag})") from exc
        except BotoCoreError as exc:
            raise _translate(exc, f"describe_images({namespace}:{tag})") from exc

        details = response.get("imageDetails") or []
        if not details:
            return None
        return details[0].get("imageDigest")
