"""
Registry Publisher
==================
Authenticate and Publish stages.

Secret scope:
    SecretChannel is the only code that reads registry secrets, and only
    the Authenticate stage calls it. The credential lives inside one
    RegistrySession (its own Docker client) and is dropped, with the
    session's cached auth, when the session closes after Publish. Secret
    values are registered with the masker for exactly that window.

Push semantics:
    Every tag of the artifact is pushed under the same repository. The
    engine streams JSON progress; any "error" entry fails the stage. The
    digest reported for the first tag is recorded on the artifact.
"""
import os
import logging
from typing import Optional

import docker
from docker.errors import APIError, DockerException

from shipyard.core.config import REGISTRY, REGISTRY_TOKEN_ENV, REGISTRY_USERNAME_ENV
from shipyard.core.errors import AuthError, PublishError
from shipyard.executor.stage_executor import create_log_excerpt
from shipyard.models.artifact import BuildArtifact
from shipyard.models.credential import Credential
from shipyard.utils.redaction import SecretMasker, masker as default_masker

logger = logging.getLogger(__name__)

_DOCKER_HUB_LOGIN = "https://index.docker.io/v1/"


class SecretChannel:
    """
    Reads the registry credential from two named environment variables.

    Only the variable NAMES are configuration; values are read on demand.
    """

    def __init__(
        self,
        principal_var: str = REGISTRY_USERNAME_ENV,
        token_var: str = REGISTRY_TOKEN_ENV,
        environ: Optional[dict] = None,
    ) -> None:
        self.principal_var = principal_var
        self.token_var = token_var
        self._environ = environ

    def read(self) -> Credential:
        environ = os.environ if self._environ is None else self._environ
        principal = environ.get(self.principal_var, "")
        token = environ.get(self.token_var, "")
        missing = [name for name, value in ((self.principal_var, principal), (self.token_var, token)) if not value]
        if missing:
            raise AuthError(f"Registry secret(s) not provided: {', '.join(missing)}")
        return Credential(principal=principal, token=token)


class RegistrySession:
    """
    A short-lived, authenticated connection to the artifact registry.

    Usage:
        with RegistrySession(REGISTRY) as session:
            session.login(channel.read())
            session.push(artifact)
    """

    def __init__(self, registry: str = REGISTRY, secret_masker: SecretMasker = default_masker) -> None:
        self.registry = registry
        self.masker = secret_masker
        self._client = None
        self._credential: Optional[Credential] = None

    @property
    def authenticated(self) -> bool:
        return self._credential is not None

    def _login_endpoint(self) -> str:
        if self.registry in ("", "docker.io", "index.docker.io"):
            return _DOCKER_HUB_LOGIN
        return self.registry

    def login(self, credential: Credential) -> None:
        """Exchange the credential for an authenticated session (AuthError on rejection)."""
        self.masker.register(credential.reveal())
        self._credential = credential
        try:
            self._client = docker.from_env()
            self._client.login(
                username=credential.principal,
                password=credential.reveal(),
                registry=self._login_endpoint(),
                reauth=True,
            )
        except (APIError, DockerException) as e:
            message = self.masker.mask(f"Registry login rejected for {self.registry}: {e}")
            self.close()
            raise AuthError(message) from e
        logger.info("Authenticated to %s", self.registry)

    def push(self, artifact: BuildArtifact) -> str:
        """
        Push every tag of the artifact.

        Returns
        -------
        str
            Masked push log excerpt.

        Raises
        ------
        PublishError
            Not authenticated, engine error, or an error in the push stream.
        """
        if not self.authenticated or self._client is None:
            raise PublishError("Publish attempted without an authenticated registry session")

        log_lines: list[str] = []
        for tag in artifact.tags:
            logger.info("Pushing %s:%s", artifact.repository, tag)
            try:
                stream = self._client.images.push(
                    artifact.repository, tag=tag, stream=True, decode=True,
                )
                for chunk in stream:
                    if not isinstance(chunk, dict):
                        continue
                    if chunk.get("error"):
                        log_lines.append(f"ERROR: {chunk['error']}")
                        output = create_log_excerpt(self.masker.mask("\n".join(log_lines)))
                        raise PublishError(
                            self.masker.mask(f"Push of {artifact.repository}:{tag} failed: {chunk['error']}"),
                            output,
                        )
                    digest = (chunk.get("aux") or {}).get("Digest")
                    if digest and artifact.digest is None:
                        artifact.digest = digest
                    if chunk.get("status"):
                        log_lines.append(" ".join(
                            str(chunk[k]) for k in ("id", "status") if chunk.get(k)
                        ))
            except PublishError:
                raise
            except (APIError, DockerException) as e:
                raise PublishError(self.masker.mask(f"Docker API error during push: {e}")) from e

        return create_log_excerpt(self.masker.mask("\n".join(log_lines)))

    def close(self) -> None:
        """Drop the credential and the client holding its cached auth."""
        if self._credential is not None:
            self.masker.unregister(self._credential.reveal())
        self._credential = None
        if self._client is not None:
            try:
                self._client.close()
            except Exception:
                logger.warning("Failed to close registry client", exc_info=True)
        self._client = None

    def __enter__(self) -> "RegistrySession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
