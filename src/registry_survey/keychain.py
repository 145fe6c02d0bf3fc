"""Lookup of registry credentials by host."""

import base64
import binascii
import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import SecretStr

from .config import RegistryAuth

DOCKER_HUB_HOSTS = frozenset(
    {"docker.io", "index.docker.io", "registry-1.docker.io"}
)


def canonical_host(host: str) -> str:
    """Reduce a registry host (or Docker config key) to a lookup key.

    Docker config files key credentials by URL as often as by host, and
    Docker Hub goes by several names.
    """
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme) :]
            break
    host = host.split("/", 1)[0].lower()
    if host in DOCKER_HUB_HOSTS:
        return "index.docker.io"
    return host


class Keychain(Protocol):
    """Anything that can find credentials for a registry host."""

    def resolve(self, host: str) -> RegistryAuth:
        """Return credentials for ``host``, which may be anonymous."""
        ...


class ConfigKeychain:
    """Credentials listed explicitly in the configuration."""

    def __init__(self, credentials: Iterable[RegistryAuth]) -> None:
        self._credentials = {
            canonical_host(x.realm): x for x in credentials if x.realm
        }

    def resolve(self, host: str) -> RegistryAuth:
        return self._credentials.get(canonical_host(host), RegistryAuth())


class EnvironmentKeychain:
    """Credentials from the environment.

    * ``GITHUB_TOKEN`` (or ``GHCR_TOKEN``) for ghcr.io, with
      ``GITHUB_ACTOR`` as the username if set
    * ``DOCKERHUB_USER`` and ``DOCKERHUB_PASSWORD`` for Docker Hub
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def resolve(self, host: str) -> RegistryAuth:
        env = self._environ
        match canonical_host(host):
            case "ghcr.io":
                token = env.get("GITHUB_TOKEN") or env.get("GHCR_TOKEN")
                if token:
                    return RegistryAuth(
                        realm="ghcr.io",
                        username=env.get("GITHUB_ACTOR", "unused"),
                        password=SecretStr(token),
                    )
            case "index.docker.io":
                password = env.get("DOCKERHUB_PASSWORD")
                if password:
                    return RegistryAuth(
                        realm="docker.io",
                        username=env.get("DOCKERHUB_USER"),
                        password=SecretStr(password),
                    )
        return RegistryAuth()


class DockerConfigKeychain:
    """Credentials stored inline in a Docker client config file.

    Only the ``auths`` section is read.  Credential helpers
    (``credsStore`` and ``credHelpers``) are not run.
    """

    def __init__(self, path: Path | None) -> None:
        self._logger = structlog.get_logger(__name__)
        self._path = path
        self._auths: dict[str, dict[str, Any]] | None = None

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._auths is not None:
            return self._auths
        self._auths = {}
        if self._path is None or not self._path.is_file():
            return self._auths
        try:
            obj = json.loads(self._path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning(
                f"Ignoring unreadable Docker config {self._path}: {exc}"
            )
            return self._auths
        if not isinstance(obj, dict):
            self._logger.warning(
                f"Ignoring Docker config {self._path}: not a JSON object"
            )
            return self._auths
        if obj.get("credsStore") or obj.get("credHelpers"):
            self._logger.debug(
                "Docker config uses credential helpers; only inline "
                "credentials will be used"
            )
        auths = obj.get("auths")
        if not isinstance(auths, dict):
            return self._auths
        for key, entry in auths.items():
            if isinstance(entry, dict):
                self._auths[canonical_host(key)] = entry
        return self._auths

    def resolve(self, host: str) -> RegistryAuth:
        entry = self._load().get(canonical_host(host))
        if not entry:
            return RegistryAuth()
        username = entry.get("username")
        password = entry.get("password")
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"]).decode()
            except (binascii.Error, UnicodeDecodeError):
                self._logger.warning(f"Malformed 'auth' entry for {host}")
            else:
                username, _, password = decoded.partition(":")
        return RegistryAuth.model_validate(
            {
                "realm": host,
                "username": username,
                "password": password,
                "identity_token": entry.get("identitytoken"),
                "registry_token": entry.get("registrytoken"),
            }
        )


class MultiKeychain:
    """Ask several keychains in turn; the first non-anonymous answer wins."""

    def __init__(self, *keychains: Keychain) -> None:
        self._keychains = keychains

    def resolve(self, host: str) -> RegistryAuth:
        for keychain in self._keychains:
            auth = keychain.resolve(host)
            if not auth.anonymous:
                return auth
        return RegistryAuth()
