"""Storage client for the ghcr.io package registry.

ghcr.io itself does not implement ``/v2/_catalog``, so everything here goes
through the GitHub packages REST API, with the credentials used to pull
from ghcr.io.
"""

import datetime
from collections.abc import Iterator
from typing import Annotated, Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, BeforeValidator

from ..config import RegistryAuth
from ..exceptions import BackendError, NotFoundError
from ..keychain import Keychain
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList, relative_repositories
from ..transport import KeychainAuth
from .registry import (
    PAGE_SIZE,
    ClientSettings,
    ContainerRegistryClient,
    null_is_empty,
    zero_time_is_none,
)

GITHUB_API = "https://api.github.com"


class GhcrAuth(KeychainAuth):
    """Authorize GitHub API requests with the ghcr.io credentials.

    A registry token beats an identity token, which beats the password.
    Whichever is used is sent as a bearer token, since the GitHub API
    takes a personal access token where ghcr.io takes a password.
    """

    def __init__(self, keychain: Keychain) -> None:
        super().__init__(keychain, resource="ghcr.io")

    def authorize(self, request: httpx.Request, auth: RegistryAuth) -> None:
        secret = auth.registry_token or auth.identity_token or auth.password
        if secret:
            token = secret.get_secret_value()
            request.headers["Authorization"] = f"Bearer {token}"


class _Owner(BaseModel):
    type: str


class _Package(BaseModel):
    name: str


class _ContainerMetadata(BaseModel):
    tags: Annotated[list[str], BeforeValidator(null_is_empty)] = []


class _VersionMetadata(BaseModel):
    container: _ContainerMetadata = _ContainerMetadata()


class _PackageVersion(BaseModel):
    name: str
    metadata: _VersionMetadata = _VersionMetadata()
    created_at: Annotated[
        datetime.datetime | None, BeforeValidator(zero_time_is_none)
    ] = None
    updated_at: Annotated[
        datetime.datetime | None, BeforeValidator(zero_time_is_none)
    ] = None


class GhcrClient(ContainerRegistryClient):
    """Storage client for communication with ghcr.io.

    A reference is ``<owner>/<package>``, where the owner may be a user or
    an organization and the package name may contain slashes.
    """

    category = RegistryCategory.GHCR

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        return host == RegistryCategory.GHCR.value

    def __init__(self, host: str, settings: ClientSettings) -> None:
        super().__init__(host, settings)
        self._url = GITHUB_API
        self._http_client = self._new_http_client(
            GhcrAuth(settings.keychain),
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )
        self._owner_kinds: dict[str, str] = {}

    def _owner_kind(self, owner: str) -> str:
        """Return the API path segment for ``owner``: users or orgs."""
        if owner in self._owner_kinds:
            return self._owner_kinds[owner]
        self._check_cancelled()
        r = self._http_client.get(f"{self._url}/users/{owner}")
        if r.status_code == 404:
            raise NotFoundError(f"GitHub owner {owner} not found")
        r.raise_for_status()
        match _Owner.model_validate(r.json()).type:
            case "User":
                kind = "users"
            case "Organization":
                kind = "orgs"
            case other:
                raise BackendError(
                    f"GitHub owner {owner} has unknown type {other}"
                )
        self._owner_kinds[owner] = kind
        return kind

    def _pages(
        self, url: str, params: dict[str, Any] | None, what: str
    ) -> Iterator[list[Any]]:
        next_url: str | None = url
        page = 1
        while next_url:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {what}: "
                f"{(page - 1) * PAGE_SIZE + 1}-{page * PAGE_SIZE}"
            )
            r = self._http_client.get(next_url, params=params)
            if r.status_code == 404:
                raise NotFoundError(f"{self.host}/{what} not found")
            r.raise_for_status()
            yield r.json()
            next_url = self._next_link(r)
            # The next link already carries the query
            params = None
            page += 1

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        owner = repository.split("/")[0]
        paths: list[str] = []
        with self._wrap_errors("listing repositories for", repository):
            kind = self._owner_kind(owner)
            url = f"{self._url}/{kind}/{owner}/packages"
            params = {"package_type": "container", "per_page": PAGE_SIZE}
            for page in self._pages(url, params, f"{owner} packages"):
                paths.extend(
                    f"{owner}/{_Package.model_validate(p).name}" for p in page
                )
        return RepositoryList(
            name=repository,
            repositories=relative_repositories(
                repository, paths, recursive=options.recursive
            ),
        )

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        owner, _, package = repository.partition("/")
        if not package:
            # An owner is only a namespace
            return ManifestList()
        with self._wrap_errors("listing manifests for", repository):
            kind = self._owner_kind(owner)
            url = (
                f"{self._url}/{kind}/{owner}/packages/container/"
                f"{quote(package, safe='')}/versions"
            )
            params = {"per_page": PAGE_SIZE, "state": "active"}
            manifests = aggregate_manifests(
                [self._to_manifest(v) for v in page]
                for page in self._pages(url, params, repository)
            )
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _to_manifest(self, obj: dict[str, Any]) -> Manifest:
        version = _PackageVersion.model_validate(obj)
        return Manifest(
            digest=version.name,
            tags=frozenset(version.metadata.container.tags),
            uploaded=version.created_at,
            updated=version.updated_at,
        )
