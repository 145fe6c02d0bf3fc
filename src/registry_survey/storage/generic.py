"""Storage client for any registry speaking the Docker Registry v2 API.

Only suitable where a more specific client for the actual registry
doesn't exist: listing repositories requires the ``/v2/_catalog``
endpoint, which may be wildly inefficient (or disabled) depending on the
registry, and listing manifests costs one request per tag.
"""

import hashlib
from collections.abc import Iterator
from itertools import chain
from typing import Annotated

from pydantic import BaseModel, BeforeValidator

from ..exceptions import NotFoundError
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.reference import registry_scheme
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList, relative_repositories
from ..transport import RegistryChallengeAuth
from .registry import (
    PAGE_SIZE,
    ClientSettings,
    ContainerRegistryClient,
    null_is_empty,
)

MANIFEST_MEDIA_TYPES = (
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.v1+prettyjws",
)


class _Catalog(BaseModel):
    repositories: Annotated[list[str], BeforeValidator(null_is_empty)] = []


class _TagList(BaseModel):
    tags: Annotated[list[str], BeforeValidator(null_is_empty)] = []


class GenericRegistryClient(ContainerRegistryClient):
    """Client for a plain v2 registry."""

    category = RegistryCategory.GENERIC

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        return True

    def __init__(self, host: str, settings: ClientSettings) -> None:
        super().__init__(host, settings)
        self._url = f"{registry_scheme(host)}://{host}/v2"
        self._http_client = self._new_http_client(
            RegistryChallengeAuth(settings.keychain)
        )

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        with self._wrap_errors("listing repositories for", repository):
            catalog = list(chain.from_iterable(self._catalog_pages()))
        prefix = f"{repository}/"
        if not any(x == repository or x.startswith(prefix) for x in catalog):
            raise NotFoundError(f"{self.host}/{repository} not in catalog")
        return RepositoryList(
            name=repository,
            repositories=relative_repositories(
                repository, catalog, recursive=options.recursive
            ),
        )

    def _catalog_pages(self) -> Iterator[list[str]]:
        url: str | None = f"{self._url}/_catalog"
        params: dict[str, int] | None = {"n": PAGE_SIZE}
        page = 1
        while url:
            self._check_cancelled()
            self._logger.debug(f"Requesting catalog page {page}")
            r = self._http_client.get(url, params=params)
            r.raise_for_status()
            yield _Catalog.model_validate(r.json()).repositories
            url = self._next_link(r)
            params = None
            page += 1

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        """List manifests by listing every tag in the repository and then
        asking for the manifest descriptor of each tag.
        """
        with self._wrap_errors("listing manifests for", repository):
            manifests = aggregate_manifests(self._manifest_pages(repository))
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _manifest_pages(self, repository: str) -> Iterator[list[Manifest]]:
        for tags in self._tag_pages(repository):
            yield [self._describe_tag(repository, tag) for tag in tags]

    def _tag_pages(self, repository: str) -> Iterator[list[str]]:
        url: str | None = f"{self._url}/{repository}/tags/list"
        params: dict[str, int] | None = {"n": PAGE_SIZE}
        page = 1
        while url:
            self._check_cancelled()
            self._logger.debug(f"Requesting tags of {repository}: page {page}")
            r = self._http_client.get(url, params=params)
            if r.status_code == 404:
                raise NotFoundError(f"{self.host}/{repository} not found")
            r.raise_for_status()
            yield _TagList.model_validate(r.json()).tags
            url = self._next_link(r)
            params = None
            page += 1

    def _describe_tag(self, repository: str, tag: str) -> Manifest:
        self._check_cancelled()
        url = f"{self._url}/{repository}/manifests/{tag}"
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        r = self._http_client.head(url, headers=headers)
        r.raise_for_status()
        digest = r.headers.get("Docker-Content-Digest")
        if not digest:
            # Some registries leave the digest header off HEAD responses, so
            # fetch the manifest and hash it ourselves.
            r = self._http_client.get(url, headers=headers)
            r.raise_for_status()
            digest = f"sha256:{hashlib.sha256(r.content).hexdigest()}"
        media_type = r.headers.get("Content-Type", "").split(";")[0].strip()
        return Manifest(
            digest=digest,
            media_type=media_type or None,
            tags=frozenset({tag}),
        )
