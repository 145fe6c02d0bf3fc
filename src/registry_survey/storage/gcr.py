"""Storage client for Google Container Registry style hosts.

This covers ``gcr.io`` and its regional mirrors as well as
``registry.k8s.io``.  These extend the v2 ``tags/list`` response with the
child repositories and a map of every manifest in the repository, so no
per-tag requests are needed.
"""

import datetime
from collections import deque
from collections.abc import Iterator
from typing import Annotated, Any

from pydantic import BeforeValidator
from safir.pydantic import CamelCaseModel

from ..exceptions import NotFoundError
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList, relative_repositories
from ..transport import RegistryChallengeAuth
from .gar import GAR_SUFFIX
from .registry import (
    PAGE_SIZE,
    ClientSettings,
    ContainerRegistryClient,
    null_is_empty,
)


def _millis_to_datetime(inp: Any) -> Any:
    # "0" is a real (if unlikely) timestamp, so only missing values are None
    if inp is None or inp == "":
        return None
    return datetime.datetime.fromtimestamp(int(inp) / 1000, tz=datetime.UTC)


type MillisTime = Annotated[
    datetime.datetime | None, BeforeValidator(_millis_to_datetime)
]


class _GcrManifestInfo(CamelCaseModel):
    media_type: str = ""
    tag: Annotated[list[str], BeforeValidator(null_is_empty)] = []
    time_created_ms: MillisTime = None
    time_uploaded_ms: MillisTime = None


class _GcrTagList(CamelCaseModel):
    child: Annotated[list[str], BeforeValidator(null_is_empty)] = []
    manifest: Annotated[
        dict[str, _GcrManifestInfo], BeforeValidator(lambda x: x or {})
    ] = {}


def _is_google_host(host: str) -> bool:
    host = host.split(":")[0]
    return any(
        host == domain or host.endswith(f".{domain}")
        for domain in ("gcr.io", "pkg.dev", "k8s.io")
    )


class GcrClient(ContainerRegistryClient):
    """Client for Google Container Registry and its relatives."""

    category = RegistryCategory.GOOGLE

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        return _is_google_host(host) and not host.endswith(GAR_SUFFIX)

    def __init__(self, host: str, settings: ClientSettings) -> None:
        super().__init__(host, settings)
        self._url = f"https://{host}/v2"
        self._http_client = self._new_http_client(
            RegistryChallengeAuth(settings.keychain)
        )

    def _tag_list_pages(self, repository: str) -> Iterator[_GcrTagList]:
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
            yield _GcrTagList.model_validate(r.json())
            url = self._next_link(r)
            params = None
            page += 1

    def _children(self, repository: str) -> list[str]:
        children: list[str] = []
        for page in self._tag_list_pages(repository):
            children.extend(page.child)
        return children

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        paths: list[str] = []
        with self._wrap_errors("listing repositories for", repository):
            if not options.recursive:
                paths = [
                    f"{repository}/{c}" for c in self._children(repository)
                ]
            else:
                # Breadth-first walk; each level only knows its own children
                queue = deque([repository])
                while queue:
                    current = queue.popleft()
                    for child in self._children(current):
                        path = f"{current}/{child}"
                        paths.append(path)
                        queue.append(path)
        return RepositoryList(
            name=repository,
            repositories=relative_repositories(
                repository, paths, recursive=options.recursive
            ),
        )

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        with self._wrap_errors("listing manifests for", repository):
            manifests = aggregate_manifests(
                self._to_manifests(page)
                for page in self._tag_list_pages(repository)
            )
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _to_manifests(self, page: _GcrTagList) -> list[Manifest]:
        return [
            Manifest(
                digest=digest,
                media_type=info.media_type or None,
                tags=frozenset(info.tag),
                created=info.time_created_ms,
                uploaded=info.time_uploaded_ms,
            )
            for digest, info in page.manifest.items()
        ]
