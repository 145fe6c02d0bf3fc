"""Storage client for Harbor registries.

Harbor has no recognizable host name, so it is identified by asking the
host for its ``systeminfo``.  Everything is then listed through the
Harbor v2.0 REST API rather than the registry API.
"""

import datetime
import re
from collections.abc import Iterator
from typing import Annotated, Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, BeforeValidator

from ..exceptions import NotFoundError
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.reference import registry_scheme
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

_EXCESS_DIGITS = re.compile(r"(\.\d{6})\d+")


def _harbor_time(inp: Any) -> Any:
    # Harbor reports nanoseconds; a datetime only holds microseconds.
    inp = zero_time_is_none(inp)
    if isinstance(inp, str):
        return _EXCESS_DIGITS.sub(r"\1", inp)
    return inp


type HarborTime = Annotated[
    datetime.datetime | None, BeforeValidator(_harbor_time)
]


class _HarborRepository(BaseModel):
    name: str


class _HarborTag(BaseModel):
    name: str


class _ExtraAttrs(BaseModel):
    created: HarborTime = None


class _HarborArtifact(BaseModel):
    digest: str = ""
    manifest_media_type: str = ""
    tags: Annotated[list[_HarborTag], BeforeValidator(null_is_empty)] = []
    push_time: HarborTime = None
    extra_attrs: Annotated[
        _ExtraAttrs, BeforeValidator(lambda x: x or {})
    ] = _ExtraAttrs()


class HarborClient(ContainerRegistryClient):
    """Client for a Harbor instance.

    A reference is ``<project>/<repository>``, where the repository may
    contain slashes.  Projects are namespaces only.
    """

    category = RegistryCategory.HARBOR

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        url = f"{registry_scheme(host)}://{host}/api/v2.0/systeminfo"
        logger = structlog.get_logger(__name__).bind(
            category=cls.category.value, host=host
        )
        try:
            with httpx.Client(
                transport=settings.transport, timeout=settings.timeout
            ) as client:
                r = client.get(url)
        except httpx.HTTPError as exc:
            logger.debug(f"Harbor check failed: {exc}")
            return False
        logger.debug(f"Harbor check returned {r.status_code}")
        return r.is_success

    def __init__(self, host: str, settings: ClientSettings) -> None:
        super().__init__(host, settings)
        self._url = f"{registry_scheme(host)}://{host}/api/v2.0"
        self._http_client = self._new_http_client(
            KeychainAuth(settings.keychain)
        )

    def _pages(
        self, url: str, what: str, **params: Any
    ) -> Iterator[list[Any]]:
        """Walk numbered pages until ``X-Total-Count`` items or an empty
        page have been seen.
        """
        page = 1
        seen = 0
        while True:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {what}: "
                f"{(page - 1) * PAGE_SIZE + 1}-{page * PAGE_SIZE}"
            )
            r = self._http_client.get(
                url, params={**params, "page": page, "page_size": PAGE_SIZE}
            )
            if r.status_code == 404:
                raise NotFoundError(f"{self.host}/{what} not found")
            r.raise_for_status()
            items = r.json() or []
            if not items:
                break
            yield items
            seen += len(items)
            total = r.headers.get("X-Total-Count")
            if total is not None and seen >= int(total):
                break
            page += 1

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        project = repository.split("/")[0]
        paths: list[str] = []
        with self._wrap_errors("listing repositories for", repository):
            url = f"{self._url}/projects/{project}/repositories"
            for page in self._pages(url, project):
                paths.extend(
                    _HarborRepository.model_validate(x).name for x in page
                )
        prefix = f"{repository}/"
        if repository != project and not any(
            x == repository or x.startswith(prefix) for x in paths
        ):
            raise NotFoundError(f"{self.host}/{repository} not found")
        return RepositoryList(
            name=repository,
            repositories=relative_repositories(
                repository, paths, recursive=options.recursive
            ),
        )

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        project, _, repo = repository.partition("/")
        if not repo:
            return ManifestList()
        # Harbor wants slashes in repository names escaped twice
        escaped = quote(quote(repo, safe=""), safe="")
        url = (
            f"{self._url}/projects/{project}/repositories/{escaped}"
            "/artifacts"
        )
        with self._wrap_errors("listing manifests for", repository):
            manifests = aggregate_manifests(
                [self._to_manifest(x) for x in page]
                for page in self._pages(url, repository, with_tag="true")
            )
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _to_manifest(self, obj: dict[str, Any]) -> Manifest:
        artifact = _HarborArtifact.model_validate(obj)
        return Manifest(
            digest=artifact.digest,
            media_type=artifact.manifest_media_type or None,
            tags=frozenset(t.name for t in artifact.tags),
            created=artifact.extra_attrs.created,
            uploaded=artifact.push_time,
        )
