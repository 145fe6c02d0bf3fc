"""Minimalist function set of the Docker Hub API.

We must be able to list the repositories in a namespace, and the image
digests, tags and dates in a repository.  Docker Hub budgets API requests
per client, so every request spends a token from a shared bucket first.
"""

import datetime
from collections.abc import Generator, Iterator
from typing import Annotated, Any

import httpx
from pydantic import BaseModel, BeforeValidator

from ..exceptions import NotFoundError
from ..keychain import Keychain
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList, relative_repositories
from ..transport import KeychainAuth, RateLimitedTransport, TokenBucket
from .registry import (
    PAGE_SIZE,
    ClientSettings,
    ContainerRegistryClient,
    null_is_empty,
    zero_time_is_none,
)

HUB_URL = "https://hub.docker.com"

type HubTime = Annotated[
    datetime.datetime | None, BeforeValidator(zero_time_is_none)
]


class DockerHubAuth(KeychainAuth):
    """Authorization for the Docker Hub API.

    Tokens from the keychain are sent as they are.  A username and
    password are first exchanged for a JWT at the login endpoint, once per
    client.
    """

    requires_response_body = True

    def __init__(self, keychain: Keychain, login_url: str) -> None:
        super().__init__(keychain, resource="index.docker.io")
        self._login_url = login_url
        self._jwt: str | None = None

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        auth = self.credentials(request)
        if auth.registry_token or auth.identity_token or not auth.password:
            self.authorize(request, auth)
            yield request
            return
        if self._jwt is None:
            login = yield httpx.Request(
                "POST",
                self._login_url,
                json={
                    "username": auth.username,
                    "password": auth.password.get_secret_value(),
                },
            )
            login.raise_for_status()  # Maybe we'll do 2fa sometime?
            self._jwt = _HubLogin.model_validate_json(login.content).token
        request.headers["Authorization"] = f"Bearer {self._jwt}"
        yield request


class _HubLogin(BaseModel):
    token: str


class _HubRepository(BaseModel):
    name: str


class _HubImage(BaseModel):
    digest: str = ""
    last_pushed: HubTime = None


class _HubTag(BaseModel):
    name: str
    digest: str = ""
    media_type: str = ""
    last_updated: HubTime = None
    images: Annotated[list[_HubImage], BeforeValidator(null_is_empty)] = []


class _HubPage(BaseModel):
    next: str | None = None
    results: Annotated[
        list[dict[str, Any]], BeforeValidator(null_is_empty)
    ] = []


class DockerHubClient(ContainerRegistryClient):
    """Client for talking to docker.io / hub.docker.com.

    References are ``<namespace>`` or ``<namespace>/<repository>``; Docker
    Hub has no deeper hierarchy.
    """

    category = RegistryCategory.DOCKERHUB

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        host = host.split(":")[0]
        return any(
            host == domain or host.endswith(f".{domain}")
            for domain in ("docker.io", "docker.com")
        )

    def __init__(self, host: str, settings: ClientSettings) -> None:
        super().__init__(host, settings)
        self._url = HUB_URL
        limit = settings.rate_limit
        transport = RateLimitedTransport(
            settings.transport or httpx.HTTPTransport(),
            TokenBucket(limit.per_second, limit.burst),
            cancel=settings.cancel,
        )
        self._http_client = self._new_http_client(
            DockerHubAuth(settings.keychain, f"{self._url}/v2/users/login"),
            transport=transport,
        )

    def _pages(self, url: str, what: str) -> Iterator[_HubPage]:
        next_page: str | None = url
        params: dict[str, int] | None = {"page_size": PAGE_SIZE}
        count = 0
        while next_page:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {what}: "
                f"{count*PAGE_SIZE + 1}-{(count+1) * PAGE_SIZE}"
            )
            r = self._http_client.get(next_page, params=params)
            if r.status_code == 404:
                raise NotFoundError(f"{self.host}/{what} not found")
            r.raise_for_status()
            page = _HubPage.model_validate(r.json())
            yield page
            next_page = page.next
            params = None
            count += 1

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        parts = repository.split("/")
        if len(parts) > 2:
            raise NotFoundError(
                f"{self.host}/{repository}: Docker Hub repositories are "
                "only <namespace>/<repository>"
            )
        namespace = parts[0]
        url = f"{self._url}/v2/namespaces/{namespace}/repositories"
        paths: list[str] = []
        with self._wrap_errors("listing repositories for", repository):
            if len(parts) == 2:
                # A repository exists, but never has children
                self._check_cancelled()
                r = self._http_client.get(f"{url}/{parts[1]}")
                if r.status_code == 404:
                    raise NotFoundError(f"{self.host}/{repository} not found")
                r.raise_for_status()
            else:
                for page in self._pages(url, namespace):
                    paths.extend(
                        f"{namespace}/{_HubRepository.model_validate(x).name}"
                        for x in page.results
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
        parts = repository.split("/")
        if len(parts) > 2:
            raise NotFoundError(f"{self.host}/{repository} not found")
        if len(parts) == 1:
            # A namespace holds no images itself
            return ManifestList()
        namespace, repo = parts
        url = (
            f"{self._url}/v2/namespaces/{namespace}"
            f"/repositories/{repo}/tags"
        )
        with self._wrap_errors("listing manifests for", repository):
            manifests = aggregate_manifests(
                self._to_manifests(page.results)
                for page in self._pages(url, repository)
            )
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _to_manifests(self, results: list[dict[str, Any]]) -> list[Manifest]:
        """Turn a page of tags into manifest records.

        Each tag yields a record for the digest it points to, and each
        platform image under it a record for its own digest.  Both a
        tag's ``last_updated`` and an image's ``last_pushed`` count as
        updates; the later one wins when digests coincide.
        """
        ret: list[Manifest] = []
        for res in results:
            tag = _HubTag.model_validate(res)
            ret.append(
                Manifest(
                    digest=tag.digest,
                    media_type=tag.media_type or None,
                    tags=frozenset({tag.name}),
                    updated=tag.last_updated,
                )
            )
            ret.extend(
                Manifest(digest=img.digest, updated=img.last_pushed)
                for img in tag.images
            )
        return ret
