"""Storage client for Google Artifact Registry."""

import datetime
from collections.abc import Iterator
from contextlib import contextmanager
from urllib.parse import unquote

from google.api_core.exceptions import GoogleAPICallError
from google.api_core.exceptions import NotFound as GoogleNotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud.artifactregistry_v1 import (
    ArtifactRegistryClient,
    ListDockerImagesRequest,
    ListPackagesRequest,
    ListRepositoriesRequest,
    Repository,
)
from google.cloud.artifactregistry_v1.types import DockerImage

from ..exceptions import BackendError, NotFoundError
from ..models.manifest import Manifest, ManifestList, aggregate_manifests
from ..models.options import ListOptions
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList, relative_repositories
from .registry import PAGE_SIZE, ClientSettings, ContainerRegistryClient

GAR_SUFFIX = "-docker.pkg.dev"


def _proto_time(ut: datetime.datetime | None) -> datetime.datetime | None:
    # Timestamps come back as DatetimeWithNanoseconds, or None if unset.
    if ut is None:
        return None
    micros = int(getattr(ut, "nanosecond", ut.microsecond * 1000) / 1000)
    return datetime.datetime(
        year=ut.year,
        month=ut.month,
        day=ut.day,
        hour=ut.hour,
        minute=ut.minute,
        second=ut.second,
        microsecond=micros,
        tzinfo=datetime.UTC,
    )


class GARClient(ContainerRegistryClient):
    """Client for Google Artifact Registry.

    References look like ``<project>/<repository>/<package>``, where the
    package name may itself contain slashes.  Only the package level holds
    images; projects and repositories are namespaces.

    Credentials come from Google application default credentials (in
    production, Workload Identity), not from the keychain.
    """

    category = RegistryCategory.GOOGLE

    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        return host.endswith(GAR_SUFFIX) and len(host) > len(GAR_SUFFIX)

    def __init__(
        self,
        host: str,
        settings: ClientSettings,
        *,
        client: ArtifactRegistryClient | None = None,
    ) -> None:
        super().__init__(host, settings)
        self._location = host[: -len(GAR_SUFFIX)]
        self._client = client
        self._owns_client = False

    @property
    def _gar(self) -> ArtifactRegistryClient:
        # Created on first use, since it goes looking for credentials.
        if self._client is None:
            self._client = ArtifactRegistryClient()
            self._owns_client = True
        return self._client

    def close(self) -> None:
        """Close the API client, unless it was passed in."""
        super().close()
        if self._owns_client and self._client is not None:
            self._client.transport.close()
            self._client = None
            self._owns_client = False

    @contextmanager
    def _wrap_errors(self, operation: str, repository: str) -> Iterator[None]:
        try:
            with super()._wrap_errors(operation, repository):
                yield
        except GoogleNotFound as exc:
            raise NotFoundError(
                f"{self.host}/{repository} not found: {exc}"
            ) from exc
        except (GoogleAPICallError, GoogleAuthError) as exc:
            raise BackendError(
                f"{operation} {self.host}/{repository}: {exc}"
            ) from exc

    def _parent(self, project: str) -> str:
        return f"projects/{project}/locations/{self._location}"

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        options = options or ListOptions()
        parts = repository.split("/")
        project = parts[0]
        with self._wrap_errors("listing repositories for", repository):
            if len(parts) == 1:
                repos = list(self._repository_ids(project))
                paths = [f"{project}/{r}" for r in repos]
                if options.recursive:
                    for repo_id in repos:
                        paths.extend(
                            f"{project}/{repo_id}/{p}"
                            for p in self._package_names(project, repo_id)
                        )
            else:
                repo_id = parts[1]
                paths = [
                    f"{project}/{repo_id}/{p}"
                    for p in self._package_names(project, repo_id)
                ]
        return RepositoryList(
            name=repository,
            repositories=relative_repositories(
                repository, paths, recursive=options.recursive
            ),
        )

    def _repository_ids(self, project: str) -> Iterator[str]:
        request = ListRepositoriesRequest(
            parent=self._parent(project), page_size=PAGE_SIZE
        )
        count = 0
        while True:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {project}: repositories "
                f"{count*PAGE_SIZE + 1}-{(count+1) * PAGE_SIZE}"
            )
            resp = self._gar.list_repositories(
                request=request, timeout=self._settings.timeout
            )
            for repo in resp.repositories:
                if repo.format_ == Repository.Format.DOCKER:
                    yield repo.name.split("/")[-1]
            if not resp.next_page_token:
                break
            request = ListRepositoriesRequest(
                parent=self._parent(project),
                page_token=resp.next_page_token,
                page_size=PAGE_SIZE,
            )
            count += 1

    def _package_names(self, project: str, repo_id: str) -> Iterator[str]:
        parent = f"{self._parent(project)}/repositories/{repo_id}"
        request = ListPackagesRequest(parent=parent, page_size=PAGE_SIZE)
        count = 0
        while True:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {project}/{repo_id}: packages "
                f"{count*PAGE_SIZE + 1}-{(count+1) * PAGE_SIZE}"
            )
            resp = self._gar.list_packages(
                request=request, timeout=self._settings.timeout
            )
            for pkg in resp.packages:
                # Nested package names are URL-encoded ("a%2Fb")
                yield unquote(pkg.name.split("/")[-1])
            if not resp.next_page_token:
                break
            request = ListPackagesRequest(
                parent=parent,
                page_token=resp.next_page_token,
                page_size=PAGE_SIZE,
            )
            count += 1

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        parts = repository.split("/", 2)
        if len(parts) < 3:
            # Projects and repositories don't hold images themselves.
            return ManifestList()
        project, repo_id, package = parts
        with self._wrap_errors("listing manifests for", repository):
            manifests = aggregate_manifests(
                self._image_pages(project, repo_id, package)
            )
        self._logger.debug(
            f"Found {len(manifests.manifests)} manifests in {repository}"
        )
        return manifests

    def _image_pages(
        self, project: str, repo_id: str, package: str
    ) -> Iterator[list[Manifest]]:
        parent = f"{self._parent(project)}/repositories/{repo_id}"
        request = ListDockerImagesRequest(parent=parent, page_size=PAGE_SIZE)
        count = 0
        while True:
            self._check_cancelled()
            self._logger.debug(
                f"Requesting {project}/{repo_id}: images "
                f"{count*PAGE_SIZE + 1}-{(count+1) * PAGE_SIZE}"
            )
            resp = self._gar.list_docker_images(
                request=request, timeout=self._settings.timeout
            )
            yield self._gar_to_manifests(resp.docker_images, package)
            if not resp.next_page_token:
                break
            request = ListDockerImagesRequest(
                parent=parent,
                page_token=resp.next_page_token,
                page_size=PAGE_SIZE,
            )
            count += 1

    def _gar_to_manifests(
        self, images: list[DockerImage], package: str
    ) -> list[Manifest]:
        ret: list[Manifest] = []
        for img in images:
            repo_path, _, digest = img.name.partition("@")
            image_package = unquote(repo_path.split("/")[-1])
            if image_package != package:
                # Images of every package in the repository are listed
                continue
            ret.append(
                Manifest(
                    digest=digest,
                    media_type=img.media_type or None,
                    tags=frozenset(img.tags),
                    created=_proto_time(img.build_time),
                    uploaded=_proto_time(img.upload_time),
                    updated=_proto_time(img.update_time),
                )
            )
        return ret
