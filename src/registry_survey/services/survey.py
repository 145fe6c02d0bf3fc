"""Survey of the repositories, manifests and tags under a reference."""

from dataclasses import dataclass
from typing import Any

import structlog

from ..models.manifest import Manifest
from ..models.options import ListOptions
from ..models.reference import RegistryReference
from ..storage.registry import ContainerRegistryClient
from .resolver import ClientResolver


@dataclass(frozen=True)
class SurveyedRepository:
    """The manifests found in one repository, sorted by digest."""

    reference: RegistryReference
    manifests: list[Manifest]

    def digest_lines(self) -> list[str]:
        return [f"{self.reference}@{m.digest}" for m in self.manifests]

    def tag_lines(self) -> list[str]:
        return sorted(
            f"{self.reference}:{tag}" for m in self.manifests for tag in m.tags
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": str(self.reference),
            "manifests": [m.to_dict() for m in self.manifests],
        }


class Surveyor:
    """List what a registry holds under a ``<host>/<repository>``
    reference.

    Registry clients return results in whatever order their backend does;
    everything returned from here is sorted.
    """

    def __init__(self, resolver: ClientResolver) -> None:
        self._resolver = resolver
        self._logger = structlog.get_logger(__name__)

    def _client(
        self, reference: str
    ) -> tuple[RegistryReference, ContainerRegistryClient]:
        ref = RegistryReference.parse(reference)
        return ref, self._resolver.resolve(ref.host)

    def repositories(
        self, reference: str, *, recursive: bool = False
    ) -> list[str]:
        """Return the full references of the repositories below
        ``reference``.
        """
        ref, client = self._client(reference)
        with client:
            repo_list = client.list_repositories(
                ref.repository, ListOptions(recursive=recursive)
            )
        return sorted(f"{ref}/{child}" for child in repo_list.repositories)

    def manifests(
        self, reference: str, *, recursive: bool = False
    ) -> list[SurveyedRepository]:
        """Return the manifests in ``reference``, and if ``recursive``, in
        every repository below it as well.
        """
        ref, client = self._client(reference)
        with client:
            return self._survey(ref, client, recursive=recursive)

    def _survey(
        self,
        ref: RegistryReference,
        client: ContainerRegistryClient,
        *,
        recursive: bool,
    ) -> list[SurveyedRepository]:
        repositories = [ref.repository]
        if recursive:
            repo_list = client.list_repositories(
                ref.repository, ListOptions(recursive=True)
            )
            repositories.extend(
                f"{ref.repository}/{child}"
                for child in repo_list.repositories
            )
        ret: list[SurveyedRepository] = []
        for repository in sorted(repositories):
            manifests = client.list_manifests(repository).manifests
            self._logger.debug(
                f"{len(manifests)} manifests in {ref.host}/{repository}"
            )
            ret.append(
                SurveyedRepository(
                    reference=RegistryReference(ref.host, repository),
                    manifests=sorted(manifests, key=lambda m: m.digest),
                )
            )
        return ret
