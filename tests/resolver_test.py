"""Tests for choosing a registry client for a host."""

from collections.abc import Callable
from typing import ClassVar

import httpx
import pytest

from registry_survey.exceptions import InvalidReferenceError, NotSupportedError
from registry_survey.models.manifest import ManifestList
from registry_survey.models.options import ListOptions
from registry_survey.models.registry_category import RegistryCategory
from registry_survey.models.repository import RepositoryList
from registry_survey.services.resolver import (
    ClientResolver,
    default_client_classes,
)
from registry_survey.storage.dockerhub import DockerHubClient
from registry_survey.storage.gar import GARClient
from registry_survey.storage.gcr import GcrClient
from registry_survey.storage.generic import GenericRegistryClient
from registry_survey.storage.ghcr import GhcrClient
from registry_survey.storage.harbor import HarborClient
from registry_survey.storage.registry import (
    ClientSettings,
    ContainerRegistryClient,
)

type SettingsMaker = Callable[..., ClientSettings]


class HarborOnlyAt:
    """Backend where only one host answers the Harbor check."""

    def __init__(self, harbor_host: str) -> None:
        self.harbor_host = harbor_host
        self.checked: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v2.0/systeminfo":
            self.checked.append(request.url.host)
            if request.url.host == self.harbor_host:
                return httpx.Response(200, json={"harbor_version": "v2.10"})
        return httpx.Response(404)


class _StubClient(ContainerRegistryClient):
    category = RegistryCategory.GENERIC
    calls: ClassVar[list[str]] = []

    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        return RepositoryList(name=repository)

    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        return ManifestList()


class ClaimsEverything(_StubClient):
    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        cls.calls.append(f"everything:{host}")
        return True


class ClaimsNothing(_StubClient):
    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        cls.calls.append(f"nothing:{host}")
        return False


class Explodes(_StubClient):
    @classmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        raise RuntimeError("check went wrong")


@pytest.fixture
def resolver(make_settings: SettingsMaker) -> ClientResolver:
    return ClientResolver(make_settings(HarborOnlyAt("harbor.example.com")))


@pytest.mark.parametrize(
    ("host", "client_class"),
    [
        ("us-central1-docker.pkg.dev", GARClient),
        ("europe-north1-docker.pkg.dev", GARClient),
        ("gcr.io", GcrClient),
        ("eu.gcr.io", GcrClient),
        ("registry.k8s.io", GcrClient),
        ("k8s.io", GcrClient),
        ("ghcr.io", GhcrClient),
        ("docker.io", DockerHubClient),
        ("registry-1.docker.io", DockerHubClient),
        ("hub.docker.com", DockerHubClient),
        ("harbor.example.com", HarborClient),
        ("registry.example.com", GenericRegistryClient),
        ("localhost:5000", GenericRegistryClient),
    ],
)
def test_resolve(
    resolver: ClientResolver,
    host: str,
    client_class: type[ContainerRegistryClient],
) -> None:
    client = resolver.resolve(host)
    assert type(client) is client_class
    assert client.host == host


def test_specific_before_generic(
    resolver: ClientResolver, make_settings: SettingsMaker
) -> None:
    """ghcr.io would be accepted by the generic client, but isn't given to
    it.
    """
    settings = make_settings(HarborOnlyAt(""))
    assert GenericRegistryClient.supports("ghcr.io", settings)
    assert isinstance(resolver.resolve("ghcr.io"), GhcrClient)


def test_name_checks_skip_harbor_check(make_settings: SettingsMaker) -> None:
    backend = HarborOnlyAt("harbor.example.com")
    resolver = ClientResolver(make_settings(backend))
    resolver.resolve("ghcr.io")
    resolver.resolve("gcr.io")
    assert backend.checked == []
    resolver.resolve("registry.example.com")
    assert backend.checked == ["registry.example.com"]


def test_harbor_check_failure(make_settings: SettingsMaker) -> None:
    """A check that can't reach the host means "not Harbor"."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    resolver = ClientResolver(make_settings(handler))
    client = resolver.resolve("registry.example.com")
    assert isinstance(client, GenericRegistryClient)


def test_first_match_wins(make_settings: SettingsMaker) -> None:
    _StubClient.calls.clear()
    resolver = ClientResolver(
        make_settings(HarborOnlyAt("")),
        [ClaimsNothing, ClaimsEverything, ClaimsNothing],
    )
    client = resolver.resolve("registry.example.com")
    assert isinstance(client, ClaimsEverything)
    assert _StubClient.calls == [
        "nothing:registry.example.com",
        "everything:registry.example.com",
    ]


def test_check_exception_is_no(make_settings: SettingsMaker) -> None:
    resolver = ClientResolver(make_settings(HarborOnlyAt("")), [Explodes])
    assert isinstance(
        resolver.resolve("registry.example.com"), GenericRegistryClient
    )


def test_not_supported(make_settings: SettingsMaker) -> None:
    resolver = ClientResolver(
        make_settings(HarborOnlyAt("")),
        [Explodes],
        fallback=ClaimsNothing,
    )
    with pytest.raises(NotSupportedError):
        resolver.resolve("registry.example.com")


def test_invalid_host(resolver: ClientResolver) -> None:
    with pytest.raises(InvalidReferenceError):
        resolver.resolve("not a host")


def test_default_order() -> None:
    classes = default_client_classes()
    assert classes[-1] is HarborClient
    assert GenericRegistryClient not in classes
    assert classes is not default_client_classes()
