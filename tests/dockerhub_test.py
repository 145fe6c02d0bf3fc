"""Tests for the Docker Hub client."""

import datetime
import json
import threading
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from registry_survey.exceptions import (
    BackendError,
    NotFoundError,
    OperationCancelledError,
)
from registry_survey.keychain import Keychain
from registry_survey.models.options import ListOptions
from registry_survey.storage.dockerhub import DockerHubClient
from registry_survey.storage.registry import ClientSettings

type SettingsMaker = Callable[..., ClientSettings]

HUB = "https://hub.docker.com/v2"
REPOSITORIES = [
    [{"name": "sciplat-lab", "namespace": "lsstsqre"}],
    [{"name": "nublado", "namespace": "lsstsqre"}],
]


class FakeHub:
    def __init__(self, tag_pages: list[dict[str, Any]]) -> None:
        self.tag_pages = tag_pages
        self.requests: list[httpx.Request] = []
        self.login_reply: dict[str, Any] = {"token": "jwt"}
        self.failing_page: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        page = int(request.url.params.get("page", "1"))
        if path == "/v2/users/login":
            body = json.loads(request.content)
            if body != {"username": "fbooth", "password": "hunter2"}:
                return httpx.Response(401)
            return httpx.Response(200, json=self.login_reply)
        if path == "/v2/namespaces/lsstsqre/repositories":
            next_page = None
            if page < len(REPOSITORIES):
                next_page = f"{HUB}/namespaces/lsstsqre/repositories?page=2"
            return httpx.Response(
                200,
                json={"next": next_page, "results": REPOSITORIES[page - 1]},
            )
        if path == "/v2/namespaces/lsstsqre/repositories/sciplat-lab":
            return httpx.Response(200, json={"name": "sciplat-lab"})
        if path == "/v2/namespaces/lsstsqre/repositories/sciplat-lab/tags":
            if page == self.failing_page:
                return httpx.Response(500, text="Internal Server Error")
            return httpx.Response(200, json=self.tag_pages[page - 1])
        return httpx.Response(404, json={"message": "object not found"})


@pytest.fixture
def hub(load_json: Callable[[str], Any]) -> FakeHub:
    return FakeHub(
        [load_json("dockerhub.tags.json"), load_json("dockerhub.tags.2.json")]
    )


@pytest.fixture
def hub_client(
    hub: FakeHub, make_settings: SettingsMaker, keychain: Keychain
) -> DockerHubClient:
    return DockerHubClient("docker.io", make_settings(hub, keychain))


@pytest.mark.parametrize(
    ("host", "supported"),
    [
        ("docker.io", True),
        ("index.docker.io", True),
        ("registry-1.docker.io", True),
        ("hub.docker.com", True),
        ("docker.com", True),
        ("notdocker.io", False),
        ("docker.io.example.com", False),
    ],
)
def test_supports(
    make_settings: SettingsMaker, host: str, supported: bool
) -> None:
    settings = make_settings(lambda r: httpx.Response(404))
    assert DockerHubClient.supports(host, settings) is supported


def test_list_repositories(hub_client: DockerHubClient) -> None:
    repos = hub_client.list_repositories("lsstsqre")
    assert sorted(repos.repositories) == ["nublado", "sciplat-lab"]
    recursive = hub_client.list_repositories(
        "lsstsqre", ListOptions(recursive=True)
    )
    assert sorted(recursive.repositories) == ["nublado", "sciplat-lab"]


def test_list_repositories_repository(hub_client: DockerHubClient) -> None:
    """A repository exists, but has no children."""
    repos = hub_client.list_repositories("lsstsqre/sciplat-lab")
    assert repos.repositories == []
    with pytest.raises(NotFoundError):
        hub_client.list_repositories("lsstsqre/nonexistent")


def test_list_repositories_too_deep(
    hub_client: DockerHubClient, hub: FakeHub
) -> None:
    with pytest.raises(NotFoundError):
        hub_client.list_repositories("lsstsqre/sciplat-lab/extra")
    assert hub.requests == []


def test_login(hub_client: DockerHubClient, hub: FakeHub) -> None:
    """Username and password are exchanged for a JWT, once."""
    hub_client.list_repositories("lsstsqre")
    paths = [r.url.path for r in hub.requests]
    assert paths.count("/v2/users/login") == 1
    for request in hub.requests[1:]:
        assert request.headers["Authorization"] == "Bearer jwt"


def test_anonymous(hub: FakeHub, make_settings: SettingsMaker) -> None:
    client = DockerHubClient("docker.io", make_settings(hub))
    client.list_repositories("lsstsqre")
    assert all("Authorization" not in r.headers for r in hub.requests)
    assert "/v2/users/login" not in [r.url.path for r in hub.requests]


def test_list_manifests(hub_client: DockerHubClient) -> None:
    result = hub_client.list_manifests("lsstsqre/sciplat-lab")
    manifests = {m.digest: m for m in result.manifests}
    # The untouched tag has no digest and is dropped
    assert set(manifests) == {
        "sha256:indexcccc",
        "sha256:amd64aaaa",
        "sha256:arm64bbbb",
    }

    index = manifests["sha256:indexcccc"]
    assert index.tags == {"w_2024_18", "recommended"}
    assert index.media_type == "application/vnd.oci.image.index.v1+json"
    assert index.updated == datetime.datetime(
        2024, 5, 2, 0, 0, 1, tzinfo=datetime.UTC
    )

    amd64 = manifests["sha256:amd64aaaa"]
    assert amd64.tags == frozenset()
    assert amd64.updated == datetime.datetime(
        2024, 5, 2, tzinfo=datetime.UTC
    )
    assert amd64.uploaded is None

    # The year-1 zero time means "never"
    assert manifests["sha256:arm64bbbb"].updated is None


def test_list_manifests_namespace(
    hub_client: DockerHubClient, hub: FakeHub
) -> None:
    assert hub_client.list_manifests("lsstsqre").manifests == []
    assert hub.requests == []


def test_list_manifests_not_found(hub_client: DockerHubClient) -> None:
    with pytest.raises(NotFoundError):
        hub_client.list_manifests("lsstsqre/nonexistent")
    with pytest.raises(NotFoundError):
        hub_client.list_manifests("a/b/c")


def test_cancelled(hub: FakeHub, make_settings: SettingsMaker) -> None:
    cancel = threading.Event()
    cancel.set()
    client = DockerHubClient("docker.io", make_settings(hub, cancel=cancel))
    with pytest.raises(OperationCancelledError):
        client.list_manifests("lsstsqre/sciplat-lab")
    assert hub.requests == []


def test_list_manifests_same_digest(
    hub: FakeHub, hub_client: DockerHubClient
) -> None:
    """A single-platform tag and its image share a digest."""
    hub.tag_pages = [
        {
            "next": None,
            "results": [
                {
                    "name": "v1",
                    "digest": "sha256:single",
                    "last_updated": "2024-05-01T00:00:00Z",
                    "images": [
                        {
                            "digest": "sha256:single",
                            "last_pushed": "2024-05-03T00:00:00Z",
                        }
                    ],
                }
            ],
        }
    ]
    [manifest] = hub_client.list_manifests("lsstsqre/sciplat-lab").manifests
    assert manifest.tags == {"v1"}
    assert manifest.updated == datetime.datetime(
        2024, 5, 3, tzinfo=datetime.UTC
    )
    assert manifest.uploaded is None


def test_list_manifests_fails_midway(
    hub: FakeHub, hub_client: DockerHubClient
) -> None:
    hub.failing_page = 2
    with pytest.raises(BackendError, match="sciplat-lab"):
        hub_client.list_manifests("lsstsqre/sciplat-lab")
    tag_requests = [r for r in hub.requests if r.url.path.endswith("/tags")]
    assert len(tag_requests) == 2


def test_login_without_token(
    hub: FakeHub, hub_client: DockerHubClient
) -> None:
    hub.login_reply = {"detail": "Two-factor authentication required"}
    with pytest.raises(BackendError) as exc:
        hub_client.list_repositories("lsstsqre")
    assert "token" in str(exc.value)
