"""Tests for the Google Container Registry client."""

import datetime
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from registry_survey.exceptions import NotFoundError
from registry_survey.models.options import ListOptions
from registry_survey.storage.gcr import GcrClient
from registry_survey.storage.registry import ClientSettings

type SettingsMaker = Callable[..., ClientSettings]

D1 = "sha256:" + "1" * 64
D2 = "sha256:" + "2" * 64

CHILDREN = {
    "distroless": ["static", "base"],
    "distroless/static": ["builder", "runtime"],
    "distroless/static/builder": [],
    "distroless/static/runtime": [],
    "distroless/base": ["debug"],
    "distroless/base/debug": [],
}


@pytest.fixture
def gcr_client(
    make_settings: SettingsMaker, load_json: Callable[[str], Any]
) -> GcrClient:
    tag_list = load_json("gcr.tags.json")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "gcr.io"
        repository = request.url.path[len("/v2/") : -len("/tags/list")]
        if repository not in CHILDREN:
            return httpx.Response(404, json={"errors": []})
        if repository == "distroless/static":
            return httpx.Response(200, json=tag_list)
        return httpx.Response(
            200,
            json={
                "child": CHILDREN[repository],
                "manifest": {},
                "name": repository,
                "tags": [],
            },
        )

    return GcrClient("gcr.io", make_settings(handler))


def test_supports(make_settings: SettingsMaker) -> None:
    settings = make_settings(lambda r: httpx.Response(404))
    for host in ("gcr.io", "us.gcr.io", "registry.k8s.io", "k8s.io"):
        assert GcrClient.supports(host, settings)
    for host in ("us-docker.pkg.dev", "ghcr.io", "notgcr.io", "k8s.io.evil"):
        assert not GcrClient.supports(host, settings)


def test_list_repositories(gcr_client: GcrClient) -> None:
    repos = gcr_client.list_repositories("distroless")
    assert sorted(repos.repositories) == ["base", "static"]


def test_list_repositories_recursive(gcr_client: GcrClient) -> None:
    repos = gcr_client.list_repositories(
        "distroless", ListOptions(recursive=True)
    )
    assert sorted(repos.repositories) == [
        "base",
        "base/debug",
        "static",
        "static/builder",
        "static/runtime",
    ]


def test_list_manifests(gcr_client: GcrClient) -> None:
    manifests = {
        m.digest: m
        for m in gcr_client.list_manifests("distroless/static").manifests
    }
    assert set(manifests) == {D1, D2}

    first = manifests[D1]
    assert first.tags == {"v1.0.0", "latest"}
    assert first.media_type == (
        "application/vnd.docker.distribution.manifest.v2+json"
    )
    # Reproducible builds claim the epoch, which is still a time
    assert first.created == datetime.datetime(1970, 1, 1, tzinfo=datetime.UTC)
    assert first.uploaded == datetime.datetime(
        2023, 11, 14, 22, 13, 20, tzinfo=datetime.UTC
    )
    assert first.updated is None

    second = manifests[D2]
    assert second.tags == frozenset()
    assert second.uploaded == datetime.datetime(
        2023, 7, 22, 4, 26, 40, 500000, tzinfo=datetime.UTC
    )


def test_list_manifests_not_found(gcr_client: GcrClient) -> None:
    with pytest.raises(NotFoundError):
        gcr_client.list_manifests("nonexistent/repo")
