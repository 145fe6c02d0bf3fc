"""Configuration for surveying container registries."""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Annotated, Any, Self

import yaml
from pydantic import BeforeValidator, Field, SecretStr
from safir.pydantic import CamelCaseModel, HumanTimedelta


def _empty_str_is_none(inp: Any) -> Any:
    if isinstance(inp, str) and inp == "":
        return None
    return inp


class RegistryAuth(CamelCaseModel):
    """Generic authentication item for a container registry.

    When a request is authorized, a registry token is preferred over an
    identity token, which is preferred over username and password.
    """

    realm: Annotated[
        str | None,
        Field(
            title="Realm",
            description=(
                "Realm (generally, hostname) for which authentication "
                "is valid."
            ),
            examples=["docker.io"],
        ),
    ] = None

    username: Annotated[
        str | None,
        Field(
            title="Username",
            description="Username (if any) for authentication.",
            examples=["fbooth"],
        ),
    ] = None

    password: Annotated[
        SecretStr | None,
        BeforeValidator(_empty_str_is_none),
        Field(
            title="Password",
            description="Secret (password or token) for authentication.",
            examples=["hunter2"],
        ),
    ] = None

    identity_token: Annotated[
        SecretStr | None,
        BeforeValidator(_empty_str_is_none),
        Field(
            title="Identity token",
            description=(
                "Refresh token exchanged with the registry's token service "
                "for an access token."
            ),
        ),
    ] = None

    registry_token: Annotated[
        SecretStr | None,
        BeforeValidator(_empty_str_is_none),
        Field(
            title="Registry token",
            description="Bearer token sent directly to the registry.",
        ),
    ] = None

    @property
    def anonymous(self) -> bool:
        """Whether this carries no usable credential at all."""
        return not (
            self.registry_token or self.identity_token or self.password
        )


class RateLimitConfig(CamelCaseModel):
    """Token-bucket parameters for APIs with a request budget."""

    per_second: Annotated[
        float,
        Field(
            title="Per second",
            description="Rate at which request tokens are refilled.",
            gt=0,
        ),
    ] = 1.0

    burst: Annotated[
        int,
        Field(
            title="Burst",
            description="Maximum number of tokens held at once.",
            ge=1,
        ),
    ] = 15


class Config(CamelCaseModel):
    """Configuration for the registry survey."""

    debug: Annotated[
        bool,
        Field(
            title="Debug",
            description="Much more verbose logging in human-readable format.",
        ),
    ] = False

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Timeout",
            description="Timeout for each request to a registry or its API.",
            examples=["30s", "2m"],
        ),
    ] = datetime.timedelta(seconds=30)

    credentials: Annotated[
        list[RegistryAuth],
        Field(
            title="Credentials",
            description=(
                "Explicit registry credentials.  These take precedence over "
                "environment variables and the Docker config file."
            ),
        ),
    ] = []

    docker_config: Annotated[
        Path | None,
        Field(
            title="Docker config",
            description=(
                "Docker client config file to read registry credentials "
                "from.  Set to null to ignore it."
            ),
        ),
    ] = Path.home() / ".docker" / "config.json"

    dockerhub_rate_limit: Annotated[
        RateLimitConfig,
        Field(
            title="Docker Hub rate limit",
            description="Client-side rate limit for the Docker Hub API.",
        ),
    ] = RateLimitConfig()

    @classmethod
    def from_file(cls, path: Path) -> Self:
        return cls.model_validate(yaml.safe_load(path.read_text()) or {})

