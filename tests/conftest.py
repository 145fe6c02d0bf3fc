"""Test fixtures for registry survey."""

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

import httpx
import pytest
import structlog
import yaml
from pydantic import SecretStr

from registry_survey.config import RegistryAuth
from registry_survey.keychain import ConfigKeychain, Keychain
from registry_survey.storage.registry import ClientSettings

type Handler = Callable[[httpx.Request], httpx.Response]
type SettingsMaker = Callable[..., ClientSettings]


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo global logging configuration done by the CLI under test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def support_dir() -> Path:
    return Path(__file__).parent / "support"


@pytest.fixture
def load_json(support_dir: Path) -> Callable[[str], Any]:
    """Load a canned backend response from the support directory."""

    def _load(name: str) -> Any:
        return json.loads((support_dir / name).read_text())

    return _load


@pytest.fixture
def anonymous_keychain() -> Keychain:
    return ConfigKeychain([])


@pytest.fixture
def keychain() -> Keychain:
    """Keychain with credentials for each kind of registry we test."""
    return ConfigKeychain(
        [
            RegistryAuth(
                realm="ghcr.io",
                username="fbooth",
                password=SecretStr("ghp_token"),
            ),
            RegistryAuth(
                realm="docker.io",
                username="fbooth",
                password=SecretStr("hunter2"),
            ),
            RegistryAuth(
                realm="harbor.example.com",
                username="admin",
                password=SecretStr("Harbor12345"),
            ),
        ]
    )


@pytest.fixture
def make_settings(anonymous_keychain: Keychain) -> SettingsMaker:
    """Build client settings whose HTTP requests all go to ``handler``."""

    def _make(
        handler: Handler, keychain: Keychain | None = None, **kwargs: Any
    ) -> ClientSettings:
        return ClientSettings(
            keychain=keychain or anonymous_keychain,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _make


@pytest.fixture
def test_config(support_dir: Path) -> Iterator[Path]:
    """YAML configuration file, pointed at the support Docker config."""
    with TemporaryDirectory() as td:
        new_config = Path(td) / "config.yaml"
        config = yaml.safe_load((support_dir / "config.yaml").read_text())
        config["dockerConfig"] = str(support_dir / "docker-config.json")
        new_config.write_text(yaml.dump(config))

        yield new_config
