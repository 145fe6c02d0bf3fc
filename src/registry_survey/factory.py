"""Component factory."""

from __future__ import annotations

import threading
from collections.abc import Mapping

import httpx
import structlog
from structlog.stdlib import BoundLogger

from .config import Config
from .keychain import (
    ConfigKeychain,
    DockerConfigKeychain,
    EnvironmentKeychain,
    Keychain,
    MultiKeychain,
)
from .services.resolver import ClientResolver
from .services.survey import Surveyor
from .storage.registry import ClientSettings


class Factory:
    """Build survey components.

    Parameters
    ----------
    config
        Survey configuration.
    logger
        Logger to use for messages.
    environ
        Environment to read credentials from, defaulting to the process
        environment.
    transport
        HTTP transport for every client, for testing.
    """

    def __init__(
        self,
        config: Config,
        logger: BoundLogger | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or structlog.get_logger(__name__)
        self._environ = environ
        self._transport = transport

    def create_keychain(self) -> Keychain:
        """Credentials from the config file, then the environment, then the
        Docker config file.
        """
        return MultiKeychain(
            ConfigKeychain(self._config.credentials),
            EnvironmentKeychain(self._environ),
            DockerConfigKeychain(self._config.docker_config),
        )

    def create_settings(
        self, cancel: threading.Event | None = None
    ) -> ClientSettings:
        return ClientSettings(
            keychain=self.create_keychain(),
            timeout=self._config.timeout.total_seconds(),
            transport=self._transport,
            cancel=cancel,
            rate_limit=self._config.dockerhub_rate_limit,
        )

    def create_resolver(
        self, cancel: threading.Event | None = None
    ) -> ClientResolver:
        return ClientResolver(self.create_settings(cancel))

    def create_surveyor(
        self, cancel: threading.Event | None = None
    ) -> Surveyor:
        self._logger.debug("Creating surveyor")
        return Surveyor(self.create_resolver(cancel))
