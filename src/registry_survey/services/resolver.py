"""Choice of a registry client for a registry host."""

from collections.abc import Sequence

import structlog

from ..exceptions import NotSupportedError
from ..models.reference import validate_host
from ..storage.dockerhub import DockerHubClient
from ..storage.gar import GARClient
from ..storage.gcr import GcrClient
from ..storage.generic import GenericRegistryClient
from ..storage.ghcr import GhcrClient
from ..storage.harbor import HarborClient
from ..storage.registry import ClientSettings, ContainerRegistryClient

type ClientClass = type[ContainerRegistryClient]


def default_client_classes() -> list[ClientClass]:
    """Return the registry-specific clients, in the order they are tried.

    Cheap name-based checks come first; Harbor, which needs a request to
    the host, comes last.
    """
    return [GARClient, GcrClient, GhcrClient, DockerHubClient, HarborClient]


class ClientResolver:
    """Pick the client that handles a registry host.

    Each client class in turn is asked whether it supports the host; the
    first to say yes is used.  If none does, the generic client is used.

    Parameters
    ----------
    settings
        Settings passed to every client built.
    client_classes
        Client classes to try, in order.  Defaults to
        `default_client_classes`.
    fallback
        Client class used when none of ``client_classes`` claims the host.
    """

    def __init__(
        self,
        settings: ClientSettings,
        client_classes: Sequence[ClientClass] | None = None,
        fallback: ClientClass = GenericRegistryClient,
    ) -> None:
        self._settings = settings
        self._client_classes = (
            default_client_classes()
            if client_classes is None
            else list(client_classes)
        )
        self._fallback = fallback
        self._logger = structlog.get_logger(__name__)

    def resolve(self, host: str) -> ContainerRegistryClient:
        """Return a client for ``host``.

        Raises
        ------
        InvalidReferenceError
            If ``host`` is not a valid registry host.
        NotSupportedError
            If not even the fallback client accepts the host.
        """
        validate_host(host)
        for cls in self._client_classes:
            if self._accepts(cls, host):
                self._logger.debug(
                    f"Using {cls.__name__} for {host}",
                    category=cls.category.value,
                )
                return cls(host, self._settings)
        if self._accepts(self._fallback, host):
            self._logger.debug(f"Using {self._fallback.__name__} for {host}")
            return self._fallback(host, self._settings)
        raise NotSupportedError(f"No registry client supports {host}")

    def _accepts(self, cls: ClientClass, host: str) -> bool:
        try:
            return cls.supports(host, self._settings)
        except Exception as exc:
            # A check that can't tell says no
            self._logger.debug(
                f"{cls.__name__} check for {host} failed: {exc}"
            )
            return False
