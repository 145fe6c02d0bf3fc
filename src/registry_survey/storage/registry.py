"""Abstract superclass for container registry clients."""

import datetime
import json
import threading
from abc import abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, ClassVar, Self

import httpx
import structlog
from pydantic import ValidationError

from ..config import RateLimitConfig
from ..exceptions import BackendError, OperationCancelledError
from ..keychain import Keychain
from ..models.manifest import ManifestList
from ..models.options import ListOptions
from ..models.registry_category import RegistryCategory
from ..models.repository import RepositoryList

PAGE_SIZE = 100


def zero_time_is_none(inp: Any) -> Any:
    """Treat an empty string or the year-1 zero time as no time at all."""
    if inp is None or inp == "":
        return None
    if isinstance(inp, str) and inp.startswith("0001-01-01T00:00:00"):
        return None
    if isinstance(inp, datetime.datetime) and inp.year == 1:
        return None
    return inp


def null_is_empty(inp: Any) -> Any:
    return [] if inp is None else inp


@dataclass
class ClientSettings:
    """Everything a registry client needs besides its host."""

    keychain: Keychain
    timeout: float = 30.0
    transport: httpx.BaseTransport | None = None
    cancel: threading.Event | None = None
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


class ContainerRegistryClient:
    """Collection of methods we expect any registry client to provide.

    Note that these are synchronous.  That's on purpose.  Each page of
    results is requested only after the previous one has been processed,
    and registries generally rate-limit requests in any event, so there is
    little to be gained from fanning out.

    Each subclass knows how to decide whether it handles a given registry
    host (`supports`), and how to turn its backend's idea of repositories
    and images into `RepositoryList` and `ManifestList`.  A list operation
    either returns a complete result or raises; partial results are never
    returned.
    """

    category: ClassVar[RegistryCategory]

    @classmethod
    @abstractmethod
    def supports(cls, host: str, settings: ClientSettings) -> bool:
        """Report whether this client handles ``host``.

        Must not raise: failure to find out means "no".
        """
        ...

    @abstractmethod
    def list_repositories(
        self, repository: str, options: ListOptions | None = None
    ) -> RepositoryList:
        """List the child repositories of a repository."""
        ...

    @abstractmethod
    def list_manifests(
        self, repository: str, options: ListOptions | None = None
    ) -> ManifestList:
        """List the manifests in a repository."""
        ...

    def __init__(self, host: str, settings: ClientSettings) -> None:
        self.host = host
        self._settings = settings
        self._logger = structlog.get_logger(__name__).bind(
            category=self.category.value, host=host
        )
        self._http_clients: list[httpx.Client] = []

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the connections held by this client."""
        for http_client in self._http_clients:
            http_client.close()

    def _new_http_client(
        self,
        auth: httpx.Auth | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Client:
        http_client = httpx.Client(
            auth=auth,
            transport=transport or self._settings.transport,
            timeout=self._settings.timeout,
            headers=headers,
            follow_redirects=True,
        )
        self._http_clients.append(http_client)
        return http_client

    def _check_cancelled(self) -> None:
        cancel = self._settings.cancel
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(f"Listing {self.host} cancelled")

    @contextmanager
    def _wrap_errors(self, operation: str, repository: str) -> Iterator[None]:
        """Convert backend failures into `BackendError` with context.

        `NotFoundError` and `OperationCancelledError` pass through as is.
        """
        try:
            yield
        except (httpx.HTTPError, ValidationError, json.JSONDecodeError) as exc:
            raise BackendError(
                f"{operation} {self.host}/{repository}: {exc}"
            ) from exc

    @staticmethod
    def _next_link(response: httpx.Response) -> str | None:
        """Return the absolute URL of the ``rel="next"`` Link, if any."""
        link = response.links.get("next")
        if not link or not link.get("url"):
            return None
        return str(response.url.join(link["url"]))
