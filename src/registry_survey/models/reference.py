"""Model for references to repositories inside a registry."""

import ipaddress
import re
from dataclasses import dataclass
from typing import Self

from ..exceptions import InvalidReferenceError

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?"
_HOST_RE = re.compile(
    rf"^(?:{_LABEL}(?:\.{_LABEL})*|\[[0-9A-Fa-f:.]+\])(?::[0-9]{{1,5}})?$"
)


def validate_host(host: str) -> str:
    """Check that a registry host is ``hostname[:port]`` or an IP address
    (bracketed if IPv6) with an optional port.
    """
    if not host or not _HOST_RE.match(host):
        raise InvalidReferenceError(f"Invalid registry host '{host}'")
    return host


def _strip_port(host: str) -> str:
    if host.startswith("["):
        return host[1 : host.index("]")]
    return host.rsplit(":", 1)[0] if ":" in host else host


def registry_scheme(host: str) -> str:
    """Return the URL scheme to use when talking to a registry host.

    Local registries (``localhost``, loopback, and RFC1918 addresses) are
    addressed over plain HTTP; everything else uses HTTPS.
    """
    hostname = _strip_port(host)
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return "http"
    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        return "https"
    if addr.is_loopback or addr.is_private:
        return "http"
    return "https"


@dataclass(frozen=True)
class RegistryReference:
    """A repository path within a registry host.

    The repository path is ``/``-delimited, never empty, and never has a
    trailing slash.
    """

    host: str
    repository: str

    def __str__(self) -> str:
        return f"{self.host}/{self.repository}"

    @property
    def base_url(self) -> str:
        return f"{registry_scheme(self.host)}://{self.host}"

    @classmethod
    def parse(cls, reference: str) -> Self:
        """Parse a reference of the form ``<host>/<repository>``.

        Only the first ``/`` separates the host; the repository may contain
        further segments.  A trailing ``/`` on the repository is dropped.
        """
        host, sep, repository = reference.partition("/")
        repository = repository.rstrip("/")
        if not sep or not host or not repository:
            raise InvalidReferenceError(
                f"Cannot parse '{reference}'; must be strictly of the form "
                "'<host>/<repository>'"
            )
        return cls(host=validate_host(host), repository=repository)
