"""Authenticated and rate-limited HTTP transport for registry clients.

The idea is that the same credentials used to pull from a registry are
used for its provider-specific API as well.  If you can pull from the
registry, you should be able to list things from the API too, without any
extra configuration.
"""

import base64
import re
import threading
import time
from collections.abc import Callable, Generator

import httpx

from .config import RegistryAuth
from .exceptions import OperationCancelledError
from .keychain import Keychain

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def basic_auth_header(username: str | None, password: str) -> str:
    userpass = f"{username or ''}:{password}".encode()
    return f"Basic {base64.b64encode(userpass).decode()}"


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Split a ``WWW-Authenticate`` header into scheme and parameters.

    For example, ``Bearer realm="https://ghcr.io/token",service="ghcr.io"``
    becomes ``("bearer", {"realm": ..., "service": "ghcr.io"})``.
    """
    scheme, _, rest = header.strip().partition(" ")
    params = {k.lower(): v for k, v in _CHALLENGE_PARAM.findall(rest)}
    return scheme.lower(), params


class KeychainAuth(httpx.Auth):
    """Authorize every request with credentials looked up in a keychain.

    Parameters
    ----------
    keychain
        Where to find credentials.
    resource
        Host whose credentials should be used.  If not given, the host of
        each request is used.
    """

    def __init__(
        self, keychain: Keychain, resource: str | None = None
    ) -> None:
        self._keychain = keychain
        self._resource = resource

    def credentials(self, request: httpx.Request) -> RegistryAuth:
        host = self._resource or request.url.netloc.decode()
        return self._keychain.resolve(host)

    def authorize(self, request: httpx.Request, auth: RegistryAuth) -> None:
        """Attach the best available credential to a request.

        A registry token beats an identity token, which beats a password.
        With none of those, the request goes out unauthenticated.
        """
        if auth.registry_token:
            token = auth.registry_token.get_secret_value()
            request.headers["Authorization"] = f"Bearer {token}"
        elif auth.identity_token:
            token = auth.identity_token.get_secret_value()
            request.headers["Authorization"] = f"Bearer {token}"
        elif auth.password:
            request.headers["Authorization"] = basic_auth_header(
                auth.username, auth.password.get_secret_value()
            )

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        self.authorize(request, self.credentials(request))
        yield request


class RegistryChallengeAuth(KeychainAuth):
    """Authorization for the Docker Registry v2 API.

    Registries answer an unauthorized request with a ``401`` and a
    challenge naming a token service.  Exchange the keychain credentials
    there for a bearer token and retry.  Tokens live only as long as this
    object does.
    """

    requires_response_body = True

    def __init__(
        self, keychain: Keychain, resource: str | None = None
    ) -> None:
        super().__init__(keychain, resource)
        self._tokens: dict[tuple[str, str, str], str] = {}
        self._last_token: str | None = None

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        auth = self.credentials(request)
        if auth.registry_token:
            self.authorize(request, auth)
            yield request
            return

        if self._last_token:
            request.headers["Authorization"] = f"Bearer {self._last_token}"
        response = yield request
        if response.status_code != 401:
            return

        scheme, params = parse_challenge(
            response.headers.get("WWW-Authenticate", "")
        )
        if scheme == "basic":
            if not auth.password:
                return
            request.headers["Authorization"] = basic_auth_header(
                auth.username, auth.password.get_secret_value()
            )
            yield request
            return
        if scheme != "bearer" or "realm" not in params:
            return

        key = (
            params["realm"],
            params.get("service", ""),
            params.get("scope", ""),
        )
        token = self._tokens.get(key)
        if token is None:
            token_response = yield self._token_request(auth, *key)
            token_response.raise_for_status()
            body = token_response.json()
            token = body.get("token") or body.get("access_token")
            if not token:
                raise httpx.DecodingError(
                    f"No token in response from {params['realm']}",
                    request=token_response.request,
                )
            self._tokens[key] = token
        self._last_token = token
        request.headers["Authorization"] = f"Bearer {token}"
        yield request

    def _token_request(
        self, auth: RegistryAuth, realm: str, service: str, scope: str
    ) -> httpx.Request:
        params = {"service": service, "scope": scope}
        params = {k: v for k, v in params.items() if v}
        if auth.identity_token:
            # OAuth2 refresh-token grant, as the Docker CLI does it.
            data = {
                "grant_type": "refresh_token",
                "refresh_token": auth.identity_token.get_secret_value(),
                "client_id": "registry-survey",
                **params,
            }
            return httpx.Request("POST", realm, data=data)
        headers = {}
        if auth.password:
            headers["Authorization"] = basic_auth_header(
                auth.username, auth.password.get_secret_value()
            )
        return httpx.Request("GET", realm, params=params, headers=headers)


class TokenBucket:
    """Token-bucket rate limiter shared by every request of a client.

    Holds up to ``burst`` tokens, refilled at ``rate`` tokens per second.
    Each request spends one token and waits for one if none are left.

    Parameters
    ----------
    rate
        Tokens added per second.
    burst
        Bucket capacity, which is also the initial number of tokens.
    clock
        Monotonic clock, for testing.
    sleep
        Sleep function used when there is no cancellation event, for
        testing.
    """

    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 15,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0 or burst < 1:
            raise ValueError("rate must be positive and burst at least 1")
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def acquire(
        self,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Take one token, blocking until one is available.

        Raises
        ------
        OperationCancelledError
            If ``cancel`` is set before a token is obtained.
        TimeoutError
            If no token would be available within ``timeout`` seconds.  This
            is raised as soon as that is known, without waiting.
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError(
                    "Cancelled waiting for rate limit"
                )
            with self._lock:
                now = self._clock()
                elapsed = max(0.0, now - self._updated)
                self._tokens = min(
                    float(self._burst), self._tokens + elapsed * self._rate
                )
                self._updated = now
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self._rate
            if deadline is not None and now + wait > deadline:
                raise TimeoutError(
                    f"Rate limit token not available within {timeout}s"
                )
            if cancel is not None:
                cancel.wait(wait)
            else:
                self._sleep(wait)


class RateLimitedTransport(httpx.BaseTransport):
    """Transport that spends a rate-limit token before every request.

    The request's pool timeout bounds the wait for a token.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport,
        limiter: TokenBucket,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        self._transport = transport
        self._limiter = limiter
        self._cancel = cancel

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        timeout = request.extensions.get("timeout", {}).get("pool")
        try:
            self._limiter.acquire(timeout=timeout, cancel=self._cancel)
        except TimeoutError as exc:
            raise httpx.PoolTimeout(str(exc), request=request) from exc
        return self._transport.handle_request(request)

    def close(self) -> None:
        self._transport.close()
