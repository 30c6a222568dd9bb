"""Sentry DSN parsing and endpoint derivation."""

import re
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from ..config import CLIENT_ID
from ..exceptions import InvalidDsnError

SENTRY_PROTOCOL_VERSION = 7

DEFAULT_PORTS = {"http": 80, "https": 443}

_PROJECT_ID_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class Dsn:
    """
    Sentry DSN as shown on a project's settings page.

    DSN format:
    <scheme>://<public_key>[:<secret_key>]@<host>[:<port>]/[<path>/]<project_id>
    """

    scheme: str
    host: str
    port: int
    public_key: str
    secret_key: Optional[str]
    project_id: int
    path: str = ""

    @classmethod
    def parse(cls, value: str) -> "Dsn":
        """
        Parse a DSN string.

        Args:
            value: Raw DSN string

        Returns:
            Dsn instance

        Raises:
            InvalidDsnError: If any component is missing or malformed
        """
        incomplete = (
            f'The "{value}" DSN must contain a scheme, a host, a user and a path component.'
        )

        try:
            parsed = urlparse(value)
            port = parsed.port
        except (ValueError, TypeError, AttributeError) as e:
            raise InvalidDsnError(f'The "{value}" DSN is invalid.') from e

        scheme = parsed.scheme
        if not scheme:
            raise InvalidDsnError(incomplete)

        host = parsed.hostname
        if not host:
            raise InvalidDsnError(incomplete)

        path = parsed.path
        if not path:
            raise InvalidDsnError(incomplete)

        user = parsed.username
        if not user:
            raise InvalidDsnError(incomplete)

        password = parsed.password
        if password is not None and not password:
            raise InvalidDsnError(f'The "{value}" DSN must contain a valid secret key.')

        if scheme not in DEFAULT_PORTS:
            raise InvalidDsnError(
                f'The scheme of the "{value}" DSN must be either "http" or "https".'
            )

        segments = [segment for segment in path.split("/") if segment]
        if not segments or not _PROJECT_ID_RE.fullmatch(segments[-1]):
            raise InvalidDsnError(f'"{value}" DSN must contain a valid project ID.')

        return cls(
            scheme=scheme,
            host=host,
            port=port if port is not None else DEFAULT_PORTS[scheme],
            public_key=user,
            secret_key=password,
            project_id=int(segments[-1]),
            path="/".join(segments[:-1]),
        )

    @property
    def store_api_url(self) -> str:
        """URL of the legacy store endpoint."""
        return self._base_endpoint_url() + "/store/"

    @property
    def envelope_api_url(self) -> str:
        """URL of the envelope endpoint."""
        return self._base_endpoint_url() + "/envelope/"

    def auth_header(self, client: str = CLIENT_ID) -> str:
        """
        Build the X-Sentry-Auth header value.

        The timestamp is taken on every call.
        """
        header = (
            f"Sentry sentry_version={SENTRY_PROTOCOL_VERSION}, "
            f"sentry_key={self.public_key}, "
            f"sentry_client={client}, "
            f"sentry_timestamp={time.time()}"
        )
        if self.secret_key:
            header += f", sentry_secret={self.secret_key}"
        return header

    def __str__(self) -> str:
        url = f"{self.scheme}://{self.public_key}"
        if self.secret_key is not None:
            url += f":{self.secret_key}"
        url += f"@{self._netloc()}"
        if self.path:
            url += f"/{self.path}"
        return f"{url}/{self.project_id}"

    def _netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port != DEFAULT_PORTS[self.scheme]:
            host += f":{self.port}"
        return host

    def _base_endpoint_url(self) -> str:
        url = f"{self.scheme}://{self._netloc()}"
        if self.path:
            url += f"/{self.path}"
        return f"{url}/api/{self.project_id}"
