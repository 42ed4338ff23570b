"""Instance metadata (IMDSv2) spot interruption notice source."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

from .config import AwsConfig
from .errors import ConnectorError, NodeErrorCode, map_metadata_error
from .interfaces import TerminationNoticeSource
from .models import TerminationNotice

logger = logging.getLogger(__name__)

TOKEN_PATH = "/latest/api/token"
INSTANCE_ACTION_PATH = "/latest/meta-data/spot/instance-action"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"

# Refresh the session token this long before IMDS would expire it.
TOKEN_REFRESH_MARGIN_SECONDS = 60.0


@dataclass
class HttpResponse:
    status_code: int
    body: bytes

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise HttpStatusError(self.status_code, self.body.decode("utf-8", errors="ignore"))

    def text(self) -> str:
        return self.body.decode("utf-8", errors="ignore")

    def json(self) -> dict[str, Any]:
        return json.loads(self.body.decode("utf-8"))


class HttpStatusError(Exception):
    def __init__(self, status_code: int, body: str):
        super().__init__(body or f"http status {status_code}")
        self.status_code = status_code


class SimpleHttpSession:
    """Minimal urllib-backed HTTP session abstraction."""

    def request(self, *, method: str, url: str, data: str | None, headers: Mapping[str, str], timeout: float) -> HttpResponse:
        payload = data.encode("utf-8") if data is not None else None
        request = Request(url=url, data=payload, headers=dict(headers), method=method)
        try:
            with urlopen(request, timeout=timeout) as response:  # noqa: S310 - URL is explicit config
                return HttpResponse(status_code=response.status, body=response.read())
        except HTTPError as exc:
            body = exc.read() if hasattr(exc, "read") else b""
            raise HttpStatusError(exc.code, body.decode("utf-8", errors="ignore")) from exc
        except URLError as exc:
            raise OSError(str(exc)) from exc


class InstanceMetadataNoticeSource(TerminationNoticeSource):
    """Polls the spot ``instance-action`` document through IMDSv2.

    The document only exists once an interruption has been scheduled, so a
    404 is the normal "no notice" answer.
    """

    def __init__(
        self,
        *,
        config: AwsConfig,
        session: SimpleHttpSession,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._session = session
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0

    def poll(self) -> TerminationNotice:
        try:
            token = self._session_token()
        except Exception as exc:  # token failures are query errors, never a "no notice" answer
            raise map_metadata_error(exc) from exc

        try:
            response = self._session.request(
                method="GET",
                url=self._url(INSTANCE_ACTION_PATH),
                data=None,
                headers={TOKEN_HEADER: token},
                timeout=self._config.metadata_timeout_seconds,
            )
            response.raise_for_status()
        except HttpStatusError as exc:
            if exc.status_code == 404:
                return TerminationNotice.none()
            if exc.status_code == 401:
                self._token = None
            raise map_metadata_error(exc) from exc
        except Exception as exc:
            raise map_metadata_error(exc) from exc

        return TerminationNotice.from_instance_action(self._parse_document(response))

    def _session_token(self) -> str:
        now = self._clock()
        if self._token is not None and now < self._token_expires_at:
            return self._token

        ttl = self._config.metadata_token_ttl_seconds
        response = self._session.request(
            method="PUT",
            url=self._url(TOKEN_PATH),
            data=None,
            headers={TOKEN_TTL_HEADER: str(ttl)},
            timeout=self._config.metadata_timeout_seconds,
        )
        response.raise_for_status()
        token = response.text().strip()
        if not token:
            raise ConnectorError(NodeErrorCode.SIGNAL_QUERY_ERROR, "metadata service returned an empty token")
        self._token = token
        self._token_expires_at = now + max(0.0, ttl - TOKEN_REFRESH_MARGIN_SECONDS)
        return token

    def _url(self, path: str) -> str:
        return urljoin(f"{self._config.metadata_url.rstrip('/')}/", path.lstrip("/"))

    @staticmethod
    def _parse_document(response: HttpResponse) -> Mapping[str, Any] | None:
        try:
            document = response.json()
        except ValueError:
            logger.warning(
                "spot_instance_action_unparsed",
                extra={"event": "notice_parse", "body": response.text()[:200]},
            )
            return None
        return document if isinstance(document, Mapping) else None
