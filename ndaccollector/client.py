"""HTTP access to the APIs: session setup, requests and status checks."""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterable, Mapping
from operator import itemgetter
from pathlib import Path
from typing import Union

import requests

from .models import ErrorResponse, Status

log = logging.getLogger(__name__)

TIMEOUT = 62.0
SUCCESS_STATUS_CODE = "SUCCESS"
AUTHORIZATION_HEADER = "Authorization"

Params = Union[Mapping[str, str], Iterable[tuple[str, str]]]


class APIError(Exception):
    """An API call failed; ``status_code`` is the HTTP status when there was one."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StatusCodeError(APIError):
    """The response body carried a status other than SUCCESS."""

    def __init__(self, status: Status) -> None:
        super().__init__(
            "error while validating response status: "
            f"Status Code: {status.status_code}, "
            f"Status Message: {status.status_description.description}"
        )
        self.status = status


def create_http_client(cert_file: str = "", skip_tls: bool = False) -> requests.Session:
    """Create the session used for every API call.

    With ``skip_tls`` certificates are not verified; with a ``cert_file`` it is
    used as the CA bundle; otherwise the system root certificates are used.
    """
    session = requests.Session()
    if skip_tls:
        session.verify = False
        log.debug("Skipping TLS authentication")
    elif not cert_file:
        session.verify = True
        log.debug("TLS authentication using root certificates")
    else:
        try:
            Path(cert_file).read_bytes()
        except OSError as exc:
            log.error("Error while reading server certificate file: %s", exc)
            session.verify = True
            log.debug("TLS authentication using root certificates")
            return session
        session.verify = cert_file
        log.debug("Using CA certificate %s", cert_file)
    return session


def _encode_params(params: Params | None) -> list[tuple[str, str]] | None:
    if params is None:
        return None
    items = params.items() if isinstance(params, Mapping) else params
    return sorted(items, key=itemgetter(0))


def _error_detail(response: requests.Response) -> str:
    try:
        return ErrorResponse.from_dict(response.json()).detail
    except ValueError:
        return ""


def do_request(
    session: requests.Session,
    url: str,
    headers: Mapping[str, str] | None = None,
    params: Params | None = None,
) -> bytes:
    """GET ``url`` and return the (decompressed) body; raise APIError on failure."""
    try:
        response = session.get(
            url,
            headers=dict(headers or {}),
            params=_encode_params(params),
            timeout=TIMEOUT,
        )
    except requests.RequestException as exc:
        raise APIError(str(exc)) from exc

    with response:
        status = response.status_code
        if not 200 <= status <= 299:
            raise APIError(f"{status}: {_error_detail(response)}", status_code=status)
        try:
            body = response.content
        except requests.RequestException as exc:
            raise APIError(str(exc)) from exc
        encoding = response.headers.get("Content-Encoding", "")

    if encoding.lower() == "gzip" and body[:2] == b"\x1f\x8b":
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError) as exc:
            raise APIError(f"invalid gzip response: {exc}") from exc
    return body


def check_status_code(status: Status) -> None:
    """Raise StatusCodeError unless the status code is SUCCESS."""
    if status.status_code != SUCCESS_STATUS_CODE:
        raise StatusCodeError(status)