from __future__ import annotations

import json
import os
import socket
import ssl
from functools import lru_cache
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import certifi

from gasless_packer.errors import RelayerHttpError, TransientError

USER_AGENT = "gasless-packer/0.1"


def _resolve_ca_bundle() -> tuple[str | None, str | None]:
    env_cafile = os.getenv("SSL_CERT_FILE")
    if env_cafile:
        return env_cafile, None

    env_capath = os.getenv("SSL_CERT_DIR")
    if env_capath:
        return None, env_capath

    return certifi.where(), None


@lru_cache(maxsize=1)
def _ssl_context() -> ssl.SSLContext:
    cafile, capath = _resolve_ca_bundle()
    if cafile:
        return ssl.create_default_context(cafile=cafile)
    if capath:
        return ssl.create_default_context(capath=capath)
    return ssl.create_default_context()


def _with_query(url: str, params: dict[str, str] | None) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def _open(request: Request, timeout: float) -> Any:
    method = request.get_method()
    url = request.full_url
    try:
        with urlopen(request, timeout=timeout, context=_ssl_context()) as response:
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        detail = ""
        try:
            detail = exc.read().decode("utf-8", errors="replace")
        except Exception:
            detail = str(exc.reason)
        raise RelayerHttpError(method, url, exc.code, detail) from exc
    except (URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
        raise TransientError(f"{method} {url} unreachable: {exc}") from exc
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise TransientError(f"{method} {url} returned non-JSON body: {body[:200]}") from exc


def get_json(url: str, params: dict[str, str] | None = None, timeout: float = 10.0):
    request = Request(_with_query(url, params), headers={"User-Agent": USER_AGENT})
    return _open(request, timeout)


def post_json(url: str, payload: dict[str, Any], timeout: float = 10.0):
    data = json.dumps(payload).encode("utf-8")
    request = Request(
        url,
        data=data,
        method="POST",
        headers={"User-Agent": USER_AGENT, "Content-Type": "application/json"},
    )
    return _open(request, timeout)
