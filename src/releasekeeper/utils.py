import importlib.metadata
import os
from typing import Any, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry  # type: ignore

from releasekeeper.constants import (
    APP_NAME,
    CATALOG_BACKOFF_FACTOR,
    CATALOG_CONNECT_RETRIES,
    CATALOG_RETRY_STATUSES,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
)
from releasekeeper.exceptions import RemoteFetchError
from releasekeeper.log_utils import logger

_USER_AGENT_CACHE: Optional[str] = None


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `releasekeeper/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        try:
            app_version = importlib.metadata.version(APP_NAME)
        except importlib.metadata.PackageNotFoundError:
            app_version = "unknown"

        _USER_AGENT_CACHE = f"{APP_NAME}/{app_version}"

    return _USER_AGENT_CACHE


def get_effective_github_token(
    github_token: Optional[str], allow_env_token: bool = True
) -> Optional[str]:
    """
    Determine the GitHub token to use, preferring the explicit argument over the environment.

    Parameters:
        github_token (Optional[str]): Explicit token to use; leading and trailing whitespace are ignored.
        allow_env_token (bool): If True, fall back to the `GITHUB_TOKEN` environment variable when no explicit token is provided.

    Returns:
        Optional[str]: The chosen token with surrounding whitespace removed, or `None` if no token is available.
    """
    candidate = (github_token or "").strip()
    if candidate:
        return candidate
    if not allow_env_token:
        return None
    env_token = os.environ.get("GITHUB_TOKEN")
    return env_token.strip() if env_token else None


def request_timeout(read_timeout: Optional[float] = None) -> Tuple[float, float]:
    """Return a `(connect, read)` timeout pair; a hung server is treated as a failure."""
    return (DEFAULT_CONNECT_TIMEOUT, read_timeout or DEFAULT_REQUEST_TIMEOUT)


def create_catalog_session() -> requests.Session:
    """
    Create a session for catalog reads.

    Connection errors and gateway statuses (502/503/504) are retried at the transport
    level a small, fixed number of times. Other HTTP errors surface immediately.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": get_user_agent()})
    retry_strategy: Retry = Retry(
        total=CATALOG_CONNECT_RETRIES,
        connect=CATALOG_CONNECT_RETRIES,
        read=0,
        status=CATALOG_CONNECT_RETRIES,
        backoff_factor=CATALOG_BACKOFF_FACTOR,
        status_forcelist=list(CATALOG_RETRY_STATUSES),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def create_download_session() -> requests.Session:
    """Create a session for archive transfers. Transfers are never retried."""
    session = requests.Session()
    session.headers.update({"User-Agent": get_user_agent()})
    return session


def request_json(
    session: requests.Session,
    url: str,
    timeout: Optional[float] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    GET `url` and decode its JSON body.

    Raises:
        RemoteFetchError: On transport errors, non-2xx statuses, and undecodable bodies.
    """
    logger.debug(f"Fetching {url}")
    try:
        response = session.get(
            url, headers=headers, params=params, timeout=request_timeout(timeout)
        )
        response.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise RemoteFetchError(
            f"HTTP error fetching {url}", url=url, status_code=status, details=str(e)
        ) from e
    except requests.RequestException as e:
        raise RemoteFetchError(
            f"Network error fetching {url}", url=url, details=str(e)
        ) from e

    try:
        return response.json()
    except ValueError as e:
        raise RemoteFetchError(
            f"Invalid JSON from {url}",
            url=url,
            status_code=response.status_code,
            details=str(e),
        ) from e


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse a Java-style `.properties` document into a dict.

    Supports `key=value` and `key: value` lines; `#` and `!` start comments. Line
    continuations and unicode escapes are not interpreted.
    """
    properties: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line[0] in "#!":
            continue
        separators = [i for i in (line.find("="), line.find(":")) if i >= 0]
        if not separators:
            properties[line] = ""
            continue
        split_at = min(separators)
        properties[line[:split_at].strip()] = line[split_at + 1 :].strip()
    return properties


def request_properties(
    session: requests.Session, url: str, timeout: Optional[float] = None
) -> Dict[str, str]:
    """
    GET a `.properties` file and parse it.

    Raises:
        RemoteFetchError: On transport errors and non-2xx statuses.
    """
    logger.debug(f"Fetching properties {url}")
    try:
        response = session.get(url, timeout=request_timeout(timeout))
        response.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise RemoteFetchError(
            f"HTTP error fetching {url}", url=url, status_code=status, details=str(e)
        ) from e
    except requests.RequestException as e:
        raise RemoteFetchError(
            f"Network error fetching {url}", url=url, details=str(e)
        ) from e
    return parse_properties(response.text)
