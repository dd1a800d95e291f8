"""HTTP client factory for telerelay.

One aiohttp session is shared by the Gotify REST calls, the websocket stream
and the Bot API deliveries. It is created when the relay is enabled and
closed when it is disabled, so the session lifetime matches the relay's.
"""

from __future__ import annotations

import logging

import aiohttp

USER_AGENT = "telerelay/1.0"
DEFAULT_CONNECT_TIMEOUT = 30.0


def build_http_session(connect_timeout: float = DEFAULT_CONNECT_TIMEOUT) -> aiohttp.ClientSession:
    """Create the shared aiohttp session. Must be called inside a running loop.

    No total timeout is set at session level: it would also bound the
    lifetime of the websocket. REST calls pass their own per-request timeout.
    """

    logging.getLogger(__name__).debug("Initializing HTTP session")
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=None, sock_connect=connect_timeout),
        headers={"User-Agent": USER_AGENT},
    )
