"""
Remote check of verification tokens against the verifier's record store.
"""
from typing import Optional
from urllib.parse import quote

import httpx
from loguru import logger


class RemoteTokenLookup:
    """
    Asks the verifier whether it minted a token.

    ``GET <base>/verifications/<token>``: 200 means known, anything else
    (including transport errors) means unknown.
    """

    def __init__(self, base_url: str, *, timeout: float = 5.0,
                 http_client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client or httpx.Client(timeout=timeout)

    def is_known(self, token: str) -> bool:
        url = f"{self.base_url}/verifications/{quote(token, safe=':')}"
        try:
            response = self.http_client.get(url)
        except httpx.HTTPError as exc:
            logger.error('token lookup against {} failed: {}', url, exc)
            return False

        if response.status_code == 200:
            return True
        if response.status_code != 404:
            logger.error('token lookup against {} returned {}', url, response.status_code)
        return False
