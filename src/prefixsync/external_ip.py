"""External IP detection.

ExternalAddressConsensus asks several plaintext "what is my IP" services
at once and returns the address most of them agree on. Detection failure
is reported as None, never as an exception.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections import Counter
from collections.abc import Sequence
from typing import Protocol

import httpx

from .config import DEFAULT_IP_DETECTION_TIMEOUT_SECONDS, DEFAULT_IP_SOURCES
from .models import Address

logger = logging.getLogger(__name__)

USER_AGENT = "prefixsync"


class AddressSource(Protocol):
    """Anything that can report the current public address."""

    async def get_current_address(self) -> Address | None: ...


class StaticAddressSource:
    """Always reports the same, configured address."""

    def __init__(self, address: Address | str) -> None:
        self._address = ipaddress.ip_address(address)

    async def get_current_address(self) -> Address | None:
        return self._address


class ExternalAddressConsensus:
    """Majority vote over several external IP echo services."""

    def __init__(
        self,
        sources: Sequence[str] = DEFAULT_IP_SOURCES,
        *,
        timeout: float = DEFAULT_IP_DETECTION_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the consensus.

        Args:
            sources: URLs returning the caller's address as plain text.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        if not sources:
            raise ValueError("At least one IP source is required")
        self._sources = tuple(sources)
        self._timeout = timeout
        self._transport = transport

    async def _query(self, client: httpx.AsyncClient, source: str) -> Address | None:
        try:
            response = await client.get(source)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("IP source failed", extra={"source": source, "error": str(e)})
            return None

        try:
            return ipaddress.ip_address(response.text.strip())
        except ValueError:
            logger.debug(
                "IP source returned a non-address",
                extra={"source": source, "body": response.text[:64]},
            )
            return None

    async def get_current_address(self) -> Address | None:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as client:
            answers = await asyncio.gather(*(self._query(client, s) for s in self._sources))

        votes = Counter(address for address in answers if address is not None)
        if not votes:
            logger.error("Failed to determine external IP: no source answered")
            return None

        ranked = votes.most_common(2)
        if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
            logger.error(
                "Failed to determine external IP: sources disagree",
                extra={"votes": {str(a): n for a, n in votes.items()}},
            )
            return None

        address, count = ranked[0]
        logger.debug(
            "External IP consensus",
            extra={"address": str(address), "votes": count, "sources": len(self._sources)},
        )
        return address
