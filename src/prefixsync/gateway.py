"""Remote gateway to EC2 managed prefix lists.

The gateway is the only module that talks to AWS. It exposes the three
calls the reconciler needs and returns model objects. Errors are not
classified here: raw botocore exceptions propagate and the reconciler maps
them through prefixsync.errors.

boto3 clients are blocking, so every call is run in the default executor
to keep the event loop responsive.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import boto3

from .errors import Cardinality, CardinalityError
from .models import AllowListEntry, AllowListSnapshot, Network, PrefixListState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryPage:
    """One page of prefix list entries.

    Attributes:
        entries: Entries on this page, in API order
        next_token: Token for the next page, None on the last page
    """

    entries: tuple[AllowListEntry, ...]
    next_token: str | None = None


class PrefixListGateway(ABC):
    """Async interface to a versioned allow-list API."""

    @abstractmethod
    async def describe(self, list_id: str) -> list[AllowListSnapshot]:
        """Describe the list. May return zero, one or several snapshots."""

    @abstractmethod
    async def list_entries(
        self,
        list_id: str,
        version: int,
        page_token: str | None = None,
    ) -> EntryPage:
        """Return one page of entries at the given version."""

    @abstractmethod
    async def modify(
        self,
        list_id: str,
        current_version: int,
        add: Sequence[AllowListEntry],
        remove: Sequence[Network],
    ) -> AllowListSnapshot:
        """Apply additions and removals against current_version."""


def snapshot_from_api(prefix_list: dict[str, Any]) -> AllowListSnapshot:
    """Build a snapshot (without entries) from a ManagedPrefixList structure."""
    return AllowListSnapshot(
        id=prefix_list["PrefixListId"],
        version=int(prefix_list.get("Version", 0)),
        max_entries=int(prefix_list.get("MaxEntries", 0)),
        name=prefix_list.get("PrefixListName"),
        address_family=prefix_list.get("AddressFamily"),
        state=PrefixListState.from_api(prefix_list.get("State")),
    )


class Ec2PrefixListGateway(PrefixListGateway):
    """PrefixListGateway backed by the boto3 EC2 client."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        region: str | None = None,
        page_size: int | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            client: Pre-built EC2 client (tests pass a stubbed one).
            region: Region used when building a client.
            page_size: MaxResults for GetManagedPrefixListEntries, AWS default if None.
        """
        self._client = client if client is not None else boto3.client("ec2", region_name=region)
        self._page_size = page_size

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        method = getattr(self._client, operation)
        logger.debug("Calling EC2 %s", operation, extra={"params": kwargs})
        return await loop.run_in_executor(None, functools.partial(method, **kwargs))

    async def describe(self, list_id: str) -> list[AllowListSnapshot]:
        response = await self._call("describe_managed_prefix_lists", PrefixListIds=[list_id])

        # A single-ID lookup never needs a second page
        if response.get("NextToken"):
            raise CardinalityError(
                Cardinality.TOO_MANY,
                f"Got too many prefix lists from AWS for `{list_id}`.",
            )

        return [snapshot_from_api(pl) for pl in response.get("PrefixLists", [])]

    async def list_entries(
        self,
        list_id: str,
        version: int,
        page_token: str | None = None,
    ) -> EntryPage:
        params: dict[str, Any] = {"PrefixListId": list_id, "TargetVersion": version}
        if page_token:
            params["NextToken"] = page_token
        if self._page_size:
            params["MaxResults"] = self._page_size

        response = await self._call("get_managed_prefix_list_entries", **params)

        entries = tuple(
            AllowListEntry.parse(raw["Cidr"], raw.get("Description"))
            for raw in response.get("Entries", [])
        )
        return EntryPage(entries=entries, next_token=response.get("NextToken") or None)

    async def modify(
        self,
        list_id: str,
        current_version: int,
        add: Sequence[AllowListEntry],
        remove: Sequence[Network],
    ) -> AllowListSnapshot:
        params: dict[str, Any] = {"PrefixListId": list_id, "CurrentVersion": current_version}
        if add:
            params["AddEntries"] = [
                {"Cidr": str(entry.cidr), "Description": entry.description} for entry in add
            ]
        if remove:
            params["RemoveEntries"] = [{"Cidr": str(cidr)} for cidr in remove]

        response = await self._call("modify_managed_prefix_list", **params)
        return snapshot_from_api(response["PrefixList"])
