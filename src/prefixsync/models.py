"""Allow-list data model.

Runtime values (entries, snapshots, diffs) are frozen dataclasses; a
snapshot is never mutated locally, only replaced by a freshly fetched one.
Rule files are parsed into pydantic models so they are validated at the
boundary.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .config import MAX_DESCRIPTION_LENGTH, MAX_RULES_FILE_ENTRIES

Network = ipaddress.IPv4Network | ipaddress.IPv6Network
Address = ipaddress.IPv4Address | ipaddress.IPv6Address


class EntryParseError(ValueError):
    """Raised when an allow-list entry cannot be built from raw values."""

    pass


class MalformedCidr(EntryParseError):
    """Raised when a string is not a valid network address/prefix pair."""

    pass


class DescriptionTooLong(EntryParseError):
    """Raised when an entry description exceeds the AWS limit."""

    pass


class PrefixListState(str, Enum):
    """EC2 managed prefix list states."""

    CREATE_IN_PROGRESS = "create-in-progress"
    CREATE_COMPLETE = "create-complete"
    CREATE_FAILED = "create-failed"
    MODIFY_IN_PROGRESS = "modify-in-progress"
    MODIFY_COMPLETE = "modify-complete"
    MODIFY_FAILED = "modify-failed"
    RESTORE_IN_PROGRESS = "restore-in-progress"
    RESTORE_COMPLETE = "restore-complete"
    RESTORE_FAILED = "restore-failed"
    DELETE_IN_PROGRESS = "delete-in-progress"
    DELETE_COMPLETE = "delete-complete"
    DELETE_FAILED = "delete-failed"

    @property
    def is_failed(self) -> bool:
        return self.value.endswith("-failed")

    @classmethod
    def from_api(cls, value: str | None) -> PrefixListState | None:
        """Map an API state string, tolerating states this tool does not know."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


def parse_network(value: str) -> Network:
    """Parse a CIDR string, rejecting anything that is not a network prefix.

    A bare address is accepted as a host network (/32 or /128). Host bits set
    beyond the prefix length are rejected, as AWS rejects them.
    """
    try:
        return ipaddress.ip_network(value.strip(), strict=True)
    except (ValueError, TypeError) as e:
        raise MalformedCidr(f"Not a valid CIDR: {value!r}") from e


def host_network(address: Address | str) -> Network:
    """Return the single-host network for an address (x.x.x.x/32 or /128)."""
    ip = ipaddress.ip_address(address)
    return ipaddress.ip_network(f"{ip}/{ip.max_prefixlen}")


@dataclass(frozen=True)
class AllowListEntry:
    """One allow-list entry: a network prefix and its description."""

    cidr: Network
    description: str = ""

    @classmethod
    def parse(cls, cidr: str, description: str | None = None) -> AllowListEntry:
        """Build an entry from raw API or user values.

        Raises:
            MalformedCidr: If cidr is not a valid network prefix.
            DescriptionTooLong: If description exceeds MAX_DESCRIPTION_LENGTH.
        """
        description = description or ""
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise DescriptionTooLong(
                f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters: {description[:32]}..."
            )
        return cls(cidr=parse_network(cidr), description=description)

    def is_owned_by(self, tag: str) -> bool:
        """Check whether the entry carries the ownership tag (case-insensitive)."""
        return self.description.casefold() == tag.casefold()


@dataclass(frozen=True)
class AllowListSnapshot:
    """Point-in-time view of a managed prefix list.

    Attributes:
        id: Prefix list ID (pl-...)
        version: Optimistic-concurrency token, must be sent back on modify
        max_entries: Maximum number of entries the list accepts
        entries: Entries in the order the API returned them
        name: Prefix list name
        address_family: IPv4 or IPv6
        state: Last known list state
    """

    id: str
    version: int
    max_entries: int
    entries: tuple[AllowListEntry, ...] = ()
    name: str | None = None
    address_family: str | None = None
    state: PrefixListState | None = None

    def __post_init__(self) -> None:
        if self.version < 0:
            raise ValueError(f"Prefix list version cannot be negative: {self.version}")

    def owned_entries(self, tag: str) -> tuple[AllowListEntry, ...]:
        return tuple(entry for entry in self.entries if entry.is_owned_by(tag))

    def owned_cidrs(self, tag: str) -> frozenset[Network]:
        return frozenset(entry.cidr for entry in self.owned_entries(tag))

    def cidrs(self) -> frozenset[Network]:
        return frozenset(entry.cidr for entry in self.entries)

    def with_entries(self, entries: tuple[AllowListEntry, ...]) -> AllowListSnapshot:
        return replace(self, entries=tuple(entries))

    def __str__(self) -> str:
        name = f" ({self.name})" if self.name else ""
        return (
            f"ID: {self.id}{name} version {self.version}; "
            f"family: {self.address_family or 'unknown'}; max entries: {self.max_entries}"
        )


@dataclass(frozen=True)
class Diff:
    """Changes needed to bring owned entries in line with the desired set."""

    to_add: frozenset[Network] = field(default_factory=frozenset)
    to_remove: frozenset[Network] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


# =============================================================================
# Rule files
# =============================================================================


class EntrySpec(BaseModel):
    """A single entry declared in a rules file."""

    model_config = {"extra": "ignore"}

    cidr: str
    description: Annotated[str, Field(min_length=1, max_length=MAX_DESCRIPTION_LENGTH)]

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        try:
            return str(parse_network(v))
        except MalformedCidr as e:
            raise ValueError(str(e)) from e

    def to_entry(self) -> AllowListEntry:
        return AllowListEntry.parse(self.cidr, self.description)


class AllowListSpec(BaseModel):
    """Entries to apply to a prefix list in tolerant bulk mode."""

    model_config = {"extra": "ignore"}

    entries: list[EntrySpec] = Field(default_factory=list, max_length=MAX_RULES_FILE_ENTRIES)

    def to_entries(self) -> list[AllowListEntry]:
        return [spec.to_entry() for spec in self.entries]
