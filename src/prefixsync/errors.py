"""Error taxonomy and classification for remote allow-list calls.

Every failure coming back from AWS is turned into one of a closed set of
exception classes rooted at AllowListError, so callers can branch on the
type instead of inspecting strings:

    AllowListError
    ├── NothingToDo             control-flow signal, empty diff
    ├── CardinalityError        describe returned zero or several lists
    ├── CredentialsError        identity/authentication failure
    ├── PermissionDenied        HTTP 403 class
    ├── BadRequest(code, msg)   HTTP 400 class, unmapped vendor code
    │   ├── DuplicateEntry      entry already exists, benign
    │   ├── MalformedEntry      rule shape invalid
    │   ├── LimitExceeded       list or group is full
    │   └── VersionConflict     stale optimistic-concurrency version
    ├── ConvergenceTimeout      list did not reach the awaited state in time
    └── UnknownRemoteError      anything else, raw payload kept in details

Vendor error bodies are EC2 XML documents:

    <Response><Errors><Error><Code>..</Code><Message>..</Message></Error></Errors>...

The first (Code, Message) pair is treated as authoritative.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    CredentialRetrievalError,
    NoCredentialsError,
    PartialCredentialsError,
)

logger = logging.getLogger(__name__)

# Keep raw payloads bounded in error details
MAX_DETAILS_LENGTH = 4096


class Cardinality(str, Enum):
    """How a singleton expectation was violated."""

    NONE = "none"
    TOO_MANY = "too_many"


class AllowListError(Exception):
    """Base class for every classified allow-list failure.

    Attributes:
        message: Human-readable summary, safe to log at error level.
        details: Raw remote payload for diagnosis, log at debug level only.
        fatal: Whether a long-running loop should abort on this error
            rather than retry on its next tick.
    """

    fatal: ClassVar[bool] = False

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = _truncate(details)


class NothingToDo(AllowListError):
    """Raised when the desired and owned entries already match.

    Not a failure: callers treat it as success.
    """

    pass


class CardinalityError(AllowListError):
    """Raised when a lookup expected exactly one result."""

    fatal = True

    def __init__(self, kind: Cardinality, message: str, *, details: str | None = None) -> None:
        super().__init__(message, details=details)
        self.kind = kind


class CredentialsError(AllowListError):
    """Raised on authentication or identity failures."""

    fatal = True


class PermissionDenied(AllowListError):
    """Raised when the caller is not allowed to perform the operation."""

    fatal = True


class BadRequest(AllowListError):
    """Raised when AWS rejected the request with a vendor error code."""

    fatal = True

    def __init__(
        self,
        code: str | None,
        message: str | None,
        *,
        details: str | None = None,
    ) -> None:
        self.code = code or ""
        self.vendor_message = message or ""
        super().__init__(f"{self.code}: {self.vendor_message}".strip(": "), details=details)


class DuplicateEntry(BadRequest):
    """Raised when the entry already exists. Callers treat it as satisfied."""

    fatal = False


class MalformedEntry(BadRequest):
    """Raised when the entry or rule itself is invalid."""

    pass


class LimitExceeded(BadRequest):
    """Raised when the prefix list or security group is full."""

    pass


class VersionConflict(BadRequest):
    """Raised when the supplied version is stale or the list is mid-update."""

    fatal = False


class ConvergenceTimeout(AllowListError):
    """Raised when the list does not reach the awaited state in time."""

    pass


class UnknownRemoteError(AllowListError):
    """Raised for remote failures that fit no other class."""

    pass


class RemoteHttpError(Exception):
    """An opaque HTTP error response returned by a transport.

    Carries the status code and the raw vendor error body so the classifier
    can parse it.
    """

    def __init__(self, status: int, body: bytes | str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}")

    @property
    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return self.body


@dataclass(frozen=True)
class VendorError:
    """One (Code, Message) pair from a vendor error body."""

    code: str
    message: str | None = None


# Vendor error code -> error class
VENDOR_CODE_TABLE: dict[str, type[BadRequest]] = {
    "InvalidPermission.Duplicate": DuplicateEntry,
    "InvalidPrefixListEntry.Duplicate": DuplicateEntry,
    "InvalidPermission.Malformed": MalformedEntry,
    "InvalidPrefixListEntry.Malformed": MalformedEntry,
    "RulesPerSecurityGroupLimitExceeded": LimitExceeded,
    "SecurityGroupLimitExceeded": LimitExceeded,
    "PrefixListMaxEntriesExceeded": LimitExceeded,
    "InvalidPrefixListVersion": VersionConflict,
    "IncorrectState": VersionConflict,
}

CREDENTIAL_ERROR_CODES: frozenset[str] = frozenset(
    {
        "AuthFailure",
        "InvalidClientTokenId",
        "ExpiredToken",
        "UnrecognizedClientException",
        "SignatureDoesNotMatch",
    }
)

PERMISSION_ERROR_CODES: frozenset[str] = frozenset({"UnauthorizedOperation", "AccessDenied"})


def _truncate(value: str | None) -> str | None:
    if value is None or len(value) <= MAX_DETAILS_LENGTH:
        return value
    return value[:MAX_DETAILS_LENGTH] + "...(truncated)"


def _local_name(tag: str) -> str:
    # Strip an XML namespace: "{ns}Errors" -> "Errors"
    return tag.rsplit("}", 1)[-1]


def _find_descendant(element: ET.Element, name: str) -> ET.Element | None:
    for node in element.iter():
        if node is not element and _local_name(node.tag) == name:
            return node
    return None


def parse_error_body(body: bytes | str | None) -> list[VendorError]:
    """Extract (Code, Message) pairs from a vendor XML error body.

    Never raises: malformed XML, a missing Errors container or children
    without a Code all yield fewer (possibly zero) errors.
    """
    if not body:
        return []

    try:
        root = ET.fromstring(body)
    except (ET.ParseError, ValueError):
        logger.debug("Unparseable vendor error body", extra={"body": _truncate(str(body))})
        return []

    container = root if _local_name(root.tag) == "Errors" else _find_descendant(root, "Errors")
    if container is None:
        return []

    errors: list[VendorError] = []
    for child in container:
        code_node = _find_descendant(child, "Code")
        if code_node is None or not (code_node.text or "").strip():
            continue
        message_node = _find_descendant(child, "Message")
        message = None
        if message_node is not None and message_node.text:
            message = message_node.text.strip()
        errors.append(VendorError(code=(code_node.text or "").strip(), message=message))
    return errors


def classify_vendor_error(
    code: str | None,
    message: str | None,
    *,
    status: int | None = None,
    details: str | None = None,
) -> AllowListError:
    """Map a vendor error code (and HTTP status, when known) to a typed error."""
    if status == 403 or code in PERMISSION_ERROR_CODES:
        return PermissionDenied(
            f"Permission denied: {code or 'HTTP 403'} {message or ''}".strip(),
            details=details,
        )

    if status == 401 or code in CREDENTIAL_ERROR_CODES:
        return CredentialsError(
            f"AWS credentials rejected: {code or 'HTTP 401'} {message or ''}".strip(),
            details=details,
        )

    if status is not None and status >= 500:
        return UnknownRemoteError(
            f"AWS service error (HTTP {status}): {code or 'unknown'} {message or ''}".strip(),
            details=details,
        )

    if not code:
        return UnknownRemoteError(
            f"Request failed without an error code (HTTP {status})", details=details
        )

    error_class = VENDOR_CODE_TABLE.get(code, BadRequest)
    return error_class(code, message, details=details)


def classify_http_response(status: int, body: bytes | str | None) -> AllowListError:
    """Classify an opaque HTTP error response.

    403 is PermissionDenied whatever the body says. For 400 the first
    vendor error in the body decides; an empty or unparseable body
    degrades to UnknownRemoteError.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    if status == 403:
        return PermissionDenied("Permission denied (HTTP 403)", details=text)

    if status == 401:
        return CredentialsError("AWS credentials rejected (HTTP 401)", details=text)

    if status == 400:
        errors = parse_error_body(body)
        if not errors:
            return UnknownRemoteError(
                "Bad request with an unreadable error body (HTTP 400)", details=text
            )
        if len(errors) > 1:
            logger.debug(
                "Vendor returned several errors, using the first",
                extra={"codes": [e.code for e in errors]},
            )
        first = errors[0]
        return classify_vendor_error(first.code, first.message, status=status, details=text)

    return UnknownRemoteError(f"Unexpected HTTP {status} response", details=text)


def _client_error_parts(exc: ClientError) -> tuple[str | None, str | None, int | None]:
    response: dict[str, Any] = exc.response or {}
    error = response.get("Error", {}) or {}
    metadata = response.get("ResponseMetadata", {}) or {}
    return error.get("Code"), error.get("Message"), metadata.get("HTTPStatusCode")


def classify_error(exc: BaseException) -> AllowListError:
    """Convert any remote-call failure into the AllowListError taxonomy."""
    if isinstance(exc, AllowListError):
        return exc

    if isinstance(exc, (NoCredentialsError, PartialCredentialsError, CredentialRetrievalError)):
        return CredentialsError(f"AWS credentials unavailable: {exc}", details=repr(exc))

    if isinstance(exc, ClientError):
        code, message, status = _client_error_parts(exc)
        return classify_vendor_error(code, message, status=status, details=str(exc.response))

    if isinstance(exc, RemoteHttpError):
        return classify_http_response(exc.status, exc.body)

    if isinstance(exc, BotoCoreError):
        return UnknownRemoteError(f"AWS call failed: {exc}", details=repr(exc))

    return UnknownRemoteError(
        f"Unexpected error: {type(exc).__name__}: {exc}", details=repr(exc)
    )
