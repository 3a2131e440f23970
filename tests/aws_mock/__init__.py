"""AWS EC2 Mock for Integration Testing.

This module provides a mock implementation of the EC2 managed prefix list
APIs that enables testing without AWS connectivity.

Key Features:
- In-memory prefix lists with versioned entries
- Optimistic concurrency (stale versions, lists mid-update)
- Paginated entry listing
- modify-in-progress -> modify-complete transitions
- Error injection as botocore ClientError

Usage:
    from aws_mock import MockPrefixListGateway

    gateway = MockPrefixListGateway()
    gateway.state.add_list("pl-0123456789abcdef0", [("198.51.100.7/32", "home")])
    reconciler = PrefixListReconciler(gateway, "home")
"""

from .context import MockAwsContext, mock_aws_context
from .errors import client_error, error_body
from .gateway import MockPrefixListGateway
from .state import MOCK_LIST_ID, MockPrefixList, MockPrefixListState

__all__ = [
    "MOCK_LIST_ID",
    "MockAwsContext",
    "MockPrefixList",
    "MockPrefixListGateway",
    "MockPrefixListState",
    "client_error",
    "error_body",
    "mock_aws_context",
]
