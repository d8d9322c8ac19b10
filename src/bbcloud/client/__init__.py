"""HTTP client layer for bbcloud.

Exports :class:`~bbcloud.client.executor.RequestExecutor`, which attaches
credentials from an :class:`~bbcloud.auth.authenticator.Authenticator` to
every request and retries once after refreshing on ``401``.
"""

from bbcloud.client.executor import RequestExecutor
from bbcloud.client.response import extract_response_data

__all__ = ["RequestExecutor", "extract_response_data"]
