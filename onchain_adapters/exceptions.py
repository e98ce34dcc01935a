"""
On-chain Adapter Exceptions - Errors raised by chain-log sources.

Transport and RPC failures subclass TransientSourceError so callers
can treat them as "retry next tick" without knowing the transport.
"""

from typing import Any, Optional

from core.exceptions import IndexerException, Severity, TransientSourceError


class RpcError(TransientSourceError):
    """HTTP, connection or JSON-RPC level failure."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        rpc_code: Optional[int] = None,
        response_body: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **kwargs,
    ) -> None:
        context = kwargs.pop("context", {})
        if source_name:
            context["source"] = source_name
        if method:
            context["method"] = method
        if status_code is not None:
            context["status_code"] = status_code
        if rpc_code is not None:
            context["rpc_code"] = rpc_code
        if response_body:
            context["response_body"] = response_body[:500]

        self.source_name = source_name
        self.method = method
        self.status_code = status_code
        self.rpc_code = rpc_code
        super().__init__(message, context=context, cause=original_error, **kwargs)

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.method:
            parts.append(f"[method={self.method}]")
        if self.cause:
            parts.append(f"(caused by: {self.cause})")
        return " ".join(parts)


class RateLimitError(RpcError):
    """Provider rejected the request with HTTP 429."""

    def __init__(
        self,
        message: str,
        retry_after_seconds: Optional[int] = None,
        **kwargs,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, status_code=429, **kwargs)


class ExecutionRevertedError(IndexerException):
    """eth_call reverted; retrying the same call will not help."""

    default_severity = Severity.LOW

    def __init__(
        self,
        to_address: str,
        block_number: Optional[int] = None,
        reason: Optional[Any] = None,
    ) -> None:
        self.to_address = to_address
        self.block_number = block_number
        super().__init__(
            message=f"Call to {to_address} reverted: {reason}",
            context={"to": to_address, "block_number": block_number},
        )
