"""
Error taxonomy for the portfolio refresh pipeline.

    InvalidAddress   local validation failed, no network attempted
    UpstreamError    HTTP non-2xx (or transport failure) from the Data API / RPC node
    RpcError         JSON-RPC error member in an otherwise successful response
    FormatError      payload did not have the expected shape
    PartialFailure   some value sources failed, snapshot still produced
    TotalFailure     every value source failed

Fetchers raise the first four. The aggregator never lets them escape; it folds
them into a PartialFailure / TotalFailure decision that is stored and returned.
"""

from typing import Optional


class PortfolioError(Exception):
    """Base class for every error surfaced by the refresh pipeline."""

    kind = "portfolio_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidAddress(PortfolioError):
    kind = "invalid_address"


class UpstreamError(PortfolioError):
    kind = "upstream_error"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RpcError(PortfolioError):
    kind = "rpc_error"

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class FormatError(PortfolioError):
    kind = "format_error"


class AggregateFailure(PortfolioError):
    """One or more sources of a refresh failed. `reasons` keeps them in source order."""

    separator = "; "

    def __init__(self, reasons: dict[str, BaseException]):
        self.reasons = reasons
        super().__init__(self.separator.join(describe_error(e) for e in reasons.values()))


class PartialFailure(AggregateFailure):
    kind = "partial_failure"


class TotalFailure(AggregateFailure):
    kind = "total_failure"


def describe_error(exc: BaseException) -> str:
    """Human-readable message for any exception, falling back to its type name."""
    text = str(exc).strip()
    return text or type(exc).__name__
