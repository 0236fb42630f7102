# PATH: core/exceptions.py
"""
Typed exceptions for KEEPER.

Every error carries an ErrorCode so callers can route it to the right
recovery policy: configuration errors stop the process, infrastructure
errors skip the candidate, simulation reverts mean "not eligible now",
execution failures resync the nonce and the sweep continues.
"""

from typing import Optional

from core.constants import ErrorCode


class KeeperError(Exception):
    """Base exception for KEEPER."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str = "",
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class ConfigError(KeeperError):
    """
    Configuration is missing or invalid.

    details["errors"] lists every problem found, not only the first one.
    """

    default_code = ErrorCode.CONFIG_INVALID

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        errors = errors or []
        code = ErrorCode.CONFIG_MISSING if any(
            e.startswith("missing") for e in errors
        ) else ErrorCode.CONFIG_INVALID
        super().__init__(message, code=code, details={"errors": errors})
        self.errors = errors

    def __str__(self):
        if not self.errors:
            return super().__str__()
        listed = "; ".join(self.errors)
        return f"[{self.code.value}] {self.message}: {listed}"


class InfraError(KeeperError):
    """Infrastructure-related errors (RPC, timeouts, rate limits)."""

    default_code = ErrorCode.INFRA_RPC_ERROR


class RPCError(InfraError):
    """RPC call failed."""

    default_code = ErrorCode.INFRA_RPC_ERROR


class RequestTimeoutError(InfraError):
    """Operation timed out."""

    default_code = ErrorCode.INFRA_TIMEOUT


class RateLimitError(InfraError):
    """Rate limit exceeded. Distinct from a liquidity failure."""

    default_code = ErrorCode.INFRA_RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.retry_after = retry_after


class IndexerError(InfraError):
    """Subgraph query failed."""

    default_code = ErrorCode.INFRA_INDEXER_ERROR


class QuoteError(KeeperError):
    """Quote-related errors for DEX venues."""

    default_code = ErrorCode.QUOTE_MALFORMED


class QuoteRevertError(QuoteError):
    """Quote call reverted."""

    default_code = ErrorCode.QUOTE_REVERT


class LiquidityError(QuoteError):
    """Missing pool, zero reserves or zero output."""

    default_code = ErrorCode.QUOTE_NO_LIQUIDITY


class SimulationRevertError(KeeperError):
    """A pre-flight call predicts the transaction would revert."""

    default_code = ErrorCode.SIMULATION_REVERT


class ExecutionError(KeeperError):
    """A submitted transaction failed, reverted or never confirmed."""

    default_code = ErrorCode.EXECUTION_SUBMIT_FAILED


class InvariantError(KeeperError):
    """Unexpected zero amounts, malformed data and similar."""

    default_code = ErrorCode.INVARIANT_VIOLATION
