"""Exception taxonomy for the ingestion and structuring pipeline."""

from typing import Any, Dict, List, Optional


class VeriledgerError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigError(VeriledgerError):
    """Raised when pipeline configuration is invalid."""
    pass


class DiscoveryError(VeriledgerError):
    """Raised when the ledger index is unreachable or returns a malformed page."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class FetchError(VeriledgerError):
    """Raised when a single content gateway fails to serve a content id."""

    def __init__(
        self,
        gateway: str,
        content_id: str,
        message: str,
        outcome: str = "transport_error",
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        self.gateway = gateway
        self.content_id = content_id
        self.message = message
        self.outcome = outcome
        self.status_code = status_code
        self.original_error = original_error
        super().__init__(f"{gateway}: {message}")


class AllGatewaysFailedError(VeriledgerError):
    """Raised in strict mode when every configured gateway failed for a content id.

    ``failures`` is the ordered attempt log (``GatewayAttempt`` objects) so the
    caller can see each gateway's reason.
    """

    def __init__(self, content_id: str, failures: List[Any]):
        self.content_id = content_id
        self.failures = list(failures)
        reasons = "; ".join(
            f"{getattr(f, 'gateway', '?')} ({getattr(f, 'outcome', '?')}): {getattr(f, 'error', '')}"
            for f in self.failures
        )
        super().__init__(f"All content gateways failed for {content_id}. Errors: {reasons}")

    @property
    def gateways(self) -> List[str]:
        return [f.gateway for f in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "failures": [f.to_dict() for f in self.failures],
        }


class StructuringError(VeriledgerError):
    """Raised when claim structuring cannot run at all (e.g. non-text input).

    Every text input has a path to a valid structured claim, so seeing this for a
    string is a defect, not a recoverable condition.
    """
    pass


class OracleError(VeriledgerError):
    """Raised by a semantic oracle when an embedding cannot be computed."""
    pass
