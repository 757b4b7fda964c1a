from __future__ import annotations


class PackerError(RuntimeError):
    """Base error for the packer."""


class ConfigurationError(PackerError):
    """Missing or invalid settings; fatal at startup."""


class AuthorizationError(PackerError):
    """A session could not be established for a wallet."""


class TransientError(PackerError):
    """Network hiccup or nonce race; safe to retry after a short backoff."""


class ContractRejectedError(PackerError):
    """The order book refused the call (insufficient margin, paused, ...)."""


class RelayerHttpError(PackerError):
    def __init__(self, method: str, url: str, status: int, body: str) -> None:
        self.method = method
        self.url = url
        self.status = int(status)
        self.body = body
        super().__init__(f"{method} {url} failed: {self.status} {body[:500]}")

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


_CONTRACT_REJECTION_MARKERS = (
    "execution reverted",
    "revert",
    "insufficient",
    "paused",
    "not allowed",
    "order not found",
)


def classify_relayer_error(exc: RelayerHttpError) -> PackerError:
    """Map a relayer HTTP failure onto the packer error taxonomy."""
    text = (exc.body or "").lower()
    if exc.status >= 500 or exc.status == 429:
        if any(marker in text for marker in _CONTRACT_REJECTION_MARKERS):
            return ContractRejectedError(str(exc))
        return TransientError(str(exc))
    if exc.status in (401, 403):
        return AuthorizationError(str(exc))
    if "session" in text and ("expired" in text or "invalid" in text or "not found" in text):
        return AuthorizationError(str(exc))
    return ContractRejectedError(str(exc))
