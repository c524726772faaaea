from __future__ import annotations


class PushRelayError(Exception):
    """Base error for PushRelay."""


class ProviderConfigError(PushRelayError):
    """Missing or invalid push provider configuration."""


class InvalidTokenFormat(PushRelayError):
    """Push token does not match the provider token grammar."""

    def __init__(self, token: str) -> None:
        super().__init__(f"Invalid push token: {token!r}")
        self.token = token


class TransientProviderError(PushRelayError):
    """Provider request failed for one chunk; the chunk is skipped."""


class PermanentInvalidityError(PushRelayError):
    """Provider reports the device can never receive messages again."""

    def __init__(self, token: str | None = None) -> None:
        super().__init__("DeviceNotRegistered")
        self.token = token


class StoreUnavailable(PushRelayError):
    """Registry/ledger store unreachable; the current job attempt is lost."""
