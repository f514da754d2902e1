"""
Custom exception classes for the PumpSwap sniper.

Every error carries keyword context rendered as ``[key=value]`` so log lines
stay greppable.
"""


class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationError(BotException):
    """Raised when configuration or a derived address is invalid. Fatal at startup."""
    pass


class RiskRejection(BotException):
    """Raised when a candidate pool fails the risk gate."""

    def __init__(self, reason, **context):
        super().__init__(f"Risk gate rejected candidate: {reason.value}", **context)
        self.reason = reason


class DecisionRejected(BotException):
    """Raised when the decision service says IGNORE or returns something unusable."""
    pass


class SubmissionFailure(BotException):
    """Raised when a transaction could not be submitted after all retries."""
    pass


class VerificationFailed(BotException):
    """Raised when a submitted transaction did not produce the expected balance change."""
    pass


class StreamDisconnected(BotException):
    """Raised when the price stream is gone and the reconnect budget is spent."""
    pass


class MalformedPayload(BotException):
    """Raised when an instruction payload cannot be encoded or decoded."""
    pass


class AccountOrderMismatch(BotException):
    """Raised when a built account list does not match the program's layout."""
    pass


class AccountDataError(BotException):
    """Raised when an on-chain record is missing or cannot be decoded."""
    pass


class NetworkError(BotException):
    """Raised when a read-side RPC call fails at the transport or JSON-RPC level."""
    pass
