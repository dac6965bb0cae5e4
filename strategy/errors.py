class BotError(Exception):
    """Base class for errors raised by the trading core."""


class GatewayUnavailable(BotError):
    """An exchange call needed to make a decision failed (network, auth, API error)."""

    def __init__(self, action: str, cause: Exception = None):
        self.action = action
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{action} failed{detail}")


class PrecisionUnresolvable(BotError):
    """Symbol metadata does not carry a usable quantity step."""


class SignalInsufficientHistory(BotError):
    """Fewer candles are available than the indicator requires."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"{available} candles available, {required} required")
