"""
Domain-specific errors for the signals bounded context.

All errors raised from the domain layer must be defined here.
These are mapped to HTTP responses at the interface layer.
No framework imports allowed.
"""


class SignalDomainError(Exception):
    """Base error for all signal domain errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class SignalNotFoundError(SignalDomainError):
    """Raised when a signal id does not exist in the store."""

    def __init__(self, signal_id: int) -> None:
        super().__init__(f"Signal not found: {signal_id}")
        self.signal_id = signal_id


class PortfolioNotFoundError(SignalDomainError):
    """Raised when a portfolio cannot be found."""

    def __init__(self, portfolio_id: int) -> None:
        super().__init__(f"Portfolio not found: {portfolio_id}")
        self.portfolio_id = portfolio_id


class InvalidTransitionError(SignalDomainError):
    """Raised when an action is attempted against an incompatible state."""

    def __init__(self, status: str, event: str) -> None:
        super().__init__(f"Cannot apply {event} to a signal in state {status}")
        self.status = status
        self.event = event


class ExternalServiceError(SignalDomainError):
    """Raised by adapters when an external collaborator fails or is unreachable."""

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"{service} call failed: {reason}")
        self.service = service
        self.reason = reason
