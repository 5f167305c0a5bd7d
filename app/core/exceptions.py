from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidInput(ServiceError):
    """Bad amount, phone or reference. Never retried, never sent to the provider."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InvalidPayment(InvalidInput):
    pass


class InvalidAmount(InvalidInput):
    pass


class InvalidPhone(InvalidInput):
    pass


class MalformedCallback(InvalidInput):
    pass


class ProviderAuthError(ServiceError):
    """Token exchange with the payment provider failed. Retryable with backoff."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            "Payment provider is temporarily unavailable. Please try again later.",
            status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        # Kept for logs only; never returned to end users.
        self.detail = detail


class ProviderRejected(ServiceError):
    """Provider declined the request. The message is the provider's own reason."""

    def __init__(self, provider_message: str) -> None:
        super().__init__(
            f"{provider_message}. Please retry or use an alternate payment method.",
            status.HTTP_502_BAD_GATEWAY,
        )
        self.provider_message = provider_message


class ProviderUnknownState(ServiceError):
    """Provider call timed out or the connection dropped; the request may still be processed."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            "The payment provider did not respond in time. The payment may still complete; "
            "check the account before retrying.",
            status.HTTP_504_GATEWAY_TIMEOUT,
        )
        self.detail = detail
