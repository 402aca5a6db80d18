class ServiceError(Exception):
    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code
        super().__init__(self.message)


class NotFoundError(ServiceError):
    pass


class PermissionDeniedError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class InvalidStateError(ConflictError):
    pass


class RegistrationFailedError(ConflictError):
    pass


class AlreadyRegisteredError(RegistrationFailedError):
    pass


class EventFullError(RegistrationFailedError):
    pass


class DuplicateTicketNumberError(ServiceError):
    """Raised internally when an insert collides on ticket_number; retried by the caller."""


class TicketNumberExhaustedError(ServiceError):
    pass


class PaymentError(ServiceError):
    pass


class PaymentNotFoundError(PaymentError):
    pass


class PaymentNotSuccessfulError(PaymentError):
    def __init__(self, code: str, message: str | None = None, payment_status: str | None = None) -> None:
        super().__init__(code, message)
        self.payment_status = payment_status


class PaymentGatewayError(ServiceError):
    pass


class PaymentGatewayTimeoutError(PaymentGatewayError):
    pass


class InvalidSignatureError(ServiceError):
    pass
