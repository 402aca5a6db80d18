from fastapi import HTTPException

from ticketing.services.exceptions import (
    ConflictError,
    InvalidSignatureError,
    NotFoundError,
    PaymentError,
    PaymentGatewayError,
    PaymentGatewayTimeoutError,
    PaymentNotSuccessfulError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)


def http_error_from_service(err: ServiceError) -> HTTPException:
    if isinstance(err, NotFoundError):
        status = 404
    elif isinstance(err, PermissionDeniedError):
        status = 403
    elif isinstance(err, ConflictError):
        status = 409
    elif isinstance(err, ValidationError):
        status = 422
    elif isinstance(err, PaymentError):
        status = 402
    elif isinstance(err, PaymentGatewayTimeoutError):
        status = 504
    elif isinstance(err, PaymentGatewayError):
        status = 502
    elif isinstance(err, InvalidSignatureError):
        status = 401
    else:
        status = 500

    detail = {"code": err.code, "message": err.message}
    if isinstance(err, PaymentNotSuccessfulError) and err.payment_status:
        detail["payment_status"] = err.payment_status

    return HTTPException(status_code=status, detail=detail)
