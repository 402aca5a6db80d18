from enum import Enum


class ErrorCode(str, Enum):
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"

    NOT_EVENT_STAFF = "NOT_EVENT_STAFF"
    NOT_TICKET_OWNER = "NOT_TICKET_OWNER"
    NOT_REGISTERED = "NOT_REGISTERED"
    ORDER_MISMATCH = "ORDER_MISMATCH"

    INVALID_QUANTITY = "INVALID_QUANTITY"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    EVENT_FULL = "EVENT_FULL"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    EVENT_NOT_OPEN = "EVENT_NOT_OPEN"
    EVENT_IS_FREE = "EVENT_IS_FREE"
    EVENT_REQUIRES_PAYMENT = "EVENT_REQUIRES_PAYMENT"

    TICKET_NOT_ACTIVE = "TICKET_NOT_ACTIVE"
    TICKET_ALREADY_CHECKED_IN = "TICKET_ALREADY_CHECKED_IN"
    CHECK_IN_NOT_OPEN = "CHECK_IN_NOT_OPEN"
    TICKET_NUMBER_EXHAUSTED = "TICKET_NUMBER_EXHAUSTED"
    DUPLICATE_TICKET_NUMBER = "DUPLICATE_TICKET_NUMBER"

    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    PAYMENT_NOT_SUCCESSFUL = "PAYMENT_NOT_SUCCESSFUL"
    PAYMENT_AMOUNT_MISMATCH = "PAYMENT_AMOUNT_MISMATCH"
    PAYMENT_GATEWAY_ERROR = "PAYMENT_GATEWAY_ERROR"
    PAYMENT_GATEWAY_TIMEOUT = "PAYMENT_GATEWAY_TIMEOUT"
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
    INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"
