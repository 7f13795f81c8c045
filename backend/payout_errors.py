# Payout error taxonomy
# Raised by the service and store layers, turned into {"error": ...} responses by the server


class PayoutError(Exception):
    """Base class for payout domain errors"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PayoutError):
    status_code = 404


class InvalidInputError(PayoutError):
    status_code = 400


class InvalidStatusTransitionError(PayoutError):
    status_code = 409


class PersistenceError(PayoutError):
    status_code = 500


class PayoutGatewayError(PayoutError):
    status_code = 502


class DuplicateOrderError(PayoutError):
    """The order already has a payment owned by another account"""
    status_code = 409
