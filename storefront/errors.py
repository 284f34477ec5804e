from __future__ import annotations


class StoreError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(StoreError):
    status_code = 400


class ProductNotFound(StoreError):
    status_code = 404


class ProductInactive(StoreError):
    status_code = 400


class SizeUnavailable(StoreError):
    status_code = 400


class InsufficientStock(StoreError):
    status_code = 400


class ConfigurationMissing(StoreError):
    status_code = 500


class CheckoutSessionFailed(StoreError):
    status_code = 500


class SignatureInvalid(StoreError):
    status_code = 400


class Unauthorized(StoreError):
    status_code = 401


class ImageNotFound(StoreError):
    status_code = 404


# Raised while applying a verified webhook event; the route reports these as
# processing failures so the processor redelivers the event.
class WebhookProcessingError(StoreError):
    status_code = 500


class MissingOrderReference(WebhookProcessingError):
    pass


class OrderNotFound(WebhookProcessingError):
    pass


class VariantNotFound(WebhookProcessingError):
    pass
