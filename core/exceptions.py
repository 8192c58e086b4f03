"""
Core domain exceptions for the fulfillment matcher, stores and adapters.
"""


class InputError(Exception):
    """Raised when a caller passes an invalid product or price."""
    pass


class InvalidPriceError(InputError):
    """Raised when a price is negative, non-finite or malformed."""
    pass


class ProductNotFoundError(InputError):
    """Raised when a product id does not reference an existing product."""
    pass


class InvalidOfferError(InputError):
    """Raised when a merchant offer price is not below the current price."""
    pass


class OrderNotFoundError(InputError):
    """Raised when a buy order id is unknown."""
    pass


class CollaboratorUnavailableError(Exception):
    """Raised when the order or product store cannot be reached at all."""
    pass


class OrderStoreError(Exception):
    """Raised when a store operation fails at the database level."""
    pass


class PaymentCaptureError(Exception):
    """Raised inside payment adapters when a capture or release fails."""
    pass


class DiscountIssuanceError(Exception):
    """Raised inside discount adapters when a code cannot be minted."""
    pass


class OrderNotCancellableError(InputError):
    """Raised when cancelling a buy order that is no longer pending or monitoring."""
    pass
