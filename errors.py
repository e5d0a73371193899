from typing import Dict


class StorefrontError(Exception):
    """Base class for errors raised by the shop."""


class ConfigurationError(StorefrontError):
    """A required credential or setting is missing."""


class PaymentError(StorefrontError):
    """The payment provider rejected or failed a request."""


class SignatureError(StorefrontError):
    """A webhook payload failed signature verification."""


class ValidationFailed(StorefrontError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class InvalidTransition(StorefrontError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from {getattr(current, 'value', current)} to {getattr(target, 'value', target)}")
