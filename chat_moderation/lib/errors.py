"""
Exception hierarchy for the trust-policy engine
"""


class ModerationError(Exception):
    """Base class for engine errors"""


class StoreError(ModerationError):
    """Backing store call failed"""


class StoreTimeout(StoreError):
    """Backing store call exceeded its time budget"""


class SanctionError(ModerationError):
    """A sanction could not be applied; no state was changed"""


class QueueItemNotFound(ModerationError):
    """Review queue item does not exist"""


class ExternalValidationError(ModerationError):
    """External content-validation service was unavailable or returned garbage"""
