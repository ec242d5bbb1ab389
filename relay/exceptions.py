"""Custom exception classes for the relay."""


class RelayException(Exception):
    """
    Base exception class for all relay errors.
    """
    pass


class ItemNotFoundError(RelayException):
    """
    Raised when no stored item exists for the requested identifier.
    """
    pass


class AlreadyClaimedError(RelayException):
    """
    Raised when a claim is attempted on an item that has already been claimed.
    """
    pass


class InvalidClaimError(RelayException):
    """
    Raised when a presented claim token does not match the item's token.
    """
    pass


class InvalidIdentifierError(RelayException):
    """
    Raised when an identifier does not have the expected word/number shape.
    """
    pass


class StorageFailureError(RelayException):
    """
    Raised when reading, writing or deleting stored data fails.
    """
    pass


class TransferCancelledError(RelayException):
    """
    Raised when the client aborts an in-flight transfer.
    """
    pass


class FileTooLargeError(RelayException):
    """
    Raised when an upload exceeds the configured maximum size.
    """
    pass
