"""
Error taxonomy shared by the lifecycle engines and the HTTP adapter.
"""

from typing import Optional


class BackofficeError(Exception):
    pass


class NotFoundError(BackofficeError):
    """Referenced user/transaction/loan/notification id does not exist"""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class ConflictError(BackofficeError):
    """Terminal transition attempted on a record that is no longer PENDING"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


class ValidationError(BackofficeError):
    """Malformed input, rejected before any storage mutation"""
    pass


class StorageFailure(BackofficeError):
    """The unit of work could not commit; nothing was applied"""
    pass
