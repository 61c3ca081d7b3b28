"""
Exceptions raised by the orchestration layer for caller misuse.

Adapter failures are never raised; they travel as AdapterError values on
the result dataclasses. These exceptions cover requests the orchestrator
cannot honour at all, such as resolving an unknown confirmation.
"""


class OrchestrationError(Exception):
    """Base class for orchestration-layer errors."""


class ContactNotFoundError(OrchestrationError):
    """
    Raised when a contact id is not present in the registry.

    Attributes:
        contact_id: The id that was looked up
    """

    def __init__(self, contact_id: int):
        self.contact_id = contact_id
        super().__init__(f"Contact {contact_id} not found in registry")


class ConfirmationError(OrchestrationError):
    """
    Raised for invalid confirmation-protocol actions.

    Attributes:
        request_id: Confirmation request involved, if known
    """

    def __init__(self, message: str, request_id: str | None = None):
        self.request_id = request_id
        super().__init__(message)
