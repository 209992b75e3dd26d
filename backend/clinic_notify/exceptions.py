"""Exceptions raised by the notification subsystem.

Gateway delivery problems are not exceptions: they are returned as
``{"success": False, "error": ...}`` and recorded on the message row.
"""


class EntityNotFoundError(LookupError):
    """A patient, organization, appointment or message does not exist in the org."""

    def __init__(self, entity: str, entity_id, org_id=None):
        self.entity = entity
        self.entity_id = entity_id
        self.org_id = org_id
        scope = f" in organization {org_id}" if org_id is not None else ""
        super().__init__(f"{entity} {entity_id} not found{scope}")


class GatewayNotConfiguredError(ValueError):
    """The organization has no gateway URL or API key stored."""


class GatewayError(RuntimeError):
    """The gateway answered an administrative call with a non-2xx status."""
