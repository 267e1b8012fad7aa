"""
VaultSync Server - Not Found Error
"""

from exceptions.vaultsync_error import VaultSyncError


class NotFoundError(VaultSyncError):
    """Unknown file, version, session or conflict."""

    kind = "not_found"

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({"resource": self.resource, "id": self.identifier})
        return result
