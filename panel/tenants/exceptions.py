class TenantConflictError(Exception):
    """A tenant with the same domain or slug already exists."""


class ProvisioningError(Exception):
    """The tenant was persisted but its stack could not be created.

    ``tenant`` is the stored record, already moved to ERROR.
    """

    def __init__(self, message, tenant):
        super().__init__(message)
        self.tenant = tenant
