class ProvisioningError(Exception):
    pass


class InputError(ProvisioningError):
    """The roster, token or settings file could not be read."""
    pass


class NamespaceLookupError(ProvisioningError, LookupError):
    """The caller's identity or the destination group could not be resolved.

    Fatal: no project can be created without a destination namespace.
    """
    pass


class ResolutionMiss(ProvisioningError):
    pass


class ProvisionError(ProvisioningError):
    """The platform rejected project creation for one roster entry."""
    pass


class PolicyError(ProvisioningError):
    pass


class MembershipError(ProvisioningError):
    pass
