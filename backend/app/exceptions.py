"""
Domain errors for the address pool and probing services.

Routers let these propagate; the handler registered in main.py turns them
into JSON responses with the status code carried by the exception.
"""


class IpamError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidFormat(IpamError):
    """Malformed CIDR, IP or MAC string."""


class SegmentTooLarge(IpamError):
    """Usable host count is above the configured ceiling."""


class NotFound(IpamError):
    status_code = 404


class AddressConflict(IpamError):
    """The address is already in use (or was taken by a concurrent request)."""
    status_code = 409


class InvalidState(IpamError):
    """Status transition not allowed from the record's current status."""


class ResourceInUse(IpamError):
    status_code = 409

    def __init__(self, detail: str, in_use: int = 0):
        super().__init__(detail)
        self.in_use = in_use


class ScanInProgress(IpamError):
    status_code = 409


class ProbeError(Exception):
    """Network-level failure while probing. Never leaves the prober."""
