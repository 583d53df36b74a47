from typing import Optional


class SvcRegistryError(Exception):
    """Base class for every failure surfaced by svc-registry."""


class ValidationError(SvcRegistryError):
    """Bad caller input, e.g. a missing service name or a non-numeric port."""


class NotFound(SvcRegistryError):
    """A resolve or heartbeat target is absent."""

    def __init__(self, name: str, instance_id: Optional[str] = None):
        self.name = name
        self.instance_id = instance_id
        target = f"'{name}'" if instance_id is None else f"'{name}' instance '{instance_id}'"
        super().__init__(f"Service {target} not found.")


class DaemonStartupTimeout(SvcRegistryError):
    """Bootstrap could not reach a healthy daemon before the startup deadline."""

    def __init__(self, message: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"{message} (startup timeout {timeout_ms} ms)")


class TransportFailure(SvcRegistryError):
    """Network-level failure talking to a discovered daemon."""


class DaemonAlreadyRunning(SvcRegistryError):
    """
    Raised by the server-side singleton guard when the rendezvous record
    names another live daemon. Fatal for the starting process.
    """

    def __init__(self, record):
        self.record = record
        super().__init__(
            f"svc-registry daemon already running at {record.host}:{record.port} pid={record.pid}"
        )
