from __future__ import annotations

import random
import time
from typing import Any, Callable, Dict, List, Optional

from svcreg.core.models import Instance
from svcreg.utils.errors import ValidationError

DEFAULT_HOST = "127.0.0.1"


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def validate_registration(name: Any, host: Any, port: Any) -> int:
    """Validate registration input and return the port as an int."""
    if not name or not isinstance(name, str):
        raise ValidationError("name required")
    if not isinstance(host, str):
        raise ValidationError("host required as string")
    if isinstance(port, bool) or not isinstance(port, (int, float)):
        raise ValidationError("port required as number")
    if port <= 0 or port != int(port):
        raise ValidationError(f"port must be a positive integer, got {port!r}")
    return int(port)


def generate_instance_id(host: str, port: int) -> str:
    return f"{host}:{port}:{random.randrange(1_000_000)}"


class LivenessDirectory:
    """
    In-memory mapping of service name -> instance id -> Instance.

    The directory is owned by exactly one daemon and is not thread-safe;
    the daemon serializes every operation on a single thread.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or now_ms
        self._services: Dict[str, Dict[str, Instance]] = {}

    def register(
        self,
        name: str,
        port: int,
        host: Optional[str] = None,
        pid: Optional[int] = None,
        id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Instance:
        """
        Register (or re-register) an instance and return it.

        An existing instance with the same id is replaced, which makes
        re-registration idempotent and refreshes ``last_seen``.
        """
        if host is None:
            host = DEFAULT_HOST
        port = validate_registration(name, host, port)
        if id is not None and not isinstance(id, str):
            raise ValidationError("id must be a string")
        if pid is not None and (isinstance(pid, bool) or not isinstance(pid, int)):
            raise ValidationError("pid must be an integer")
        if meta is not None and not isinstance(meta, dict):
            raise ValidationError("meta must be an object")

        instance = Instance(
            id=id or generate_instance_id(host, port),
            name=name,
            host=host,
            port=port,
            pid=pid,
            meta=dict(meta or {}),
            last_seen=self._clock(),
        )
        self._services.setdefault(name, {})[instance.id] = instance
        return instance.model_copy(deep=True)

    def heartbeat(self, name: str, id: str) -> Optional[Instance]:
        """Refresh ``last_seen``; returns None when the name or id is unknown."""
        if not isinstance(name, str) or not name or not isinstance(id, str) or not id:
            raise ValidationError("name and id required for heartbeat")
        instance = self._services.get(name, {}).get(id)
        if instance is None:
            return None
        instance.last_seen = self._clock()
        return instance.model_copy(deep=True)

    def unregister(
        self,
        name: str,
        id: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> bool:
        """
        Remove one instance by id, or every instance matching host OR port.

        The host/port fallback is coarse: it removes all instances of the
        service sharing either value, and reports True for a known service
        even when nothing matched.
        """
        if not isinstance(name, str) or not name:
            raise ValidationError("name required")
        if id is not None and not isinstance(id, str):
            raise ValidationError("id must be a string")
        instances = self._services.get(name)
        if instances is None:
            return False

        if id:
            removed = instances.pop(id, None) is not None
        else:
            for instance_id, instance in list(instances.items()):
                if (host and instance.host == host) or (port and instance.port == port):
                    del instances[instance_id]
            removed = True

        if not instances:
            del self._services[name]
        return removed

    def resolve(self, name: str) -> Optional[Instance]:
        """Return the most recently seen instance of ``name``, or None."""
        instances = self._services.get(name)
        if not instances:
            return None
        chosen = max(instances.values(), key=lambda instance: instance.last_seen)
        return chosen.model_copy(deep=True)

    def list(self) -> Dict[str, List[Instance]]:
        """Snapshot of every service and its instances."""
        return {
            name: [instance.model_copy(deep=True) for instance in instances.values()]
            for name, instances in self._services.items()
        }

    def cleanup_expired(self, now: int, ttl: int) -> List[Instance]:
        """
        Evict instances with ``now - last_seen > ttl`` and return them.

        An instance exactly ``ttl`` old is retained.
        """
        evicted: List[Instance] = []
        for name in list(self._services):
            instances = self._services[name]
            for instance_id, instance in list(instances.items()):
                if now - instance.last_seen > ttl:
                    evicted.append(instances.pop(instance_id))
            if not instances:
                del self._services[name]
        return evicted

    def __contains__(self, name: str) -> bool:
        return name in self._services

    def __len__(self) -> int:
        return sum(len(instances) for instances in self._services.values())
