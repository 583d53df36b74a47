"""
svc-registry client.

    client = RegistryClient()
    instance = client.register("auth", 3001)
    client.heartbeat("auth", instance.id)
    resolved = client.resolve("auth")

Every operation runs discover-or-launch first and uses the resulting address
for that operation only; a long-lived client therefore follows a daemon that
was restarted externally.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from svcreg.config.settings import RegistrySettings, load_settings
from svcreg.core.directory import DEFAULT_HOST, validate_registration
from svcreg.core.models import DaemonRecord, Instance
from svcreg.runtime.bootstrap import DaemonBootstrap
from svcreg.runtime.rendezvous import default_record_path, read_record
from svcreg.utils.errors import NotFound, TransportFailure, ValidationError

REQUEST_TIMEOUT_SECONDS = 2.0


class RegistryClient:
    """Directory operations against the machine's registry daemon."""

    def __init__(
        self,
        record_path: Optional[Path] = None,
        settings: Optional[RegistrySettings] = None,
        bootstrap: Optional[DaemonBootstrap] = None,
        autostart: bool = True,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.record_path = record_path or default_record_path()
        self.settings = settings or load_settings()
        self.bootstrap = bootstrap or DaemonBootstrap(self.record_path, settings=self.settings)
        self.autostart = autostart
        self.timeout = timeout
        self._transport = transport

    def start_daemon_if_needed(self) -> DaemonRecord:
        """Run discover-or-launch and return the healthy daemon's record."""
        return self.bootstrap.ensure_daemon()

    def discovery_info(self) -> Optional[DaemonRecord]:
        """Return the current rendezvous record without probing or launching."""
        return read_record(self.record_path)

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def register(
        self,
        name: str,
        port: int,
        host: str = DEFAULT_HOST,
        pid: Optional[int] = None,
        id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Instance:
        validate_registration(name, host, port)
        payload = self._request(
            "POST",
            "/register",
            {"name": name, "port": port, "host": host, "pid": pid, "id": id, "meta": meta or {}},
        )
        return Instance.model_validate(payload["instance"])

    def heartbeat(self, name: str, id: str) -> Optional[Instance]:
        """Refresh an instance; returns None when the daemon no longer knows it."""
        if not name or not id:
            raise ValidationError("name and id required")
        payload = self._request("POST", "/heartbeat", {"name": name, "id": id})
        instance = payload.get("instance")
        return Instance.model_validate(instance) if instance is not None else None

    def unregister(
        self,
        name: str,
        id: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> bool:
        if not name:
            raise ValidationError("name required")
        payload = self._request("POST", "/unregister", {"name": name, "id": id, "host": host, "port": port})
        return bool(payload.get("ok"))

    def resolve(self, name: str) -> Optional[Instance]:
        """Return the most recently seen instance of ``name``, or None."""
        if not name:
            raise ValidationError("name required")
        payload = self._request("GET", f"/resolve/{quote(name, safe='')}", allow_not_found=True)
        if payload is None:
            return None
        return Instance.model_validate(payload["instance"])

    def resolve_address(self, name: str) -> Tuple[str, int]:
        """Return ``(host, port)`` for ``name``; raises NotFound when no instance is live."""
        instance = self.resolve(name)
        if instance is None:
            raise NotFound(name)
        return instance.host, instance.port

    def list(self) -> Dict[str, List[Instance]]:
        payload = self._request("GET", "/list")
        return {
            name: [Instance.model_validate(entry) for entry in entries]
            for name, entries in payload.get("services", {}).items()
        }

    def _daemon_record(self) -> DaemonRecord:
        if self.autostart:
            return self.bootstrap.ensure_daemon()
        record = self.bootstrap.discover()
        if record is None:
            raise TransportFailure(f"No live svc-registry daemon found at {self.record_path}.")
        return record

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        record = self._daemon_record()
        try:
            with httpx.Client(
                base_url=record.base_url,
                timeout=self.timeout,
                transport=self._transport,
                trust_env=False,
            ) as http:
                response = http.request(method, path, json=body)
                payload = response.json()
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Request to {record.base_url}{path} failed: {exc}") from exc
        except ValueError as exc:
            raise TransportFailure(f"Invalid response from {record.base_url}{path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportFailure(f"Invalid response from {record.base_url}{path}: expected a JSON object")

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code == 400:
            raise ValidationError(payload.get("error") or "invalid request")
        if response.status_code >= 400:
            raise TransportFailure(
                f"Daemon returned HTTP {response.status_code} for {path}: {payload.get('error')}"
            )
        return payload
