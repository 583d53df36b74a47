from __future__ import annotations

from svcreg.client import RegistryClient
from svcreg.config.settings import RegistrySettings, load_settings
from svcreg.core.directory import LivenessDirectory
from svcreg.core.models import DaemonRecord, Instance
from svcreg.utils.errors import (
	DaemonAlreadyRunning,
	DaemonStartupTimeout,
	NotFound,
	SvcRegistryError,
	TransportFailure,
	ValidationError,
)

__version__ = "0.1.0"

__all__ = [
	"DaemonAlreadyRunning",
	"DaemonRecord",
	"DaemonStartupTimeout",
	"Instance",
	"LivenessDirectory",
	"NotFound",
	"RegistryClient",
	"RegistrySettings",
	"SvcRegistryError",
	"TransportFailure",
	"ValidationError",
	"load_settings",
]
