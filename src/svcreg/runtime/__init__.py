"""Daemon bootstrap protocol: rendezvous record, scheduler, daemon and launcher."""

from svcreg.runtime.bootstrap import BootstrapState, DaemonBootstrap, probe_health, spawn_daemon_process
from svcreg.runtime.rendezvous import (
	RendezvousProbeResult,
	RendezvousState,
	default_record_path,
	is_process_alive,
	probe_rendezvous,
	read_record,
	record_is_live,
	remove_record_if_owned,
	remove_stale_record,
	write_record_atomic,
)
from svcreg.runtime.scheduler import PeriodicTask, Scheduler
from svcreg.runtime.server import RegistryDaemon, guard_singleton

__all__ = [
	"BootstrapState",
	"DaemonBootstrap",
	"PeriodicTask",
	"RegistryDaemon",
	"RendezvousProbeResult",
	"RendezvousState",
	"Scheduler",
	"default_record_path",
	"guard_singleton",
	"is_process_alive",
	"probe_health",
	"probe_rendezvous",
	"read_record",
	"record_is_live",
	"remove_record_if_owned",
	"remove_stale_record",
	"spawn_daemon_process",
	"write_record_atomic",
]
