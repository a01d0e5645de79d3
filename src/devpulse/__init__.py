"""devpulse - GitHub activity ingest, store and insights."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from devpulse.config import DevpulseConfig, load_config
from devpulse.exceptions import DevpulseError
from devpulse.importer import EventImporter
from devpulse.models import Developer, Event, EventType
from devpulse.pipeline import run_import
from devpulse.store import Store

try:
    __version__ = version("devpulse")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "Developer",
    "DevpulseConfig",
    "DevpulseError",
    "Event",
    "EventImporter",
    "EventType",
    "Store",
    "__version__",
    "load_config",
    "run_import",
]
