"""
Adapters layer - Appointment stores and shop settings providers.
"""

from .memory_store import InMemoryAppointmentStore, StaticSettingsProvider
from .rest_backend import RestBackendClient
from .sql_store import SqlAppointmentStore
from .yaml_settings import YamlSettingsProvider

__all__ = [
    "InMemoryAppointmentStore",
    "RestBackendClient",
    "SqlAppointmentStore",
    "StaticSettingsProvider",
    "YamlSettingsProvider",
]
