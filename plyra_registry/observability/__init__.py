"""Session history: the JSON-Lines session log and its exporters."""

from plyra_registry.observability.exporters import EXPORTERS, StdoutExporter
from plyra_registry.observability.session_log import SessionLog

__all__ = ["EXPORTERS", "SessionLog", "StdoutExporter"]
