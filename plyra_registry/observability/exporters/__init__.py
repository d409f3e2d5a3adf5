"""Session log exporters."""

from plyra_registry.observability.exporters.stdout_exporter import StdoutExporter

EXPORTERS = {"stdout": StdoutExporter}

__all__ = ["EXPORTERS", "StdoutExporter"]
