"""
Default Configuration
~~~~~~~~~~~~~~~~~~~~~

Defaults used when no registry_config.yaml is provided.
"""

from __future__ import annotations

__all__ = ["DEFAULT_CONFIG"]

DEFAULT_CONFIG: dict = {
    "version": "1.0",
    "registry": {
        "path": "./dist/registry.json",
    },
    "backup": {
        "enabled": True,
        "dir": "./.registry-backups",
        "keep": 10,
    },
    "history": {
        "file": "./mutations.log.jsonl",
        "undo_dir": "./.registry-undo",
        "exporters": [],
    },
    "approval": {
        "auto_approve": False,
        "interactive": True,
        "max_auto_approve_risk": "low",
        "timeout_seconds": 300.0,
    },
    "apply": {
        "all_or_nothing": False,
    },
    "validation": {
        "enabled": True,
        "mandatory": False,
        "schema_path": None,
    },
    "transpile": {
        "enabled": True,
        "targets": [],
        "output_dir": "./dist/transpiled",
    },
    "deploy": {
        "enabled": True,
        "publish_dir": None,
        "docs_dir": None,
    },
    "git": {
        "enabled": False,
        "auto_init": False,
        "tag": True,
        "timeout_seconds": 30.0,
    },
    "lock": {
        "timeout_seconds": 30.0,
    },
}
