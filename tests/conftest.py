"""Shared fixtures for plyra-registry tests."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import UTC, datetime, timedelta

import pytest

from plyra_registry.config.loader import load_config_from_dict
from plyra_registry.config.schema import RegistryConfig
from plyra_registry.observability.session_log import SessionLog
from plyra_registry.rollback.backup_store import BackupStore


def make_registry() -> dict:
    """A small registry with two components and a few tokens."""
    return {
        "components": [
            {
                "name": "Button",
                "description": "Clickable action",
                "props": {
                    "variant": {
                        "type": "enum",
                        "values": ["primary", "secondary"],
                    },
                    "disabled": {"type": "boolean"},
                },
            },
            {
                "name": "Card",
                "props": {"elevation": {"type": "number"}},
            },
        ],
        "tokens": {
            "color": {
                "primary": {"value": "#0055ff"},
                "danger": {"value": "#dd2222"},
            },
            "spacing": {"sm": {"value": "4px"}},
        },
    }


def write_json(path: str, data) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def read_json(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def temp_dir():
    """Create a temporary workspace directory."""
    d = tempfile.mkdtemp(prefix="plyra_registry_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def sample_registry() -> dict:
    return make_registry()


@pytest.fixture
def registry_path(temp_dir, sample_registry) -> str:
    """The sample registry written to <workspace>/dist/registry.json."""
    return write_json(os.path.join(temp_dir, "dist", "registry.json"), sample_registry)


@pytest.fixture
def config(temp_dir, registry_path) -> RegistryConfig:
    """Configuration with every path inside the workspace."""
    return load_config_from_dict(
        {
            "registry": {"path": registry_path},
            "backup": {"dir": os.path.join(temp_dir, "backups")},
            "history": {
                "file": os.path.join(temp_dir, "mutations.log.jsonl"),
                "undo_dir": os.path.join(temp_dir, "undo"),
            },
            "transpile": {"output_dir": os.path.join(temp_dir, "transpiled")},
            "lock": {"timeout_seconds": 2},
        }
    )


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def backup_store(config, clock) -> BackupStore:
    return BackupStore(config.backup.dir, clock=clock)


@pytest.fixture
def session_log(config) -> SessionLog:
    return SessionLog(config.history.file)


@pytest.fixture
def ghost_variant_plan() -> dict:
    """Adds a 'ghost' Button variant; low risk."""
    return {
        "patches": [
            {
                "op": "add",
                "path": "/components/0/props/variant/values/-",
                "value": "ghost",
            }
        ],
        "metadata": {"riskLevel": "low", "componentsAffected": ["Button"]},
    }
