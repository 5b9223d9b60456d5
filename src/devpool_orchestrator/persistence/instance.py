"""Persistent instance identity used for ``owner:<instance>`` labels."""

from __future__ import annotations

import json
import socket
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from devpool_orchestrator.utils.names import name_from_seed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class InstanceIdentity:
    name: str
    created_at: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must be a non-empty string")

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "createdAt": self.created_at}


def resolve_instance_name(
    instance_file: str | Path,
    *,
    workspace: str | Path,
    config_name: str | None = None,
    hostname: str | None = None,
) -> str:
    """Instance name: config override, else the persisted file, else generated and persisted.

    The generated name is derived from ``hostname:workspace`` so a lost file
    regenerates the same name on the same machine. Persisting is best-effort.
    """

    if config_name:
        return config_name

    path = Path(instance_file).expanduser()
    persisted = _read_identity(path)
    if persisted is not None:
        return persisted.name

    host = hostname if hostname is not None else socket.gethostname()
    identity = InstanceIdentity(
        name=name_from_seed(f"{host}:{Path(workspace).expanduser()}"),
        created_at=datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(identity.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("instance_identity_persist_failed", path=str(path), error=str(exc))
    else:
        logger.info("instance_identity_created", name=identity.name, path=str(path))
    return identity.name


def _read_identity(path: Path) -> InstanceIdentity | None:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("instance_identity_unreadable", path=str(path), error=str(exc))
        return None
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        return None
    return InstanceIdentity(name=name, created_at=str(raw.get("createdAt") or ""))


__all__ = ["InstanceIdentity", "resolve_instance_name"]
