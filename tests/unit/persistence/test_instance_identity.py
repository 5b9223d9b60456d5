"""Instance name resolution and persistence."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from devpool_orchestrator.persistence.instance import InstanceIdentity, resolve_instance_name
from devpool_orchestrator.utils.names import NAMES, name_from_seed

if TYPE_CHECKING:
    from pathlib import Path


def test_config_name_wins_and_writes_nothing(tmp_path: Path) -> None:
    instance_file = tmp_path / "instance.json"

    name = resolve_instance_name(instance_file, workspace=tmp_path, config_name="night-owl")

    assert name == "night-owl"
    assert not instance_file.exists()


def test_generated_name_is_persisted_and_reused(tmp_path: Path) -> None:
    instance_file = tmp_path / "state" / "instance.json"

    first = resolve_instance_name(instance_file, workspace=tmp_path, hostname="build-01")
    second = resolve_instance_name(instance_file, workspace=tmp_path, hostname="other-host")

    assert first == name_from_seed(f"build-01:{tmp_path}")
    assert first in NAMES
    assert second == first
    stored = json.loads(instance_file.read_text(encoding="utf-8"))
    assert stored["name"] == first
    assert stored["createdAt"].endswith("Z")


def test_existing_file_is_respected(tmp_path: Path) -> None:
    instance_file = tmp_path / "instance.json"
    identity = InstanceIdentity(name="amber-falcon", created_at="2026-01-01T00:00:00Z")
    instance_file.write_text(json.dumps(identity.to_dict()), encoding="utf-8")

    assert resolve_instance_name(instance_file, workspace=tmp_path) == "amber-falcon"


def test_unreadable_file_regenerates_deterministically(tmp_path: Path) -> None:
    instance_file = tmp_path / "instance.json"
    instance_file.write_text("{broken", encoding="utf-8")

    name = resolve_instance_name(instance_file, workspace=tmp_path, hostname="build-01")

    assert name == name_from_seed(f"build-01:{tmp_path}")
    assert json.loads(instance_file.read_text(encoding="utf-8"))["name"] == name


def test_persist_failure_still_returns_name(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    name = resolve_instance_name(blocker / "instance.json", workspace=tmp_path, hostname="h")

    assert name == name_from_seed(f"h:{tmp_path}")
