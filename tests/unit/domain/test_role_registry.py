"""Unit tests for the role registry, config overlays and the level heuristic."""

from __future__ import annotations

import pytest

from devpool_orchestrator.domain.roles import (
    DEFAULT_ROLES,
    RoleConfig,
    RoleRegistry,
    UnknownRoleError,
    select_level,
)

REGISTRY = RoleRegistry()


def test_builtin_roles() -> None:
    developer = REGISTRY.require("developer")
    reviewer = REGISTRY.require("reviewer")

    assert REGISTRY.role_ids == ("developer", "tester", "reviewer", "architect")
    assert len(REGISTRY) == len(DEFAULT_ROLES)
    assert developer.levels == ("junior", "medior", "senior")
    assert developer.default_level == "medior"
    assert reviewer.levels == ("junior", "senior")
    assert reviewer.default_level == "junior"
    assert REGISTRY.require("tester").completion_results == ("pass", "fail", "refine", "blocked")
    assert "architect" in REGISTRY
    assert "designer" not in REGISTRY
    assert REGISTRY.get("designer") is None


def test_unknown_role_lists_valid_roles() -> None:
    with pytest.raises(UnknownRoleError, match="designer") as excinfo:
        REGISTRY.require("designer")

    assert "developer, tester, reviewer, architect" in str(excinfo.value)


def test_model_lookup_passes_unknown_levels_through() -> None:
    assert REGISTRY.model_for("developer", "senior") == "anthropic/claude-opus-4-5"
    assert REGISTRY.model_for("developer", "openai/gpt-5") == "openai/gpt-5"


def test_levels_by_role_and_capacity() -> None:
    developer = RoleConfig(
        id="developer",
        display_name="DEVELOPER",
        levels=("junior", "senior"),
        default_level="junior",
        max_workers={"senior": 1},
    )

    assert REGISTRY.levels_by_role()["reviewer"] == ("junior", "senior")
    assert developer.capacity_by_level(3) == {"junior": 3, "senior": 1}


def test_overrides_disable_merge_and_add_roles() -> None:
    registry = RoleRegistry.from_overrides(
        {
            "architect": False,
            "ghost": False,
            "developer": {
                "models": {"senior": "openai/gpt-5"},
                "max_workers": {"junior": 4},
            },
            "designer": {"levels": ["junior", "senior"]},
        }
    )

    developer = registry.require("developer")
    designer = registry.require("designer")
    assert registry.require("architect").enabled is False
    assert "ghost" not in registry
    assert developer.models["senior"] == "openai/gpt-5"
    assert developer.models["junior"] == "anthropic/claude-haiku-4-5"
    assert developer.max_workers == {"junior": 4}
    assert designer.default_level == "senior"
    assert designer.display_name == "DESIGNER"
    assert designer.completion_results == ("done", "blocked")
    assert [role.id for role in registry.enabled_roles()] == [
        "developer",
        "tester",
        "reviewer",
        "designer",
    ]


def test_level_override_drops_stale_capacity_and_keeps_default() -> None:
    base = RoleRegistry.from_overrides({"developer": {"max_workers": {"junior": 1, "senior": 1}}})

    registry = RoleRegistry.from_overrides(
        {"developer": {"levels": ["medior", "senior"]}}, base=base
    )

    developer = registry.require("developer")
    assert developer.levels == ("medior", "senior")
    assert developer.default_level == "medior"
    assert developer.max_workers == {"senior": 1}


def test_invalid_overrides_are_rejected() -> None:
    with pytest.raises(ValueError, match="roles.tester must be a table or false"):
        RoleRegistry.from_overrides({"tester": "off"})
    with pytest.raises(ValueError, match="default_level"):
        RoleRegistry.from_overrides({"tester": {"default_level": "principal"}})
    with pytest.raises(ValueError, match="duplicate role id"):
        RoleRegistry([DEFAULT_ROLES[0], DEFAULT_ROLES[0]])


def test_role_config_validation() -> None:
    with pytest.raises(ValueError, match="levels must be unique"):
        RoleConfig(id="x", display_name="X", levels=("a", "a"), default_level="a")
    with pytest.raises(ValueError, match="unknown level"):
        RoleConfig(
            id="x", display_name="X", levels=("a",), default_level="a", max_workers={"b": 1}
        )
    with pytest.raises(ValueError, match=">= 0"):
        RoleConfig(
            id="x", display_name="X", levels=("a",), default_level="a", max_workers={"a": -1}
        )
    with pytest.raises(ValueError, match="completion_results"):
        RoleConfig(
            id="x", display_name="X", levels=("a",), default_level="a", completion_results=()
        )


@pytest.mark.parametrize(
    ("title", "description", "expected"),
    [
        ("Fix typo in README", "", "junior"),
        ("Refactor the session layer", "", "senior"),
        ("Add search endpoint to catalog API", "Return paged results.", "medior"),
        ("Tweak wording", "word " * 150, "medior"),
        ("Add export", "word " * 600, "senior"),
    ],
)
def test_three_level_heuristic(title: str, description: str, expected: str) -> None:
    selection = select_level(title, description, REGISTRY.require("developer"))

    assert selection.level == expected


def test_heuristic_reasons() -> None:
    developer = REGISTRY.require("developer")

    assert "typo" in select_level("Fix typo", "", developer).reason
    assert "long description" in select_level("Add export", "word " * 600, developer).reason
    assert select_level("Add export", "", developer).reason == "standard developer task"


def test_two_and_one_level_roles() -> None:
    reviewer = REGISTRY.require("reviewer")
    solo = RoleConfig(id="solo", display_name="SOLO", levels=("only",), default_level="only")

    assert select_level("Security review of login", "", reviewer).level == "senior"
    assert select_level("Fix typo", "", reviewer).level == "junior"
    assert select_level("Redesign everything", "", solo).level == "only"
