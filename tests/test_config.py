import math

import pytest

from mnemosyne import EngineConfig
from mnemosyne.config import (
    ENV_PROFILES_VAR,
    ConfigError,
    Difficulty,
    MutationPolicy,
    ProfileNotFound,
    RoundSettings,
    load_profiles,
    load_settings,
)


def test_defaults_match_game_rules() -> None:
    settings = RoundSettings()

    assert settings.difficulty is Difficulty.EASY
    assert settings.initial_objects == 3
    assert settings.memorize_seconds == 10
    assert settings.identify_seconds == 60
    assert settings.transition_pause == 2
    assert (settings.reward, settings.penalty) == (10, 5)
    assert settings.min_alter_angle == pytest.approx(0.2 * math.pi)
    assert settings.max_alter_angle == pytest.approx(0.8 * math.pi)


def test_difficulty_policies() -> None:
    settings = RoundSettings()

    assert settings.policy_for(Difficulty.EASY) == MutationPolicy(1, 2)
    assert settings.policy_for("medium") == MutationPolicy(2, 3)
    assert settings.policy_for(Difficulty.HARD).total == 7
    assert settings.with_difficulty("hard").policy_for() == MutationPolicy(3, 4)


def test_packaged_profiles_load() -> None:
    assert "default" in load_profiles()

    practice = load_settings("practice")
    assert practice.memorize_seconds == 20
    assert practice.penalty == 0

    arcade = load_settings("arcade")
    assert arcade.difficulty is Difficulty.HARD
    assert arcade.policy_for() == MutationPolicy(3, 5)
    assert arcade.policy_for(Difficulty.EASY) == MutationPolicy(1, 2)


def test_unknown_profile_raises() -> None:
    with pytest.raises(ProfileNotFound):
        load_settings("does-not-exist")


def test_profiles_file_can_be_overridden(tmp_path, monkeypatch) -> None:
    profiles = tmp_path / "profiles.yaml"
    profiles.write_text("quick:\n  memorize_seconds: 3\n  identify_seconds: 15\n", encoding="utf-8")
    monkeypatch.setenv(ENV_PROFILES_VAR, str(profiles))

    quick = load_settings("quick")
    assert (quick.memorize_seconds, quick.identify_seconds) == (3, 15)
    assert load_settings("default") == RoundSettings()


def test_invalid_values_raise_config_error(tmp_path) -> None:
    profiles = tmp_path / "profiles.yaml"
    profiles.write_text("broken:\n  reward: -1\nweird:\n  difficulty: nightmare\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings("broken", path=profiles)
    with pytest.raises(ConfigError):
        load_settings("weird", path=profiles)


def test_negative_policy_rejected() -> None:
    with pytest.raises(ConfigError):
        MutationPolicy(alter_count=-1, add_count=0)


def test_engine_config_applies_difficulty_override() -> None:
    settings = EngineConfig(profile="default", difficulty="medium").round_settings()

    assert settings.difficulty is Difficulty.MEDIUM
    assert settings.memorize_seconds == 10


def test_alter_angle_range_from_profile(tmp_path) -> None:
    profiles = tmp_path / "profiles.yaml"
    profiles.write_text("wide:\n  min_alter_angle: 0.5\n  max_alter_angle: 3.0\n", encoding="utf-8")

    wide = load_settings("wide", path=profiles)

    assert (wide.min_alter_angle, wide.max_alter_angle) == (0.5, 3.0)
    payload = wide.to_dict()
    assert payload["minAlterAngle"] == 0.5
    assert payload["maxAlterAngle"] == 3.0
    assert load_settings("practice").min_alter_angle == 1.1


def test_inverted_alter_angle_range_rejected(tmp_path) -> None:
    profiles = tmp_path / "profiles.yaml"
    profiles.write_text("odd:\n  min_alter_angle: 2.0\n  max_alter_angle: 1.0\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings("odd", path=profiles)
