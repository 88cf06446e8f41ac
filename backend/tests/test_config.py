"""Settings parsing tests."""

import pytest
from pydantic import ValidationError

from ea_plan_ai.config import Settings, parse_id_list
from ea_plan_ai.services.user_profiles import StaticUserProfileLookup, UserProfile


def test_parse_id_list_accepts_json_and_separated_values() -> None:
    assert parse_id_list("") == []
    assert parse_id_list("gpt-4o, claude-3-sonnet;gemini-pro") == [
        "gpt-4o",
        "claude-3-sonnet",
        "gemini-pro",
    ]
    assert parse_id_list('["u1", "u2", "u1"]') == ["u1", "u2"]
    assert parse_id_list("[u1, u2") == ["u1", "u2"]


def test_settings_expose_parsed_lists() -> None:
    settings = Settings(
        _env_file=None,
        ai_fallback_models="claude-3-sonnet gpt-4o",
        admin_user_ids="root",
        subadmin_user_ids="ops1,ops2",
    )

    assert settings.fallback_model_ids == ["claude-3-sonnet", "gpt-4o"]
    assert settings.admin_user_id_list == ["root"]
    assert settings.subadmin_user_id_list == ["ops1", "ops2"]


def test_settings_strip_keys() -> None:
    settings = Settings(_env_file=None, openai_api_key="  sk-live \n")

    assert settings.openai_api_key == "sk-live"


def test_settings_reject_invalid_fallback_values() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ai_fallback_max_retries=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ai_fallback_retry_delay_ms=-1)


def test_static_profile_lookup_resolves_roles() -> None:
    lookup = StaticUserProfileLookup(
        admin_ids=["root", "both"],
        subadmin_ids=["ops", "both"],
        levels={"ops": 3},
    )

    assert lookup("root") == UserProfile(role="admin")
    assert lookup("both").role == "admin"
    assert lookup("ops") == UserProfile(role="subadmin", level=3)
    assert lookup("someone") == UserProfile()
