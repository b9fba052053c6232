from __future__ import annotations

from datetime import datetime, timezone

import pytest

from laptap_core import (
    CLEAR,
    UNCHANGED,
    InputSanitizer,
    SetTo,
    ValidationError,
    field_update_from,
    normalize_slug,
)
from laptap_core.updates import resolve
from laptap_core.validation import (
    CreateParticipantInput,
    CreateRaceInput,
    RecordTapInput,
    RemoveParticipantsInput,
    UpdateCategoryInput,
    UpdateParticipantInput,
    UpdateRaceInput,
    parse_input,
)


def test_sanitize_string():
    assert InputSanitizer.sanitize_string("  Ann\x00 \n") == "Ann"
    assert InputSanitizer.sanitize_string(42) == "42"
    assert InputSanitizer.sanitize_string("abcdef", max_length=3) == "abc"
    assert InputSanitizer.sanitize_optional("   ") is None
    assert InputSanitizer.sanitize_optional(None) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Spring Cup 2024", "spring-cup-2024"),
        ("  --Ночная гонка!-- ", "ночная-гонка"),
        ("a__b  c", "a-b-c"),
        ("!!!", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_slug(raw, expected):
    assert normalize_slug(raw) == expected


def test_normalize_slug_respects_max_length():
    assert normalize_slug("abc def ghi", max_length=4) == "abc"


def test_field_update_from_mapping():
    data = {"team": None, "name": "  ", "bib": 7}
    assert field_update_from(data, "category") is UNCHANGED
    assert field_update_from(data, "team") is CLEAR
    assert field_update_from(data, "name") is CLEAR
    assert field_update_from(data, "bib") == SetTo(7)


def test_resolve_tri_state():
    assert resolve(UNCHANGED, "old") == "old"
    assert resolve(CLEAR, "old") is None
    assert resolve(SetTo("new"), "old") == "new"


def test_update_input_distinguishes_missing_from_null():
    payload = parse_input(UpdateParticipantInput, {"team": None, "categoryId": "c1"})
    assert payload.field_update("name") is UNCHANGED
    assert payload.field_update("team") is CLEAR
    assert payload.field_update("category_id") == SetTo("c1")
    assert payload.has_changes()
    assert not parse_input(UpdateParticipantInput, {}).has_changes()


def test_accepts_camel_case_and_field_names():
    by_alias = parse_input(CreateRaceInput, {"name": "Cup", "totalLaps": 3, "tapCooldownSeconds": 15})
    by_name = parse_input(CreateRaceInput, name="Cup", total_laps=3, tap_cooldown_seconds=15)
    assert by_alias == by_name
    assert by_alias.slug is None


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"name": "", "totalLaps": 3}, "Название гонки обязательно"),
        ({"name": "Cup", "totalLaps": -1}, "Количество кругов должно быть больше нуля"),
        ({"name": "Cup", "totalLaps": "five"}, "Количество кругов должно быть больше нуля"),
        ({"name": "Cup", "totalLaps": 3, "tapCooldownSeconds": -5}, "Кулдаун отметок должен быть неотрицательным"),
    ],
)
def test_race_input_messages(fields, message):
    with pytest.raises(ValidationError) as excinfo:
        parse_input(CreateRaceInput, fields)
    assert excinfo.value.message == message
    assert excinfo.value.status_code == 400


def test_missing_required_field_names_location():
    with pytest.raises(ValidationError) as excinfo:
        parse_input(CreateRaceInput, {"name": "Cup"})
    assert "totalLaps" in excinfo.value.message or "total_laps" in excinfo.value.message


def test_participant_bib_rules():
    assert parse_input(CreateParticipantInput, bib=" 17 ", name="Ann").bib == 17
    for bad in (0, -3, "x", True):
        with pytest.raises(ValidationError) as excinfo:
            parse_input(CreateParticipantInput, bib=bad, name="Ann")
        assert excinfo.value.message == "Стартовый номер должен быть положительным числом"
    with pytest.raises(ValidationError) as excinfo:
        parse_input(CreateParticipantInput, bib=1, name=" ")
    assert excinfo.value.message == "Имя участника обязательно"


def test_birth_date_accepts_iso_and_epoch():
    iso = parse_input(CreateParticipantInput, bib=1, name="Ann", birthDate="2001-02-03")
    expected = int(datetime(2001, 2, 3, tzinfo=timezone.utc).timestamp() * 1000)
    assert iso.birth_date == expected
    assert parse_input(CreateParticipantInput, bib=1, name="Ann", birthDate=expected).birth_date == expected
    with pytest.raises(ValidationError) as excinfo:
        parse_input(CreateParticipantInput, bib=1, name="Ann", birthDate="yesterday")
    assert excinfo.value.message == "Некорректная дата рождения"


def test_started_at_blank_clears():
    payload = parse_input(UpdateRaceInput, startedAt="")
    assert payload.field_update("started_at") is CLEAR
    payload = parse_input(UpdateRaceInput, startedAt="2024-05-01T10:00:00Z")
    assert payload.field_update("started_at") == SetTo(1714557600000)


def test_tap_input():
    tap = parse_input(RecordTapInput, bib="12", source="rfid")
    assert (tap.bib, tap.source, tap.confirm) == (12, "manual", False)
    assert parse_input(RecordTapInput, bib=3, source="system").source == "system"
    with pytest.raises(ValidationError) as excinfo:
        parse_input(RecordTapInput, bib="twelve")
    assert excinfo.value.message == "Некорректный номер гонщика"


def test_remove_participants_input_dedups():
    payload = parse_input(RemoveParticipantsInput, {"ids": ["a", " a ", "b", "", 3]})
    assert payload.ids == ["a", "b"]
    with pytest.raises(ValidationError) as excinfo:
        parse_input(RemoveParticipantsInput, {"ids": []})
    assert excinfo.value.message == "Не переданы участники для удаления"


def test_blank_name_on_category_and_participant_update_is_not_an_error():
    assert parse_input(UpdateCategoryInput, name="  ").field_update("name") is CLEAR
    assert parse_input(UpdateParticipantInput, name="").field_update("name") is CLEAR
    with pytest.raises(ValidationError):
        parse_input(UpdateRaceInput, name="")
