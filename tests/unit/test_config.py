from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from sqla_records import ConfigurationError, Settings, configure, get_settings, override_settings
from sqla_records.executor import convert_placeholders, to_database


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings.from_env({})

        assert settings.development is False
        assert settings.default_datasource == "default"
        assert settings.created_at_column == "created_at"
        assert settings.updated_at_column == "updated_at"

    @pytest.mark.parametrize(
        ("environ", "development"),
        [
            ({"SQLA_RECORDS_ENV": "development"}, True),
            ({"SQLA_RECORDS_ENV": "Development "}, True),
            ({"SQLA_RECORDS_ENV": "production"}, False),
            ({"SQLA_RECORDS_DEVELOPMENT": "1"}, True),
            ({"SQLA_RECORDS_DEVELOPMENT": "yes"}, True),
            ({"SQLA_RECORDS_ENV": "development", "SQLA_RECORDS_DEVELOPMENT": "0"}, False),
        ],
    )
    def test_development_flag(self, environ: dict[str, str], development: bool) -> None:  # noqa: FBT001
        assert Settings.from_env(environ).development is development

    def test_datasource_from_env(self) -> None:
        assert Settings.from_env({"SQLA_RECORDS_DATASOURCE": "replica"}).default_datasource == "replica"

    def test_override_is_restored(self) -> None:
        before = get_settings()

        with override_settings(development=True, updated_at_column="modified_at") as settings:
            assert get_settings() is settings
            assert settings.development
            assert settings.updated_at_column == "modified_at"

        assert get_settings() is before

    def test_configure_replaces_settings(self) -> None:
        before = get_settings()
        try:
            configured = configure(default_datasource="analytics")
            assert get_settings() is configured
            assert configured.default_datasource == "analytics"
        finally:
            configure(default_datasource=before.default_datasource)


class TestPlaceholders:
    def test_qmark_untouched(self) -> None:
        assert convert_placeholders("a = ? AND b = ?", "qmark") == "a = ? AND b = ?"

    def test_format_escapes_percent(self) -> None:
        assert convert_placeholders("name LIKE 'a%' AND id = ?", "format") == "name LIKE 'a%%' AND id = %s"

    def test_numeric(self) -> None:
        assert convert_placeholders("a = ? AND b = ?", "numeric") == "a = :1 AND b = :2"

    def test_named(self) -> None:
        assert convert_placeholders("a IN (?, ?)", "named") == "a IN (:p1, :p2)"

    def test_unknown_paramstyle(self) -> None:
        with pytest.raises(ConfigurationError):
            convert_placeholders("a = ?", "telepathy")

    def test_to_database(self) -> None:
        assert to_database(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert to_database(date(2024, 1, 2)) == "2024-01-02"
        assert to_database(5) == 5

    def test_to_database_keeps_offset_and_microseconds(self) -> None:
        aware = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone(timedelta(hours=2)))

        assert to_database(aware) == "2024-01-02 03:04:05.123456+02:00"

    def test_to_database_native_datetimes_pass_through(self) -> None:
        aware = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        assert to_database(aware, native_datetimes=True) is aware
        assert to_database(date(2024, 1, 2), native_datetimes=True) == date(2024, 1, 2)


class TestQuotedPlaceholders:
    @pytest.mark.parametrize(
        ("paramstyle", "expected"),
        [
            ("numeric", "note = '?' AND id = :1 AND \"what?\" = :2"),
            ("named", "note = '?' AND id = :p1 AND \"what?\" = :p2"),
            ("format", "note = '?' AND id = %s AND \"what?\" = %s"),
        ],
    )
    def test_question_marks_in_quotes_are_not_placeholders(self, paramstyle: str, expected: str) -> None:
        assert convert_placeholders("note = '?' AND id = ? AND \"what?\" = ?", paramstyle) == expected

    def test_escaped_quote_inside_literal(self) -> None:
        assert convert_placeholders("name = 'it''s ?' OR id = ?", "numeric") == "name = 'it''s ?' OR id = :1"
