"""
Tests for the pure pieces of entitlement evaluation.

Verifies:
- PermissionModel parsing (including the legacy access_all_modules key),
  grant/revoke and module checks
- ContentDripConfig parsing and rejection of malformed blobs
- Drip unlock-date arithmetic and the "strictly after today" rule
"""

from datetime import date, datetime, timezone

import pytest

from portal_guard.entitlements import (
    ContentDripConfig,
    DripConfigError,
    DripType,
    PermissionModel,
    PermissionModelError,
    get_timezone,
    is_released,
    to_day,
    unlock_date,
)


class TestPermissionModel:

    def test_full_access_allows_any_module(self):
        model = PermissionModel.full_access()

        assert model.allows_module("anything")

    def test_allow_list(self):
        model = PermissionModel.from_json({"access_all": False, "allowed_modules": ["m1", "m2"]})

        assert model.allows_module("m1")
        assert not model.allows_module("m3")

    def test_legacy_key_is_synonym(self):
        assert PermissionModel.from_json({"access_all_modules": True}).access_all is True

    def test_missing_json_grants_nothing(self):
        model = PermissionModel.from_json(None)

        assert not model.access_all
        assert not model.allows_module("m1")

    def test_grant_and_revoke_return_new_instances(self):
        model = PermissionModel()
        granted = model.grant("m1")

        assert granted.allows_module("m1")
        assert not model.allows_module("m1")
        assert not granted.revoke("m1").allows_module("m1")

    def test_round_trip_json_shape(self):
        model = PermissionModel.from_json({"allowed_modules": ["b", "a"]})

        assert model.to_json() == {"access_all": False, "allowed_modules": ["a", "b"]}

    @pytest.mark.parametrize("raw", [
        ["m1"],
        "all",
        {"access_all": "yes"},
        {"allowed_modules": "m1"},
    ])
    def test_malformed_permissions_rejected(self, raw):
        with pytest.raises(PermissionModelError):
            PermissionModel.from_json(raw)


class TestContentDripConfig:

    def test_empty_blob_is_plain_lesson(self):
        config = ContentDripConfig.from_blob({})

        assert not config.is_free_preview
        assert not config.drip_enabled

    def test_parses_days_rule(self):
        config = ContentDripConfig.from_blob({
            "drip_enabled": True,
            "drip_type": "days_after_enrollment",
            "days_after_enrollment": "7",
            "extra_key": "ignored",
        })

        assert config.drip_type == DripType.DAYS_AFTER_ENROLLMENT
        assert config.days_after_enrollment == 7

    def test_parses_release_datetime_with_z_suffix(self):
        config = ContentDripConfig.from_blob({
            "drip_enabled": True,
            "drip_type": "date",
            "release_date": "2024-05-01T10:00:00Z",
        })

        assert config.release_date == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_unknown_type_tolerated_when_drip_disabled(self):
        config = ContentDripConfig.from_blob({"drip_enabled": False, "drip_type": "weekly"})

        assert config.drip_type is None

    def test_drip_fields_ignored_when_drip_disabled(self):
        config = ContentDripConfig.from_blob({"release_date": "31/12/2024", "days_after_enrollment": -1})

        assert config == ContentDripConfig()

    def test_free_preview_skips_drip_fields(self):
        config = ContentDripConfig.from_blob({
            "is_free_preview": True,
            "drip_enabled": True,
            "drip_type": "weekly",
            "release_date": "not-a-date",
        })

        assert config.is_free_preview is True
        assert config.drip_enabled is False

    @pytest.mark.parametrize("raw, field", [
        ({"drip_enabled": True}, "drip_type"),
        ({"drip_enabled": True, "drip_type": "weekly"}, "drip_type"),
        ({"drip_enabled": "maybe"}, "drip_enabled"),
        ({"is_free_preview": "maybe"}, "is_free_preview"),
        ({"drip_enabled": True, "drip_type": "date", "release_date": "31/12/2024"}, "release_date"),
        ({"drip_enabled": True, "drip_type": "days_after_enrollment", "days_after_enrollment": -1}, "days_after_enrollment"),
        ({"drip_enabled": True, "drip_type": "days_after_enrollment", "days_after_enrollment": 1.5}, "days_after_enrollment"),
        ({"drip_enabled": True, "drip_type": "days_after_enrollment", "days_after_enrollment": True}, "days_after_enrollment"),
    ])
    def test_malformed_blob_rejected(self, raw, field):
        with pytest.raises(DripConfigError) as exc_info:
            ContentDripConfig.from_blob(raw)

        assert exc_info.value.field == field

    def test_non_object_blob_rejected(self):
        with pytest.raises(DripConfigError):
            ContentDripConfig.from_blob("drip")


class TestDripSchedule:

    ENROLLED = datetime(2024, 3, 1, 18, 30, tzinfo=timezone.utc)

    def _days(self, n):
        return ContentDripConfig(drip_enabled=True, drip_type=DripType.DAYS_AFTER_ENROLLMENT, days_after_enrollment=n)

    def test_unlock_date_discards_time_of_day(self):
        assert unlock_date(self._days(7), self.ENROLLED) == date(2024, 3, 8)

    def test_released_on_unlock_day(self):
        verdict = is_released(self._days(7), self.ENROLLED, date(2024, 3, 8))

        assert verdict.released
        assert verdict.unlock_date == date(2024, 3, 8)

    def test_denied_day_before_unlock(self):
        assert not is_released(self._days(7), self.ENROLLED, date(2024, 3, 7)).released

    def test_zero_days_releases_immediately(self):
        assert is_released(self._days(0), self.ENROLLED, date(2024, 3, 1)).released

    def test_date_rule_without_release_date_releases(self):
        config = ContentDripConfig(drip_enabled=True, drip_type=DripType.DATE)

        assert is_released(config, self.ENROLLED, date(2000, 1, 1)).released

    def test_date_rule(self):
        config = ContentDripConfig(drip_enabled=True, drip_type=DripType.DATE, release_date=date(2024, 6, 1))

        assert not is_released(config, self.ENROLLED, date(2024, 5, 31)).released
        assert is_released(config, self.ENROLLED, date(2024, 6, 1)).released

    def test_drip_disabled_has_no_unlock_date(self):
        assert unlock_date(ContentDripConfig(), self.ENROLLED) is None

    def test_to_day_converts_to_timezone(self):
        tz = get_timezone("Asia/Tokyo")

        assert to_day(datetime(2024, 3, 1, 18, 30, tzinfo=timezone.utc), tz) == date(2024, 3, 2)

    def test_naive_datetime_taken_as_utc(self):
        assert to_day(datetime(2024, 3, 1, 23, 0)) == date(2024, 3, 1)
