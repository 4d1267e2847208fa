"""
Tests for lesson entitlement resolution.

Verifies:
- Free previews are granted without consulting enrollment
- Missing or inactive enrollment is DENIED_NO_ENROLLMENT
- Expired enrollment is DENIED_PAYWALL, even when drip would grant
- Drip by date and by days after enrollment, day-granular
- Optional module permission enforcement
- Every failure (missing lesson, bad config, store error, duplicate
  enrollment) resolves to ERROR, never GRANTED
- Repeated evaluation is stable
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from portal_guard.entitlements import (
    AccessStatus,
    EnrollmentRecord,
    EntitlementResolver,
    EntitlementStoreError,
    LessonContext,
    PermissionModel,
    SqlAlchemyEntitlementStore,
    resolve_lesson_access,
)
from portal_guard.models import Content, Enrollment, Module, Portal

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _seed_lesson(db, config=None, lesson_id="lesson-1", module_id="module-1", portal_id="portal-1"):
    if db.get(Portal, portal_id) is None:
        db.add(Portal(id=portal_id, name="Course"))
    if db.get(Module, module_id) is None:
        db.add(Module(id=module_id, portal_id=portal_id, title="Module"))
    db.add(Content(id=lesson_id, module_id=module_id, title="Lesson", config=config))
    db.commit()


def _enroll(db, user_id="user-1", portal_id="portal-1", **kwargs):
    kwargs.setdefault("enrolled_at", NOW - timedelta(days=30))
    kwargs.setdefault("permissions", {"access_all": True, "allowed_modules": []})
    db.add(Enrollment(user_id=user_id, portal_id=portal_id, **kwargs))
    db.commit()


@pytest.fixture
def resolver(db_session, settings):
    return EntitlementResolver(SqlAlchemyEntitlementStore(db_session), settings=settings)


class TestFreePreview:

    def test_free_preview_granted_without_enrollment(self, db_session, resolver):
        _seed_lesson(db_session, {"is_free_preview": True})

        assert resolver.resolve("lesson-1", "stranger", now=NOW) == AccessStatus.GRANTED

    def test_free_preview_ignores_expired_enrollment_and_drip(self, db_session, resolver):
        _seed_lesson(db_session, {
            "is_free_preview": True,
            "drip_enabled": True,
            "drip_type": "date",
            "release_date": "2030-01-01",
        })
        _enroll(db_session, expires_at=NOW - timedelta(days=1))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_free_preview_never_reads_enrollments(self, settings):
        store = Mock()
        store.get_lesson.return_value = LessonContext(
            lesson_id="lesson-1", module_id="m", portal_id="p", config={"is_free_preview": True}
        )
        resolver = EntitlementResolver(store, settings=settings)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED
        store.get_enrollments.assert_not_called()

    @pytest.mark.parametrize("config", [
        {"is_free_preview": True, "release_date": "not-a-date"},
        {"is_free_preview": True, "days_after_enrollment": -1},
        {"is_free_preview": True, "drip_enabled": True, "drip_type": "weekly"},
    ])
    def test_free_preview_with_broken_drip_fields_granted(self, db_session, resolver, config):
        _seed_lesson(db_session, config)

        assert resolver.resolve("lesson-1", "stranger", now=NOW) == AccessStatus.GRANTED


class TestEnrollment:

    def test_no_enrollment_denied(self, db_session, resolver):
        _seed_lesson(db_session, {})

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.DENIED_NO_ENROLLMENT

    def test_enrollment_in_other_portal_denied(self, db_session, resolver):
        _seed_lesson(db_session, {})
        db_session.add(Portal(id="portal-2", name="Other"))
        db_session.commit()
        _enroll(db_session, portal_id="portal-2")

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.DENIED_NO_ENROLLMENT

    def test_inactive_enrollment_denied(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, is_active=False)

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.DENIED_NO_ENROLLMENT
        assert decision.reason == "enrollment_inactive"

    def test_active_enrollment_without_drip_granted(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": False})
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_null_config_is_plain_lesson(self, db_session, resolver):
        _seed_lesson(db_session, None)
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED


class TestPaywall:

    def test_expired_enrollment_is_paywalled(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, expires_at=NOW - timedelta(minutes=1))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.DENIED_PAYWALL

    def test_paywall_wins_over_released_drip(self, db_session, resolver):
        _seed_lesson(db_session, {
            "drip_enabled": True,
            "drip_type": "days_after_enrollment",
            "days_after_enrollment": 1,
        })
        _enroll(db_session, expires_at=NOW - timedelta(days=2))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.DENIED_PAYWALL

    def test_future_expiry_granted(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, expires_at=NOW + timedelta(days=30))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_lifetime_enrollment_never_expires(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, expires_at=None)

        assert resolver.resolve("lesson-1", "user-1", now=NOW + timedelta(days=3650)) == AccessStatus.GRANTED


class TestDrip:

    def _days_rule(self, days):
        return {"drip_enabled": True, "drip_type": "days_after_enrollment", "days_after_enrollment": days}

    def test_days_after_enrollment_not_yet_released(self, db_session, resolver):
        _seed_lesson(db_session, self._days_rule(7))
        _enroll(db_session, enrolled_at=NOW - timedelta(days=3))

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.DENIED_DRIP
        assert decision.unlock_date == date(2024, 3, 14)

    def test_days_after_enrollment_released(self, db_session, resolver):
        _seed_lesson(db_session, self._days_rule(7))
        _enroll(db_session, enrolled_at=NOW - timedelta(days=8))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_unlocks_on_the_unlock_day_regardless_of_time(self, db_session, resolver):
        _seed_lesson(db_session, self._days_rule(7))
        # Enrolled late in the evening, checked early in the morning 7 days later.
        _enroll(db_session, enrolled_at=datetime(2024, 3, 3, 23, 50, tzinfo=timezone.utc))

        early = datetime(2024, 3, 10, 0, 5, tzinfo=timezone.utc)
        assert resolver.resolve("lesson-1", "user-1", now=early) == AccessStatus.GRANTED

        day_before = datetime(2024, 3, 9, 23, 59, tzinfo=timezone.utc)
        assert resolver.resolve("lesson-1", "user-1", now=day_before) == AccessStatus.DENIED_DRIP

    def test_release_date_in_future_denied(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": True, "drip_type": "date", "release_date": "2024-03-11"})
        _enroll(db_session)

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.DENIED_DRIP
        assert decision.to_dict()["unlock_date"] == "2024-03-11"

    def test_release_date_today_granted(self, db_session, resolver):
        _seed_lesson(db_session, {
            "drip_enabled": True,
            "drip_type": "date",
            "release_date": "2024-03-10T23:00:00Z",
        })
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_drip_disabled_ignores_rule(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": False, "drip_type": "date", "release_date": "2030-01-01"})
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_drip_uses_configured_timezone(self, db_session, settings):
        from dataclasses import replace

        resolver = EntitlementResolver(
            SqlAlchemyEntitlementStore(db_session),
            settings=replace(settings, drip_timezone="America/Sao_Paulo"),
        )
        _seed_lesson(db_session, {"drip_enabled": True, "drip_type": "date", "release_date": "2024-03-10"})
        _enroll(db_session)

        # 01:00 UTC on the 10th is still the 9th in Sao Paulo (UTC-3).
        late_evening = datetime(2024, 3, 10, 1, 0, tzinfo=timezone.utc)
        assert resolver.resolve("lesson-1", "user-1", now=late_evening) == AccessStatus.DENIED_DRIP


class TestModulePermissions:

    def test_not_enforced_by_default(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, permissions={"access_all": False, "allowed_modules": []})

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_enforced_module_not_granted(self, db_session, settings):
        resolver = EntitlementResolver(
            SqlAlchemyEntitlementStore(db_session), settings=settings, enforce_module_permissions=True
        )
        _seed_lesson(db_session, {})
        _enroll(db_session, permissions={"access_all": False, "allowed_modules": ["module-9"]})

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.DENIED_NO_ENROLLMENT
        assert decision.reason == "module_not_granted"

    def test_enforced_module_granted_via_legacy_flag(self, db_session, settings):
        resolver = EntitlementResolver(
            SqlAlchemyEntitlementStore(db_session), settings=settings, enforce_module_permissions=True
        )
        _seed_lesson(db_session, {})
        _enroll(db_session, permissions={"access_all_modules": True})

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_expiry_checked_before_module_grant(self, db_session, settings):
        resolver = EntitlementResolver(
            SqlAlchemyEntitlementStore(db_session), settings=settings, enforce_module_permissions=True
        )
        _seed_lesson(db_session, {})
        _enroll(db_session, permissions={}, expires_at=NOW - timedelta(days=1))

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.DENIED_PAYWALL


class TestFailClosed:

    def test_missing_lesson_is_error(self, resolver):
        decision = resolver.evaluate("nope", "user-1", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "LESSON_NOT_FOUND"

    def test_unknown_drip_type_is_error(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": True, "drip_type": "weekly"})
        _enroll(db_session)

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "DRIP_CONFIG_INVALID"

    def test_unparseable_release_date_is_error(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": True, "drip_type": "date", "release_date": "next tuesday"})
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.ERROR

    def test_stale_drip_fields_ignored_when_drip_disabled(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": False, "drip_type": "weekly", "release_date": "next tuesday"})
        _enroll(db_session)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.GRANTED

    def test_non_object_config_is_error(self, db_session, resolver):
        _seed_lesson(db_session, ["is_free_preview"])

        decision = resolver.evaluate("lesson-1", "stranger", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "DRIP_CONFIG_INVALID"

    def test_malformed_permissions_is_error(self, db_session, resolver):
        _seed_lesson(db_session, {})
        _enroll(db_session, permissions=["module-1"])

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "PERMISSIONS_INVALID"

    def test_store_error_is_error(self, settings):
        store = Mock()
        store.get_lesson.side_effect = EntitlementStoreError("db down")
        resolver = EntitlementResolver(store, settings=settings)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.ERROR

    def test_statement_timeout_maps_to_timeout_code(self, settings):
        session = Mock()
        session.execute.side_effect = OperationalError(
            "SELECT ...", {}, Exception("canceling statement due to statement timeout")
        )
        resolver = EntitlementResolver(SqlAlchemyEntitlementStore(session), settings=settings)

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "ENTITLEMENT_STORE_TIMEOUT"

    def test_unexpected_exception_is_error(self, settings):
        store = Mock()
        store.get_lesson.side_effect = RuntimeError("boom")
        resolver = EntitlementResolver(store, settings=settings)

        assert resolver.resolve("lesson-1", "user-1", now=NOW) == AccessStatus.ERROR

    def test_duplicate_enrollments_are_error(self, settings):
        store = Mock()
        store.get_lesson.return_value = LessonContext("lesson-1", "m", "p", {})
        record = EnrollmentRecord(user_id="user-1", portal_id="p", enrolled_at=NOW, permissions=PermissionModel())
        store.get_enrollments.return_value = [record, record]
        resolver = EntitlementResolver(store, settings=settings)

        decision = resolver.evaluate("lesson-1", "user-1", now=NOW)

        assert decision.status == AccessStatus.ERROR
        assert decision.error_code == "ENROLLMENT_CONFLICT"

    def test_denials_are_logged(self, db_session, resolver, caplog):
        _seed_lesson(db_session, {})

        with caplog.at_level("WARNING", logger="portal_guard.security_events"):
            resolver.resolve("lesson-1", "user-1", now=NOW)

        assert any("access_denied" in r.getMessage() for r in caplog.records)


class TestIdempotence:

    def test_repeated_resolution_is_stable(self, db_session, resolver):
        _seed_lesson(db_session, {"drip_enabled": True, "drip_type": "days_after_enrollment", "days_after_enrollment": 7})
        _enroll(db_session, enrolled_at=NOW - timedelta(days=3))

        results = {resolver.resolve("lesson-1", "user-1", now=NOW) for _ in range(5)}

        assert results == {AccessStatus.DENIED_DRIP}
        assert db_session.query(Enrollment).count() == 1


class TestResolveLessonAccess:

    def test_uses_given_session(self, db_session):
        _seed_lesson(db_session, {"is_free_preview": True})

        assert resolve_lesson_access("lesson-1", "user-1", session=db_session) == AccessStatus.GRANTED

    def test_no_database_configured_is_error(self, monkeypatch):
        def _fail():
            raise RuntimeError("DATABASE_URL environment variable is required")

        monkeypatch.setattr("portal_guard.database.session.get_session_factory", _fail)

        assert resolve_lesson_access("lesson-1", "user-1") == AccessStatus.ERROR
