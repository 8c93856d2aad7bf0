import unittest
from datetime import date, time
from unittest import mock

from sqlalchemy import select

from app_case import AppTestCase, local_instant
from disciplined import db
from disciplined.models import FastingSettings, PushSendLog, PushSubscription, UserSettings
from disciplined.push import PushDeliveryError, PushGoneError
from disciplined.scheduler import (
    ALREADY_SENT,
    DAILY_REMINDER,
    NO_SUBSCRIPTION,
    SENT,
    SUPPRESSED,
    WINDOW_END,
    WINDOW_ENDING_SOON,
    WINDOW_START,
    NotificationScheduler,
)

CHICAGO = "America/Chicago"


def chicago(day, hour, minute, month=3, year=2026):
    return local_instant(CHICAGO, year, month, day, hour, minute)


class NotificationSchedulerTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.scheduler = NotificationScheduler.from_config(self.app.config, self.transport)

    def log_rows(self, user_id):
        return db.session.execute(
            select(PushSendLog).filter_by(user_id=user_id).order_by(PushSendLog.id)
        ).scalars().all()

    def sent_titles(self):
        return [payload["title"] for _, payload in self.transport.sent]

    def fasting_user(self, start=time(12, 0), hours=8, **settings):
        user_id = self.make_user(push_enabled=True, push_fasting_windows=True, **settings)
        self.add_fasting(user_id, start, hours)
        self.add_subscription(user_id)
        return user_id

    def test_window_start_sends_once_per_day(self):
        user_id = self.fasting_user()

        first = self.scheduler.run(now=chicago(10, 12, 2))
        second = self.scheduler.run(now=chicago(10, 12, 4))

        self.assertEqual(first.sent, 1)
        self.assertEqual(second.sent, 0)
        self.assertEqual([o.status for o in second.outcomes], [ALREADY_SENT])
        self.assertEqual(self.sent_titles(), ["Eating window is open"])

        rows = self.log_rows(user_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].kind, "window_start@720")
        self.assertEqual(rows[0].local_date, "2026-03-10")
        self.assertEqual(rows[0].local_min, 720)

    def test_payload_routes_to_today(self):
        self.fasting_user()
        self.scheduler.run(now=chicago(10, 12, 0))

        subscription, payload = self.transport.sent[0]
        self.assertEqual(payload["data"], {"url": "/today"})
        self.assertEqual(subscription["endpoint"], "https://push.example.com/sub/1")
        self.assertEqual(subscription["keys"], {"p256dh": "p256dh-key", "auth": "auth-key"})

    def test_only_invocations_inside_trailing_window_send(self):
        self.fasting_user()

        for minute in (55, 58, 59):
            self.scheduler.run(now=chicago(10, 11, minute))
        self.assertEqual(self.transport.sent, [])

        for minute in range(0, 10):
            self.scheduler.run(now=chicago(10, 12, minute))
        self.assertEqual(self.sent_titles(), ["Eating window is open"])

    def test_late_invocation_inside_window_still_sends(self):
        self.fasting_user()
        summary = self.scheduler.run(now=chicago(10, 12, 4))
        self.assertEqual(summary.sent, 1)

    def test_invocation_after_window_does_not_send(self):
        self.fasting_user()
        summary = self.scheduler.run(now=chicago(10, 12, 5))
        self.assertEqual(summary.sent, 0)
        self.assertEqual(summary.outcomes, [])

    def test_log_row_written_by_concurrent_run_is_absorbed(self):
        user_id = self.fasting_user()
        # Another run logged the event between our check and our insert.
        db.session.add(PushSendLog(user_id=user_id, kind="window_start@720", local_date="2026-03-10", local_min=720))
        db.session.commit()

        with mock.patch("disciplined.scheduler.already_sent", return_value=False):
            summary = self.scheduler.run(now=chicago(10, 12, 2))

        self.assertEqual(summary.sent, 1)
        self.assertEqual(len(self.log_rows(user_id)), 1)

    def test_next_day_sends_again(self):
        self.fasting_user()
        self.scheduler.run(now=chicago(10, 12, 1))
        self.scheduler.run(now=chicago(11, 12, 1))
        self.assertEqual(len(self.transport.sent), 2)

    def test_window_end_fires_at_start_plus_hours(self):
        user_id = self.fasting_user()
        summary = self.scheduler.run(now=chicago(10, 20, 3))
        self.assertEqual(summary.sent, 1)
        self.assertEqual(self.sent_titles(), ["Fasting window started"])
        self.assertEqual(self.log_rows(user_id)[0].kind, "window_end@1200")

    def test_eating_window_crossing_midnight(self):
        user_id = self.fasting_user(start=time(22, 0), hours=10)

        # 07:58 is still inside the window that opened the previous evening.
        self.assertEqual(self.scheduler.run(now=chicago(10, 7, 58)).outcomes, [])

        ended = self.scheduler.run(now=chicago(10, 8, 1))
        self.assertEqual([o.kind for o in ended.outcomes], [WINDOW_END])
        self.assertEqual(ended.sent, 1)

        opened = self.scheduler.run(now=chicago(10, 22, 0))
        self.assertEqual([o.kind for o in opened.outcomes], [WINDOW_START])
        self.assertEqual(opened.sent, 1)

        kinds = [(row.kind, row.local_date) for row in self.log_rows(user_id)]
        self.assertEqual(kinds, [("window_end@480", "2026-03-10"), ("window_start@1320", "2026-03-10")])

    def test_event_just_before_midnight_is_not_resent_after_midnight(self):
        user_id = self.fasting_user(start=time(23, 58), hours=8)

        self.scheduler.run(now=chicago(10, 23, 58))
        after_midnight = self.scheduler.run(now=chicago(11, 0, 1))

        self.assertEqual(len(self.transport.sent), 1)
        self.assertEqual([o.status for o in after_midnight.outcomes], [ALREADY_SENT])
        self.assertEqual(self.log_rows(user_id)[0].local_date, "2026-03-10")

    def test_changed_start_later_same_day_fires_under_new_minute(self):
        user_id = self.fasting_user()
        self.scheduler.run(now=chicago(10, 12, 0))

        fasting = db.session.execute(select(FastingSettings).filter_by(user_id=user_id)).scalar_one()
        fasting.eating_start = time(14, 0)
        db.session.commit()

        summary = self.scheduler.run(now=chicago(10, 14, 2))
        self.assertEqual(summary.sent, 1)
        self.assertEqual(len(self.transport.sent), 2)

    def test_per_trigger_notify_flags(self):
        user_id = self.make_user(push_enabled=True, push_fasting_windows=True)
        self.add_fasting(user_id, time(12, 0), 8, notify_window_start=False)
        self.add_subscription(user_id)

        self.assertEqual(self.scheduler.run(now=chicago(10, 12, 0)).sent, 0)
        self.assertEqual(self.scheduler.run(now=chicago(10, 20, 0)).sent, 1)

    def test_window_ending_soon(self):
        user_id = self.fasting_user(push_window_ending_soon=True)
        summary = self.scheduler.run(now=chicago(10, 19, 31))
        self.assertEqual([o.kind for o in summary.outcomes], [WINDOW_ENDING_SOON])
        self.assertEqual(summary.sent, 1)
        self.assertEqual(self.log_rows(user_id)[0].kind, "window_ending_soon@1170")

    def test_fasting_toggle_off_skips_window_events(self):
        user_id = self.make_user(push_enabled=True, push_fasting_windows=False)
        self.add_fasting(user_id, time(12, 0), 8)
        self.add_subscription(user_id)
        self.assertEqual(self.scheduler.run(now=chicago(10, 12, 0)).outcomes, [])

    def test_push_disabled_users_are_not_checked(self):
        user_id = self.make_user(push_enabled=False, push_fasting_windows=True)
        self.add_fasting(user_id, time(12, 0), 8)
        self.add_subscription(user_id)

        summary = self.scheduler.run(now=chicago(10, 12, 0))
        self.assertEqual(summary.users_checked, 0)
        self.assertEqual(self.transport.sent, [])

    def test_daily_reminder_sent_when_day_incomplete(self):
        user_id = self.make_user(push_enabled=True, push_daily_reminder=True, daily_reminder_time_min=1200)
        self.add_subscription(user_id)
        self.complete_day(user_id, date(2026, 3, 10), pillars=("train", "eat", "word"))

        summary = self.scheduler.run(now=chicago(10, 20, 2))

        self.assertEqual(summary.sent, 1)
        self.assertEqual(self.sent_titles(), ["Finish strong today"])
        self.assertEqual(self.log_rows(user_id)[0].kind, DAILY_REMINDER)

    def test_daily_reminder_suppressed_when_all_pillars_complete(self):
        user_id = self.make_user(push_enabled=True, push_daily_reminder=True, daily_reminder_time_min=1200)
        self.add_subscription(user_id)
        self.complete_day(user_id, date(2026, 3, 10))

        summary = self.scheduler.run(now=chicago(10, 20, 2))
        again = self.scheduler.run(now=chicago(10, 20, 4))

        self.assertEqual(self.transport.sent, [])
        self.assertEqual([o.status for o in summary.outcomes], [SUPPRESSED])
        self.assertEqual([o.status for o in again.outcomes], [ALREADY_SENT])
        rows = self.log_rows(user_id)
        self.assertEqual([(row.kind, row.local_date) for row in rows], [(DAILY_REMINDER, "2026-03-10")])

    def test_missing_subscription_is_skipped_without_logging(self):
        user_id = self.make_user(push_enabled=True, push_fasting_windows=True)
        self.add_fasting(user_id, time(12, 0), 8)

        summary = self.scheduler.run(now=chicago(10, 12, 1))
        self.assertEqual([o.status for o in summary.outcomes], [NO_SUBSCRIPTION])
        self.assertEqual(summary.skipped_no_subscription, 1)
        self.assertEqual(self.log_rows(user_id), [])

        self.add_subscription(user_id)
        later = self.scheduler.run(now=chicago(10, 12, 3))
        self.assertEqual([o.status for o in later.outcomes], [SENT])

    def test_gone_endpoint_removes_subscription(self):
        user_id = self.fasting_user()
        self.transport.error = PushGoneError("gone", status_code=410)

        summary = self.scheduler.run(now=chicago(10, 12, 0))

        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.subscriptions_removed, 1)
        self.assertEqual(self.log_rows(user_id), [])
        remaining = db.session.execute(select(PushSubscription).filter_by(user_id=user_id)).scalars().all()
        self.assertEqual(remaining, [])

    def test_send_failure_is_not_logged_and_retried(self):
        user_id = self.fasting_user()
        self.transport.error = PushDeliveryError("push service unavailable", status_code=503)

        failed = self.scheduler.run(now=chicago(10, 12, 0))
        self.assertEqual(failed.failed, 1)
        self.assertEqual(failed.subscriptions_removed, 0)
        self.assertEqual(self.log_rows(user_id), [])

        self.transport.error = None
        retried = self.scheduler.run(now=chicago(10, 12, 2))
        self.assertEqual(retried.sent, 1)

    def test_users_are_evaluated_independently(self):
        first = self.fasting_user()
        second = self.make_user(email="second@example.com", push_enabled=True, push_fasting_windows=True)
        self.add_fasting(second, time(12, 0), 8)

        summary = self.scheduler.run(now=chicago(10, 12, 0))
        self.assertEqual(summary.users_checked, 2)
        self.assertEqual({(o.user_id, o.status) for o in summary.outcomes}, {(first, SENT), (second, NO_SUBSCRIPTION)})

    def test_timezone_is_respected(self):
        user_id = self.make_user(tz="Asia/Tokyo", push_enabled=True, push_fasting_windows=True)
        self.add_fasting(user_id, time(9, 0), 8)
        self.add_subscription(user_id)

        summary = self.scheduler.run(now=local_instant("Asia/Tokyo", 2026, 3, 10, 9, 1))
        self.assertEqual(summary.sent, 1)
        self.assertEqual(self.log_rows(user_id)[0].local_date, "2026-03-10")

    def test_unknown_timezone_falls_back_to_default(self):
        user_id = self.make_user(tz="Not/AZone", push_enabled=True, push_fasting_windows=True)
        self.add_fasting(user_id, time(12, 0), 8)
        self.add_subscription(user_id)

        summary = self.scheduler.run(now=chicago(10, 12, 0))
        self.assertEqual(summary.sent, 1)

    def test_reminder_setting_change_takes_effect_next_run(self):
        user_id = self.make_user(push_enabled=True, push_daily_reminder=True, daily_reminder_time_min=600)
        self.add_subscription(user_id)
        self.assertEqual(self.scheduler.run(now=chicago(10, 10, 30)).sent, 0)

        settings = db.session.execute(select(UserSettings).filter_by(user_id=user_id)).scalar_one()
        settings.daily_reminder_time_min = 630
        db.session.commit()
        self.assertEqual(self.scheduler.run(now=chicago(10, 10, 31)).sent, 1)


if __name__ == "__main__":
    unittest.main()
