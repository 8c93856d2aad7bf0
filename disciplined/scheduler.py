"""Push reminder scheduler.

Runs periodically (every few minutes). For each user with push enabled it
works out, in the user's own timezone, which daily events (eating window
open/close, daily reminder) happened within the last ``window_minutes`` and
sends one push per event per local day. ``push_send_log`` rows are the only
record of what was already sent.
"""

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import delete, select

from disciplined import db
from disciplined.local_clock import LocalClock, normalize_minute, resolve_timezone, utc_now
from disciplined.models import (
    FastingSettings,
    PushSendLog,
    PushSubscription,
    UserSettings,
    insert_if_absent,
)
from disciplined.pillars import all_pillars_complete
from disciplined.push import PushDeliveryError, PushGoneError, subscription_info

WINDOW_START = "window_start"
WINDOW_END = "window_end"
WINDOW_ENDING_SOON = "window_ending_soon"
DAILY_REMINDER = "daily_reminder"

SENT = "sent"
SUPPRESSED = "suppressed"
ALREADY_SENT = "already_sent"
NO_SUBSCRIPTION = "no_subscription"
SEND_FAILED = "send_failed"
ENDPOINT_GONE = "endpoint_gone"

APP_URL = "/today"


@dataclass(frozen=True)
class Trigger:
    kind: str
    target_minute: int
    title: str
    body: str

    @property
    def log_kind(self) -> str:
        # Window events carry their minute so a same-day settings change
        # still gets its own send.
        if self.kind == DAILY_REMINDER:
            return self.kind
        return f"{self.kind}@{self.target_minute}"

    def payload(self) -> dict:
        return {"title": self.title, "body": self.body, "data": {"url": APP_URL}}


@dataclass(frozen=True)
class TriggerOutcome:
    user_id: int
    kind: str
    local_date: str
    status: str
    message: str | None = None


@dataclass
class RunSummary:
    users_checked: int = 0
    outcomes: list = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def sent(self) -> int:
        return self.count(SENT)

    @property
    def suppressed(self) -> int:
        return self.count(SUPPRESSED)

    @property
    def skipped_no_subscription(self) -> int:
        return self.count(NO_SUBSCRIPTION)

    @property
    def failed(self) -> int:
        return self.count(SEND_FAILED) + self.count(ENDPOINT_GONE)

    @property
    def subscriptions_removed(self) -> int:
        return self.count(ENDPOINT_GONE)

    def describe(self) -> str:
        return (
            f"users={self.users_checked} sent={self.sent} suppressed={self.suppressed} "
            f"no_subscription={self.skipped_no_subscription} failed={self.failed} "
            f"subscriptions_removed={self.subscriptions_removed}"
        )


def fasting_triggers(fasting: FastingSettings, settings: UserSettings, ending_soon_minutes: int) -> list[Trigger]:
    start_minute = normalize_minute(fasting.start_minute)
    end_minute = normalize_minute(start_minute + fasting.eating_hours * 60)

    triggers = []
    if fasting.notify_window_start:
        triggers.append(
            Trigger(WINDOW_START, start_minute, "Eating window is open", "You're in your eating window now.")
        )
    if fasting.notify_window_end:
        triggers.append(
            Trigger(WINDOW_END, end_minute, "Fasting window started", "Eating window closed. You're fasting now.")
        )
    if settings.push_window_ending_soon and 0 < ending_soon_minutes < fasting.eating_hours * 60:
        triggers.append(
            Trigger(
                WINDOW_ENDING_SOON,
                normalize_minute(end_minute - ending_soon_minutes),
                "Eating window closing soon",
                f"Your eating window closes in {ending_soon_minutes} minutes.",
            )
        )
    return triggers


def daily_reminder_trigger(settings: UserSettings) -> Trigger:
    return Trigger(
        DAILY_REMINDER,
        normalize_minute(settings.daily_reminder_time_min),
        "Finish strong today",
        "You still have pillars to complete.",
    )


class NotificationScheduler:
    def __init__(
        self,
        transport,
        window_minutes: int = 5,
        ending_soon_minutes: int = 30,
        default_timezone: str = "America/Chicago",
    ):
        self.transport = transport
        self.window_minutes = max(1, int(window_minutes))
        self.ending_soon_minutes = int(ending_soon_minutes)
        self.default_timezone = default_timezone

    @classmethod
    def from_config(cls, config, transport) -> "NotificationScheduler":
        return cls(
            transport,
            window_minutes=config.get("PUSH_CRON_WINDOW_MINUTES", 5),
            ending_soon_minutes=config.get("PUSH_WINDOW_ENDING_SOON_MINUTES", 30),
            default_timezone=config.get("DEFAULT_TIMEZONE", "America/Chicago"),
        )

    def load_profiles(self):
        stmt = (
            select(UserSettings, FastingSettings)
            .outerjoin(FastingSettings, FastingSettings.user_id == UserSettings.user_id)
            .where(UserSettings.push_enabled.is_(True))
            .order_by(UserSettings.user_id)
        )
        return db.session.execute(stmt).all()

    def run(self, now: datetime | None = None) -> RunSummary:
        now = now or utc_now()
        summary = RunSummary()
        for settings, fasting in self.load_profiles():
            summary.users_checked += 1
            summary.outcomes.extend(self.process_user(settings, fasting, now))
        current_app.logger.info("push-cron complete. %s", summary.describe())
        return summary

    def due_triggers(self, settings: UserSettings, fasting: FastingSettings | None, clock: LocalClock) -> list[Trigger]:
        candidates = []
        if settings.push_fasting_windows and fasting is not None:
            candidates.extend(fasting_triggers(fasting, settings, self.ending_soon_minutes))
        if settings.push_daily_reminder and settings.daily_reminder_time_min is not None:
            candidates.append(daily_reminder_trigger(settings))
        return [
            trigger
            for trigger in candidates
            if clock.within_trailing_window(trigger.target_minute, self.window_minutes)
        ]

    def process_user(self, settings: UserSettings, fasting: FastingSettings | None, now: datetime) -> list[TriggerOutcome]:
        user_id = settings.user_id
        tz = resolve_timezone(settings.timezone, self.default_timezone)
        clock = LocalClock(now, tz)

        outcomes = []
        for trigger in self.due_triggers(settings, fasting, clock):
            # Keyed by the day the event happened, so a run just after
            # midnight does not resend yesterday's late event.
            local_date = clock.occurrence_date(trigger.target_minute)
            if already_sent(user_id, trigger.log_kind, local_date):
                outcomes.append(TriggerOutcome(user_id, trigger.kind, local_date, ALREADY_SENT))
                continue

            if trigger.kind == DAILY_REMINDER and all_pillars_complete(user_id, local_date, tz):
                mark_sent(user_id, trigger.log_kind, local_date, trigger.target_minute)
                outcomes.append(TriggerOutcome(user_id, trigger.kind, local_date, SUPPRESSED))
                continue

            status, message = self.deliver(user_id, trigger.payload())
            if status == SENT:
                mark_sent(user_id, trigger.log_kind, local_date, trigger.target_minute)
            outcomes.append(TriggerOutcome(user_id, trigger.kind, local_date, status, message))
        return outcomes

    def deliver(self, user_id: int, payload: dict) -> tuple[str, str | None]:
        subscription = db.session.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.updated_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if subscription is None:
            current_app.logger.info("push skipped for user %s: no_subscription", user_id)
            return NO_SUBSCRIPTION, None

        try:
            self.transport.send(subscription_info(subscription), payload)
        except PushGoneError as exc:
            current_app.logger.warning(
                "push endpoint gone for user %s (%s); removing subscription", user_id, exc.status_code
            )
            remove_subscriptions(user_id)
            return ENDPOINT_GONE, str(exc)
        except PushDeliveryError as exc:
            current_app.logger.warning("push send failed for user %s: %s", user_id, exc)
            return SEND_FAILED, str(exc)
        return SENT, None


def already_sent(user_id: int, kind: str, local_date: str) -> bool:
    stmt = (
        select(PushSendLog.id)
        .where(
            PushSendLog.user_id == user_id,
            PushSendLog.kind == kind,
            PushSendLog.local_date == local_date,
        )
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


def mark_sent(user_id: int, kind: str, local_date: str, local_min: int) -> None:
    # A concurrent run may have logged it first; the unique key absorbs that.
    insert_if_absent(
        PushSendLog,
        {"user_id": user_id, "kind": kind, "local_date": local_date, "local_min": local_min},
        ["user_id", "kind", "local_date"],
    )
    db.session.commit()


def remove_subscriptions(user_id: int) -> None:
    db.session.execute(delete(PushSubscription).where(PushSubscription.user_id == user_id))
    db.session.commit()
