from dataclasses import dataclass
from datetime import date, datetime, timedelta

from blinker import Namespace
from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from disciplined import db
from disciplined.local_clock import LocalClock, entry_date_for_local_date, utc_now
from disciplined.models import PILLARS, DailyEntry, DailyPillar, Meal, MealItem, insert_if_absent

_signals = Namespace()

# Sent after a pillar's completion flag changes: sender is the app,
# kwargs are user_id, pillar, completed and source.
pillar_updated = _signals.signal("pillar-updated")

NO_CHANGE = "no_change"
UPDATED = "updated"
FAILED = "failed"


@dataclass(frozen=True)
class RecomputeResult:
    status: str
    pillar: str
    completed: bool | None = None
    reason: str | None = None

    @property
    def changed(self) -> bool:
        return self.status == UPDATED

    @classmethod
    def no_change(cls, pillar, completed=None, reason=None):
        return cls(NO_CHANGE, pillar, completed=completed, reason=reason)

    @classmethod
    def updated(cls, pillar, completed):
        return cls(UPDATED, pillar, completed=completed)

    @classmethod
    def failed(cls, pillar, reason):
        return cls(FAILED, pillar, reason=reason)

    def to_dict(self):
        payload = {"status": self.status, "pillar": self.pillar, "changed": self.changed}
        if self.completed is not None:
            payload["completed"] = self.completed
        if self.reason:
            payload["reason"] = self.reason
        return payload


def today_entry_date(tz, now: datetime | None = None) -> date:
    clock = LocalClock(now or utc_now(), tz)
    return entry_date_for_local_date(clock.local_date, tz)


def get_or_create_entry(user_id: int, entry_date: date) -> DailyEntry:
    insert_if_absent(
        DailyEntry,
        {"user_id": user_id, "entry_date": entry_date},
        ["user_id", "entry_date"],
    )
    return db.session.execute(
        select(DailyEntry).filter_by(user_id=user_id, entry_date=entry_date)
    ).scalar_one()


def ensure_pillar_row(entry_id: int, pillar: str) -> DailyPillar:
    insert_if_absent(
        DailyPillar,
        {
            "entry_id": entry_id,
            "pillar": pillar,
            "completed": False,
            "completed_at": None,
            "source": None,
        },
        ["entry_id", "pillar"],
    )
    return db.session.execute(
        select(DailyPillar).filter_by(entry_id=entry_id, pillar=pillar)
    ).scalar_one()


def _notify(user_id: int, pillar: str, completed: bool, source: str | None) -> None:
    pillar_updated.send(
        current_app._get_current_object(),
        user_id=user_id,
        pillar=pillar,
        completed=completed,
        source=source,
    )


def has_meal_items(user_id: int, entry_date: date) -> bool:
    stmt = (
        select(MealItem.id)
        .join(Meal, MealItem.meal_id == Meal.id)
        .where(Meal.user_id == user_id, Meal.meal_date == entry_date)
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


# Pillars without a rule are never auto-derived.
PILLAR_RULES = {
    "eat": has_meal_items,
}


def recompute_pillar(user_id: int, pillar: str, tz, now: datetime | None = None) -> RecomputeResult:
    """Re-derive a pillar's completion for today from logged data.

    A row last set by the user (``source == "manual"``) is left alone. Data
    access failures are reported as a ``failed`` result instead of raised.
    """
    if pillar not in PILLARS:
        return RecomputeResult.failed(pillar, "unknown_pillar")
    rule = PILLAR_RULES.get(pillar)
    if rule is None:
        return RecomputeResult.no_change(pillar, reason="no_rule")

    now = now or utc_now()
    entry_date = today_entry_date(tz, now)
    try:
        entry = get_or_create_entry(user_id, entry_date)
        row = ensure_pillar_row(entry.id, pillar)

        completed = bool(row.completed)
        if row.source == "manual":
            db.session.commit()
            return RecomputeResult.no_change(pillar, completed=completed, reason="manual")

        should_complete = bool(rule(user_id, entry_date))
        if completed == should_complete:
            db.session.commit()
            return RecomputeResult.no_change(pillar, completed=completed)

        row.completed = should_complete
        row.completed_at = now.replace(tzinfo=None) if should_complete else None
        row.source = source = "auto" if should_complete else None
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("recompute_pillar(%s) failed for user %s: %s", pillar, user_id, exc)
        return RecomputeResult.failed(pillar, exc.__class__.__name__)

    _notify(user_id, pillar, should_complete, source)
    return RecomputeResult.updated(pillar, should_complete)


def auto_complete_pillar(user_id: int, pillar: str, tz, now: datetime | None = None) -> RecomputeResult:
    """Mark a pillar complete for today unless it already is (manually or not)."""
    if pillar not in PILLARS:
        return RecomputeResult.failed(pillar, "unknown_pillar")

    now = now or utc_now()
    try:
        entry = get_or_create_entry(user_id, today_entry_date(tz, now))
        row = ensure_pillar_row(entry.id, pillar)
        if row.completed:
            db.session.commit()
            return RecomputeResult.no_change(pillar, completed=True)

        row.completed = True
        row.completed_at = now.replace(tzinfo=None)
        row.source = "auto"
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("auto_complete_pillar(%s) failed for user %s: %s", pillar, user_id, exc)
        return RecomputeResult.failed(pillar, exc.__class__.__name__)

    _notify(user_id, pillar, True, "auto")
    return RecomputeResult.updated(pillar, True)


def set_pillar_manual(user_id: int, pillar: str, completed: bool, entry_date: date) -> DailyPillar:
    entry = get_or_create_entry(user_id, entry_date)
    row = ensure_pillar_row(entry.id, pillar)
    row.completed = bool(completed)
    row.completed_at = datetime.utcnow() if completed else None
    row.source = "manual"
    db.session.commit()
    _notify(user_id, pillar, bool(completed), "manual")
    return row


def clear_pillar_override(user_id: int, pillar: str, entry_date: date) -> DailyPillar | None:
    """Hand a manually set pillar back to automatic recompute."""
    entry = db.session.execute(
        select(DailyEntry).filter_by(user_id=user_id, entry_date=entry_date)
    ).scalar_one_or_none()
    if entry is None:
        return None
    row = db.session.execute(
        select(DailyPillar).filter_by(entry_id=entry.id, pillar=pillar)
    ).scalar_one_or_none()
    if row is None or row.source != "manual":
        return row
    row.source = "auto" if row.completed else None
    db.session.commit()
    return row


def day_pillars(user_id: int, entry_date: date) -> dict:
    status = {pillar: {"completed": False, "source": None} for pillar in PILLARS}
    stmt = (
        select(DailyPillar)
        .join(DailyEntry, DailyPillar.entry_id == DailyEntry.id)
        .where(DailyEntry.user_id == user_id, DailyEntry.entry_date == entry_date)
    )
    for row in db.session.execute(stmt).scalars():
        if row.pillar in status:
            status[row.pillar] = {"completed": bool(row.completed), "source": row.source}
    return status


def all_pillars_complete(user_id: int, local_date: str | date, tz) -> bool:
    """True when all four pillars are complete for the user's local day."""
    entry_date = entry_date_for_local_date(local_date, tz)
    stmt = (
        select(DailyPillar.pillar)
        .join(DailyEntry, DailyPillar.entry_id == DailyEntry.id)
        .where(
            DailyEntry.user_id == user_id,
            DailyEntry.entry_date == entry_date,
            DailyPillar.completed.is_(True),
        )
    )
    done = {pillar for pillar in db.session.execute(stmt).scalars()}
    return done.issuperset(PILLARS)


def pillar_history(user_id: int, pillar: str, start: date, end: date) -> list[dict]:
    """Completion per day over ``start..end`` inclusive; missing days are incomplete."""
    stmt = (
        select(DailyEntry.entry_date, DailyPillar.completed)
        .join(DailyPillar, DailyPillar.entry_id == DailyEntry.id)
        .where(
            DailyEntry.user_id == user_id,
            DailyEntry.entry_date >= start,
            DailyEntry.entry_date <= end,
            DailyPillar.pillar == pillar,
        )
    )
    completed_by_date = {row.entry_date: bool(row.completed) for row in db.session.execute(stmt)}

    history = []
    current = start
    while current <= end:
        history.append({"date": current.isoformat(), "completed": completed_by_date.get(current, False)})
        current += timedelta(days=1)
    return history


def has_pillar_history(user_id: int, pillar: str) -> bool:
    """Whether any row was ever recorded for this pillar, completed or not."""
    stmt = (
        select(DailyPillar.id)
        .join(DailyEntry, DailyPillar.entry_id == DailyEntry.id)
        .where(DailyEntry.user_id == user_id, DailyPillar.pillar == pillar)
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


def compute_streak(history: list[dict], today: date) -> int:
    completed = {row["date"]: row["completed"] for row in history}
    streak = 0
    current = today
    while completed.get(current.isoformat()):
        streak += 1
        current -= timedelta(days=1)
    return streak
