from datetime import datetime, time

from sqlalchemy.exc import IntegrityError

from disciplined import db

PILLARS = ("train", "eat", "word", "freedom")
PILLAR_SOURCES = ("manual", "auto")
ROLES = ("pending", "user", "admin")


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('pending', 'user', 'admin')", name="ck_users_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    # New accounts wait for an admin before the API opens up.
    role = db.Column(db.String(16), nullable=False, default="pending")
    approved = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    settings = db.relationship("UserSettings", backref="user", uselist=False, lazy=True)
    fasting = db.relationship("FastingSettings", backref="user", uselist=False, lazy=True)
    push_subscription = db.relationship(
        "PushSubscription", backref="user", uselist=False, lazy=True
    )
    daily_entries = db.relationship("DailyEntry", backref="user", lazy=True)
    meals = db.relationship("Meal", backref="user", lazy=True)

    @property
    def is_admin(self) -> bool:
        return bool(self.approved) and self.role == "admin"

    def status_dict(self):
        return {
            "userId": self.id,
            "email": self.email,
            "role": self.role,
            "approved": bool(self.approved),
        }


class UserSettings(db.Model):
    __tablename__ = "user_settings"
    __table_args__ = (
        db.CheckConstraint(
            "daily_reminder_time_min >= 0 AND daily_reminder_time_min <= 1439",
            name="ck_user_settings_reminder_minute",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)

    timezone = db.Column(db.String(64), nullable=True)
    push_enabled = db.Column(db.Boolean, nullable=False, default=False, index=True)
    push_fasting_windows = db.Column(db.Boolean, nullable=False, default=True)
    push_window_ending_soon = db.Column(db.Boolean, nullable=False, default=False)
    push_daily_reminder = db.Column(db.Boolean, nullable=False, default=False)
    daily_reminder_time_min = db.Column(db.Integer, nullable=False, default=20 * 60)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def to_dict(self):
        return {
            "timezone": self.timezone,
            "push_enabled": bool(self.push_enabled),
            "push_fasting_windows": bool(self.push_fasting_windows),
            "push_window_ending_soon": bool(self.push_window_ending_soon),
            "push_daily_reminder": bool(self.push_daily_reminder),
            "daily_reminder_time_min": self.daily_reminder_time_min,
        }


class FastingSettings(db.Model):
    __tablename__ = "fasting_settings"
    __table_args__ = (
        db.CheckConstraint("eating_hours >= 1 AND eating_hours <= 23", name="ck_fasting_settings_hours"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)

    eating_start = db.Column(db.Time, nullable=False, default=time(12, 0))
    eating_hours = db.Column(db.Integer, nullable=False, default=8)  # 1-23
    notify_window_start = db.Column(db.Boolean, nullable=False, default=True)
    notify_window_end = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def start_minute(self) -> int:
        return self.eating_start.hour * 60 + self.eating_start.minute

    @property
    def end_minute(self) -> int:
        return (self.start_minute + self.eating_hours * 60) % 1440

    def to_dict(self):
        return {
            "eating_start": self.eating_start.strftime("%H:%M"),
            "eating_hours": self.eating_hours,
            "notify_window_start": bool(self.notify_window_start),
            "notify_window_end": bool(self.notify_window_end),
        }


class DailyEntry(db.Model):
    __tablename__ = "daily_entries"
    __table_args__ = (
        db.UniqueConstraint("user_id", "entry_date", name="uq_daily_entries_user_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    entry_date = db.Column(db.Date, nullable=False, index=True)  # UTC day key
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    pillars = db.relationship("DailyPillar", backref="entry", lazy=True)


class DailyPillar(db.Model):
    __tablename__ = "daily_pillars"
    __table_args__ = (
        db.UniqueConstraint("entry_id", "pillar", name="uq_daily_pillars_entry_pillar"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("daily_entries.id"), nullable=False, index=True)
    pillar = db.Column(db.String(16), nullable=False)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    source = db.Column(db.String(16), nullable=True)  # manual/auto


class Meal(db.Model):
    __tablename__ = "meals"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    meal_date = db.Column(db.Date, nullable=False, index=True)
    label = db.Column(db.String(80), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    items = db.relationship("MealItem", backref="meal", lazy=True)


class MealItem(db.Model):
    __tablename__ = "meal_items"

    id = db.Column(db.Integer, primary_key=True)
    meal_id = db.Column(db.Integer, db.ForeignKey("meals.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    calories = db.Column(db.Integer, nullable=True)
    protein_g = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class PushSubscription(db.Model):
    __tablename__ = "push_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    # One active subscription per user; resubscribing replaces it.
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    endpoint = db.Column(db.Text, unique=True, nullable=False)
    p256dh = db.Column(db.String(255), nullable=False)
    auth = db.Column(db.String(255), nullable=False)
    user_agent = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


class PushSendLog(db.Model):
    __tablename__ = "push_send_log"
    __table_args__ = (
        db.UniqueConstraint("user_id", "kind", "local_date", name="uq_push_send_log_user_kind_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    kind = db.Column(db.String(64), nullable=False)
    local_date = db.Column(db.String(10), nullable=False)  # YYYY-MM-DD in the user's zone
    local_min = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


def insert_if_absent(model, values: dict, conflict_columns: list[str]) -> None:
    """INSERT ... ON CONFLICT DO NOTHING against a unique key."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        insert = None

    if insert is not None:
        stmt = insert(model).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
        db.session.execute(stmt)
        return

    try:
        with db.session.begin_nested():
            db.session.add(model(**values))
    except IntegrityError:
        pass
