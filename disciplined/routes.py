from datetime import date, timedelta
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from disciplined import db
from disciplined.fasting import FastingSettingsError, compute_fasting_status, validate_fasting_input
from disciplined.local_clock import LocalClock, is_valid_timezone, resolve_timezone
from disciplined.models import (
    PILLARS,
    ROLES,
    FastingSettings,
    Meal,
    MealItem,
    PushSubscription,
    User,
    UserSettings,
)
from disciplined.pillars import (
    clear_pillar_override,
    compute_streak,
    day_pillars,
    has_pillar_history,
    pillar_history,
    recompute_pillar,
    set_pillar_manual,
    today_entry_date,
)
from disciplined.push import (
    PushConfigError,
    PushDeliveryError,
    PushGoneError,
    get_push_transport,
    subscription_info,
)

bp = Blueprint("main", __name__)

PUSH_SETTING_FIELDS = ("push_enabled", "push_fasting_windows", "push_window_ending_soon")
MAX_HISTORY_DAYS = 366


def parse_int(value):
    return int(value) if value not in (None, "") else None


def parse_bool(value):
    return str(value).lower() in {"1", "true", "yes", "on"}


def normalize_email(value: str | None):
    if not value:
        return None
    return value.strip().lower()


def fail(reason: str, status: int, message: str | None = None, **extra):
    body = {"ok": False, "reason": reason}
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def request_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def get_or_create_settings(user: User) -> UserSettings:
    settings = user.settings
    if not settings:
        settings = UserSettings(user_id=user.id)
        db.session.add(settings)
        db.session.commit()
    return settings


def get_user_zoneinfo(user: User):
    tz_name = user.settings.timezone if user and user.settings else None
    return resolve_timezone(tz_name, current_app.config.get("DEFAULT_TIMEZONE", "UTC"))


def signed_in_required(view):
    """Authenticated, approved or not. Used by the few routes a pending account may call."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return fail("not_authenticated", 401)
        return view(*args, **kwargs)

    return wrapped


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return fail("not_authenticated", 401)
        if not g.user.approved:
            return fail("pending_approval", 403, "Your account is waiting for approval.")
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not g.user.is_admin:
            return fail("forbidden", 403)
        return view(*args, **kwargs)

    return login_required(wrapped)


def pillar_required(view):
    @wraps(view)
    def wrapped(pillar, *args, **kwargs):
        if pillar not in PILLARS:
            return fail("unknown_pillar", 404)
        return view(pillar, *args, **kwargs)

    return wrapped


@bp.before_app_request
def load_logged_in_user():
    user_id = session.get("user_id")
    g.user = db.session.get(User, user_id) if user_id else None


@bp.errorhandler(SQLAlchemyError)
def handle_db_error(exc):
    db.session.rollback()
    current_app.logger.error("database error on %s: %s", request.path, exc)
    return fail("db_error", 500)


@bp.post("/register")
def register():
    body = request_body()
    email = normalize_email(body.get("email"))
    password = body.get("password") or ""

    if not email:
        return fail("bad_input", 400, "Email is required.")
    if len(password) < 8:
        return fail("bad_input", 400, "Password must be at least 8 characters.")
    if db.session.execute(select(User.id).filter_by(email=email)).first():
        return fail("email_taken", 400, "An account with that email already exists.")

    user = User(email=email, password_hash=generate_password_hash(password))
    if email in current_app.config.get("ADMIN_EMAILS", ()):
        user.role = "admin"
        user.approved = True
    db.session.add(user)
    db.session.flush()
    timezone = body.get("timezone")
    db.session.add(
        UserSettings(user_id=user.id, timezone=timezone if is_valid_timezone(timezone) else None)
    )
    db.session.commit()

    session.clear()
    session["user_id"] = user.id
    return jsonify({"ok": True, "user_id": user.id, "role": user.role, "approved": bool(user.approved)}), 201


@bp.post("/login")
def login():
    body = request_body()
    email = normalize_email(body.get("email"))
    password = body.get("password") or ""

    user = db.session.execute(select(User).filter_by(email=email)).scalar_one_or_none() if email else None
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        return fail("invalid_credentials", 401, "Invalid email or password.")

    session.clear()
    session["user_id"] = user.id
    return jsonify({"ok": True, "user_id": user.id, "role": user.role, "approved": bool(user.approved)})


@bp.post("/logout")
@signed_in_required
def logout():
    session.clear()
    return jsonify({"ok": True})


@bp.get("/api/profile/status")
@signed_in_required
def profile_status():
    return jsonify({"ok": True, **g.user.status_dict()})


@bp.get("/api/admin/users")
@admin_required
def admin_users():
    users = db.session.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars().all()
    pending = [user.status_dict() for user in users if not user.approved or user.role == "pending"]
    approved = [user.status_dict() for user in users if user.approved and user.role != "pending"]
    return jsonify({"ok": True, "pending": pending, "approved": approved})


@bp.post("/api/admin/users/<int:user_id>/approve")
@admin_required
def admin_approve(user_id):
    role = request_body().get("role", "user")
    if role not in ROLES or role == "pending":
        return fail("bad_input", 400, "role must be user or admin")

    user = db.session.get(User, user_id)
    if user is None:
        return fail("unknown_user", 404)
    user.role = role
    user.approved = True
    db.session.commit()
    current_app.logger.info("user %s approved as %s by %s", user.id, role, g.user.id)
    return jsonify({"ok": True, "user": user.status_dict()})


@bp.get("/api/settings")
@login_required
def settings_get():
    settings = get_or_create_settings(g.user)
    fasting = g.user.fasting
    return jsonify(
        {
            "ok": True,
            "userSettings": settings.to_dict(),
            "fasting": fasting.to_dict() if fasting else None,
        }
    )


@bp.post("/api/settings/push")
@login_required
def settings_push():
    body = request_body()
    settings = get_or_create_settings(g.user)
    for field_name in PUSH_SETTING_FIELDS:
        if field_name in body:
            setattr(settings, field_name, parse_bool(body[field_name]))
    db.session.commit()
    return jsonify({"ok": True, "userSettings": settings.to_dict()})


@bp.post("/api/settings/reminder")
@login_required
def settings_reminder():
    body = request_body()
    raw_minute = body.get("daily_reminder_time_min")
    try:
        reminder_minute = parse_int(raw_minute)
    except (TypeError, ValueError):
        return fail("bad_input", 400, "Reminder min must be 0..1439")
    if reminder_minute is not None and not 0 <= reminder_minute <= 1439:
        return fail("bad_input", 400, "Reminder min must be 0..1439")

    settings = get_or_create_settings(g.user)
    settings.push_daily_reminder = parse_bool(body.get("push_daily_reminder"))
    settings.daily_reminder_time_min = reminder_minute if reminder_minute is not None else 20 * 60
    db.session.commit()
    return jsonify({"ok": True, "userSettings": settings.to_dict()})


@bp.get("/api/settings/fasting")
@login_required
def fasting_settings_get():
    fasting = g.user.fasting
    return jsonify({"ok": True, "fasting": fasting.to_dict() if fasting else None})


@bp.post("/api/settings/fasting")
@login_required
def fasting_settings_save():
    body = request_body()
    try:
        eating_start, eating_hours = validate_fasting_input(body.get("eating_start"), body.get("eating_hours"))
    except FastingSettingsError as exc:
        return fail("bad_input", 400, str(exc))

    fasting = g.user.fasting
    if not fasting:
        fasting = FastingSettings(user_id=g.user.id)
        db.session.add(fasting)
    fasting.eating_start = eating_start
    fasting.eating_hours = eating_hours
    fasting.notify_window_start = parse_bool(body.get("notify_window_start", True))
    fasting.notify_window_end = parse_bool(body.get("notify_window_end", True))
    db.session.commit()
    return jsonify({"ok": True, "fasting": fasting.to_dict()})


@bp.post("/api/profile/timezone")
@login_required
def profile_timezone():
    timezone = request_body().get("timezone")
    if not isinstance(timezone, str) or not timezone.strip():
        return fail("missing_timezone", 400)
    timezone = timezone.strip()
    if not is_valid_timezone(timezone):
        return fail("invalid_timezone", 400)

    settings = get_or_create_settings(g.user)
    settings.timezone = timezone
    db.session.commit()
    return jsonify({"ok": True, "timezone": timezone})


@bp.post("/api/push/subscribe")
@login_required
def push_subscribe():
    body = request_body()
    nested = body.get("subscription") if isinstance(body.get("subscription"), dict) else {}
    keys = nested.get("keys") if isinstance(nested.get("keys"), dict) else {}

    # Accepts { subscription: { endpoint, keys: {p256dh, auth} } } or a flat body.
    endpoint = nested.get("endpoint") or body.get("endpoint")
    p256dh = keys.get("p256dh") or body.get("p256dh")
    auth = keys.get("auth") or body.get("auth")
    user_agent = body.get("userAgent") if isinstance(body.get("userAgent"), str) else None

    if not all(isinstance(value, str) and value for value in (endpoint, p256dh, auth)):
        return fail(
            "missing_subscription",
            400,
            received={"hasEndpoint": bool(endpoint), "hasP256dh": bool(p256dh), "hasAuth": bool(auth)},
        )

    # One subscription per user, and an endpoint belongs to whoever registered it last.
    db.session.execute(
        delete(PushSubscription).where(
            PushSubscription.endpoint == endpoint,
            PushSubscription.user_id != g.user.id,
        )
    )
    subscription = db.session.execute(
        select(PushSubscription).filter_by(user_id=g.user.id)
    ).scalar_one_or_none()
    if subscription is None:
        subscription = PushSubscription(user_id=g.user.id)
        db.session.add(subscription)
    subscription.endpoint = endpoint
    subscription.p256dh = p256dh
    subscription.auth = auth
    subscription.user_agent = (user_agent or "")[:255] or None
    db.session.commit()
    return jsonify({"ok": True})


@bp.post("/api/push/unsubscribe")
@login_required
def push_unsubscribe():
    db.session.execute(delete(PushSubscription).where(PushSubscription.user_id == g.user.id))
    db.session.commit()
    return jsonify({"ok": True})


@bp.get("/api/push/status")
@login_required
def push_status():
    subscribed = db.session.execute(
        select(PushSubscription.id).filter_by(user_id=g.user.id).limit(1)
    ).first() is not None
    return jsonify(
        {
            "ok": True,
            "subscribed": subscribed,
            "vapidPublicKey": current_app.config.get("VAPID_PUBLIC_KEY"),
        }
    )


@bp.post("/api/push/test")
@login_required
def push_test():
    subscription = db.session.execute(
        select(PushSubscription).filter_by(user_id=g.user.id)
    ).scalar_one_or_none()
    if subscription is None:
        return fail("no_subscriptions", 404)

    try:
        transport = get_push_transport()
    except PushConfigError as exc:
        return fail("push_not_configured", 503, str(exc))

    payload = {"title": "Disciplined Life", "body": "Test push", "data": {"url": "/today"}}
    try:
        transport.send(subscription_info(subscription), payload)
    except PushGoneError as exc:
        db.session.delete(subscription)
        db.session.commit()
        return fail("endpoint_gone", 410, str(exc))
    except PushDeliveryError as exc:
        current_app.logger.warning("test push failed for user %s: %s", g.user.id, exc)
        return fail("send_failed", 502, str(exc))
    return jsonify({"ok": True})


@bp.get("/api/today")
@login_required
def today():
    tz = get_user_zoneinfo(g.user)
    clock = LocalClock.now(tz)
    entry_date = today_entry_date(tz)
    pillars = day_pillars(g.user.id, entry_date)
    return jsonify(
        {
            "ok": True,
            "localDate": clock.local_date,
            "entryDate": entry_date.isoformat(),
            "pillars": pillars,
            "complete": all(item["completed"] for item in pillars.values()),
        }
    )


@bp.post("/api/pillars/<pillar>")
@login_required
@pillar_required
def pillar_set(pillar):
    body = request_body()
    if "completed" not in body:
        return fail("bad_input", 400, "completed is required")
    row = set_pillar_manual(g.user.id, pillar, parse_bool(body["completed"]), today_entry_date(get_user_zoneinfo(g.user)))
    return jsonify({"ok": True, "pillar": pillar, "completed": row.completed, "source": row.source})


@bp.delete("/api/pillars/<pillar>/override")
@login_required
@pillar_required
def pillar_clear_override(pillar):
    tz = get_user_zoneinfo(g.user)
    clear_pillar_override(g.user.id, pillar, today_entry_date(tz))
    result = recompute_pillar(g.user.id, pillar, tz)
    return jsonify({"ok": True, "result": result.to_dict()})


@bp.post("/api/pillars/<pillar>/recompute")
@login_required
@pillar_required
def pillar_recompute(pillar):
    result = recompute_pillar(g.user.id, pillar, get_user_zoneinfo(g.user))
    if result.status == "failed":
        return fail("recompute_failed", 500, result.reason)
    return jsonify({"ok": True, "result": result.to_dict()})


@bp.get("/api/pillars/<pillar>/history")
@login_required
@pillar_required
def pillar_history_view(pillar):
    try:
        days = parse_int(request.args.get("days")) or 30
    except ValueError:
        return fail("bad_input", 400, "days must be a number")
    days = max(1, min(days, MAX_HISTORY_DAYS))

    end = today_entry_date(get_user_zoneinfo(g.user))
    start = end - timedelta(days=days - 1)
    history = pillar_history(g.user.id, pillar, start, end)
    return jsonify(
        {
            "ok": True,
            "pillar": pillar,
            "history": history,
            "streak": compute_streak(history, end),
            "hasHistory": has_pillar_history(g.user.id, pillar),
        }
    )


@bp.post("/api/meals")
@login_required
def meal_add():
    body = request_body()
    name = (body.get("name") or "").strip() if isinstance(body.get("name"), str) else ""
    if not name:
        return fail("bad_input", 400, "Item name is required.")
    try:
        calories = parse_int(body.get("calories"))
        protein_g = float(body["protein_g"]) if body.get("protein_g") not in (None, "") else None
    except (TypeError, ValueError):
        return fail("bad_input", 400, "calories and protein_g must be numbers")

    tz = get_user_zoneinfo(g.user)
    meal_date: date = today_entry_date(tz)
    label = (body.get("label") or "Meal").strip()[:80] if isinstance(body.get("label"), str) else "Meal"
    meal = db.session.execute(
        select(Meal).filter_by(user_id=g.user.id, meal_date=meal_date, label=label)
    ).scalar_one_or_none()
    if meal is None:
        meal = Meal(user_id=g.user.id, meal_date=meal_date, label=label)
        db.session.add(meal)
        db.session.flush()
    item = MealItem(meal_id=meal.id, name=name[:255], calories=calories, protein_g=protein_g)
    db.session.add(item)
    db.session.commit()

    result = recompute_pillar(g.user.id, "eat", tz)
    return jsonify({"ok": True, "meal_id": meal.id, "item_id": item.id, "eat": result.to_dict()}), 201


@bp.get("/api/fasting/status")
@login_required
def fasting_status():
    fasting = g.user.fasting
    if fasting is None:
        return fail("no_fasting_settings", 404)
    clock = LocalClock.now(get_user_zoneinfo(g.user))
    status = compute_fasting_status(fasting.start_minute, fasting.eating_hours, clock)
    return jsonify({"ok": True, "status": status.to_dict()})
