"""create disciplined schema

Revision ID: a3d9e4b7c210
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a3d9e4b7c210"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "user_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("push_fasting_windows", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("push_window_ending_soon", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("push_daily_reminder", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("daily_reminder_time_min", sa.Integer(), nullable=False, server_default=sa.text("1200")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "daily_reminder_time_min >= 0 AND daily_reminder_time_min <= 1439",
            name="ck_user_settings_reminder_minute",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_user_settings_push_enabled", "user_settings", ["push_enabled"])

    op.create_table(
        "fasting_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("eating_start", sa.Time(), nullable=False),
        sa.Column("eating_hours", sa.Integer(), nullable=False, server_default=sa.text("8")),
        sa.Column("notify_window_start", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notify_window_end", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("eating_hours >= 1 AND eating_hours <= 23", name="ck_fasting_settings_hours"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "daily_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "entry_date", name="uq_daily_entries_user_date"),
    )
    op.create_index("ix_daily_entries_user_id", "daily_entries", ["user_id"])
    op.create_index("ix_daily_entries_entry_date", "daily_entries", ["entry_date"])

    op.create_table(
        "daily_pillars",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("pillar", sa.String(length=16), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("source", sa.String(length=16), nullable=True),
        sa.ForeignKeyConstraint(["entry_id"], ["daily_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "pillar", name="uq_daily_pillars_entry_pillar"),
    )
    op.create_index("ix_daily_pillars_entry_id", "daily_pillars", ["entry_id"])

    op.create_table(
        "meals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("meal_date", sa.Date(), nullable=False),
        sa.Column("label", sa.String(length=80), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_meals_user_id", "meals", ["user_id"])
    op.create_index("ix_meals_meal_date", "meals", ["meal_date"])

    op.create_table(
        "meal_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("meal_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("calories", sa.Integer(), nullable=True),
        sa.Column("protein_g", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["meal_id"], ["meals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_meal_items_meal_id", "meal_items", ["meal_id"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(length=255), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
        sa.UniqueConstraint("endpoint"),
    )

    op.create_table(
        "push_send_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("local_date", sa.String(length=10), nullable=False),
        sa.Column("local_min", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "kind", "local_date", name="uq_push_send_log_user_kind_date"),
    )
    op.create_index("ix_push_send_log_user_id", "push_send_log", ["user_id"])


def downgrade():
    op.drop_index("ix_push_send_log_user_id", table_name="push_send_log")
    op.drop_table("push_send_log")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_meal_items_meal_id", table_name="meal_items")
    op.drop_table("meal_items")
    op.drop_index("ix_meals_meal_date", table_name="meals")
    op.drop_index("ix_meals_user_id", table_name="meals")
    op.drop_table("meals")
    op.drop_index("ix_daily_pillars_entry_id", table_name="daily_pillars")
    op.drop_table("daily_pillars")
    op.drop_index("ix_daily_entries_entry_date", table_name="daily_entries")
    op.drop_index("ix_daily_entries_user_id", table_name="daily_entries")
    op.drop_table("daily_entries")
    op.drop_table("fasting_settings")
    op.drop_index("ix_user_settings_push_enabled", table_name="user_settings")
    op.drop_table("user_settings")
    op.drop_table("users")
