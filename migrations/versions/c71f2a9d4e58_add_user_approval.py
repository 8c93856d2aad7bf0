"""add user approval

Revision ID: c71f2a9d4e58
Revises: a3d9e4b7c210
Create Date: 2026-10-16 14:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c71f2a9d4e58"
down_revision = "a3d9e4b7c210"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("role", sa.String(length=16), nullable=False, server_default="pending")
        )
        batch_op.add_column(
            sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.text("false"))
        )
        batch_op.create_check_constraint("ck_users_role", "role IN ('pending', 'user', 'admin')")


def downgrade():
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_constraint("ck_users_role", type_="check")
        batch_op.drop_column("approved")
        batch_op.drop_column("role")
