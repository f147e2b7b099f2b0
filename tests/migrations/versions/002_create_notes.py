"""Create notes.

Revision ID: 002_create_notes
Revises: 001_create_widgets
"""

from alembic import op
import sqlalchemy as sa

revision = "002_create_notes"
down_revision = "001_create_widgets"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("widget_id", sa.Integer(), sa.ForeignKey("widgets.id"), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
    )
    op.execute("INSERT INTO widgets (name) VALUES ('it''s seeded')")


def downgrade() -> None:
    op.drop_table("notes")
