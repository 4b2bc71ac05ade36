"""item quantity and location qr codes

Revision ID: 7c3e5a1f0b42
Revises: 4b1f0c2d9a10
Create Date: 2026-10-18 15:40:07.518263

"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c3e5a1f0b42"
down_revision: str = "4b1f0c2d9a10"
branch_labels = None
depends_on = None


def _column_exists(table: str, column: str) -> bool:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    return any(col["name"] == column for col in insp.get_columns(table))


def _table_exists(table: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table)


def upgrade() -> None:
    """Upgrade schema."""
    if not _column_exists("items", "quantity"):
        # batch mode rebuilds the table on SQLite, which cannot ALTER in a CHECK
        with op.batch_alter_table("items") as batch:
            batch.add_column(sa.Column("quantity", sa.Integer(), nullable=True))
            batch.create_check_constraint(
                "ck_items_quantity_nonnegative", "quantity IS NULL OR quantity >= 0"
            )

    if _table_exists("location_qr_codes"):
        return
    qr_codes = op.create_table(
        "location_qr_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "location_id",
            sa.Uuid(),
            sa.ForeignKey("locations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "household_id",
            sa.Uuid(),
            sa.ForeignKey("households.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.Uuid(), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_location_qr_codes_household_created",
        "location_qr_codes",
        ["household_id", "created_at"],
    )

    locations = sa.table(
        "locations",
        sa.column("id", sa.Uuid()),
        sa.column("household_id", sa.Uuid()),
    )
    now = datetime.now(timezone.utc)
    existing = op.get_bind().execute(sa.select(locations.c.id, locations.c.household_id)).all()
    if existing:
        op.bulk_insert(
            qr_codes,
            [
                {
                    "id": uuid.uuid4(),
                    "location_id": row.id,
                    "household_id": row.household_id,
                    "code": uuid.uuid4(),
                    "created_at": now,
                    "updated_at": now,
                }
                for row in existing
            ],
        )


def downgrade() -> None:
    """Downgrade schema."""
    if _table_exists("location_qr_codes"):
        op.drop_index("ix_location_qr_codes_household_created", table_name="location_qr_codes")
        op.drop_table("location_qr_codes")
    if _column_exists("items", "quantity"):
        with op.batch_alter_table("items") as batch:
            batch.drop_constraint("ck_items_quantity_nonnegative", type_="check")
            batch.drop_column("quantity")
