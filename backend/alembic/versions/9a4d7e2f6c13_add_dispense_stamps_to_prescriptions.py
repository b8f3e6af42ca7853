"""add_dispense_stamps_to_prescriptions

Revision ID: 9a4d7e2f6c13
Revises: 5c1e0a7d2b41
Create Date: 2026-10-19 14:03:51.667210

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "9a4d7e2f6c13"
down_revision = "5c1e0a7d2b41"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column(
        "prescriptions",
        sa.Column("dispensed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "prescriptions",
        sa.Column("stock_deducted_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Prescriptions that already sit on a bill were dispensed when that bill was created
    op.execute(
        """
        UPDATE prescriptions
        SET dispensed_at = (
            SELECT MIN(bills.created_at)
            FROM bill_items JOIN bills ON bills.id = bill_items.bill_id
            WHERE bill_items.item_type = 'Prescription'
              AND bill_items.reference_id = prescriptions.id
        )
        WHERE EXISTS (
            SELECT 1 FROM bill_items
            WHERE bill_items.item_type = 'Prescription'
              AND bill_items.reference_id = prescriptions.id
        )
        """
    )
    op.execute(
        """
        UPDATE prescriptions
        SET stock_deducted_at = (
            SELECT MIN(bills.stock_deducted_at)
            FROM bill_items JOIN bills ON bills.id = bill_items.bill_id
            WHERE bill_items.item_type = 'Prescription'
              AND bill_items.reference_id = prescriptions.id
        )
        WHERE dispensed_at IS NOT NULL
        """
    )


def downgrade():
    with op.batch_alter_table("prescriptions") as batch_op:
        batch_op.drop_column("stock_deducted_at")
        batch_op.drop_column("dispensed_at")
