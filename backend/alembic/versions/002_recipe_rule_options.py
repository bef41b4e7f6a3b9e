"""Size-scoped recipe rules, rule units, optional/customizable ingredients

Revision ID: 002
Revises: 001
Create Date: 2025-03-02 00:00:00.000000

Databases still on 001 keep working: the fulfillment core probes for these
columns at runtime and falls back to size-agnostic, non-customizable rules.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # batch mode so SQLite can add the foreign key
    with op.batch_alter_table("product_ingredient_rules") as batch:
        batch.add_column(sa.Column("product_size_id", sa.Integer(), nullable=True))
        batch.add_column(sa.Column("unit", sa.String(20), nullable=True))
        batch.add_column(sa.Column("customizable", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch.add_column(sa.Column("optional", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch.create_foreign_key(
            "fk_product_ingredient_rules_size",
            "product_sizes",
            ["product_size_id"],
            ["id"],
            ondelete="SET NULL",
        )
        batch.create_index("ix_product_ingredient_rules_product_size_id", ["product_size_id"])

    op.add_column("order_items", sa.Column("ingredient_overrides", sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column("order_items", "ingredient_overrides")

    with op.batch_alter_table("product_ingredient_rules") as batch:
        batch.drop_index("ix_product_ingredient_rules_product_size_id")
        batch.drop_constraint("fk_product_ingredient_rules_size", type_="foreignkey")
        batch.drop_column("optional")
        batch.drop_column("customizable")
        batch.drop_column("unit")
        batch.drop_column("product_size_id")
