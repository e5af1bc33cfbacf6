"""m1 court reservations

Revision ID: 8ee43ee7e21f
Revises: 
Create Date: 2026-10-17 09:12:03.481220

"""
from pathlib import Path
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8ee43ee7e21f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    sql_dir = Path(__file__).resolve().parents[2] / "sql"

    # Numeric prefixes fix the order: extensions, tables, then functions.
    for path in sorted(sql_dir.glob("*.sql")):
        op.execute(path.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute(
        """
        DROP FUNCTION IF EXISTS commit_reservation(
          text, integer, date, integer, integer,
          integer, text[], text, text
        );
        """
    )
    op.drop_table("audit_log", schema="public")
    op.drop_table("admin_config", schema="public")
    op.drop_table("reservation", schema="public")
    op.drop_table("blackout_block", schema="public")
    op.drop_table("day_config", schema="public")
    op.execute("DROP EXTENSION IF EXISTS pgcrypto;")
