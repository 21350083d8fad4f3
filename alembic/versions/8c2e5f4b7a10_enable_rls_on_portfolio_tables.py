"""enable rls on portfolio tables

Revision ID: 8c2e5f4b7a10
Revises: 3a91c0d7e2b4
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "8c2e5f4b7a10"
down_revision: Union[str, Sequence[str], None] = "3a91c0d7e2b4"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# the API connects with the service role; Supabase client roles get nothing
ALL_TABLES = ["users", "holdings", "alerts", "notifications"]


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table in ALL_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f'CREATE POLICY "deny_all_{table}" ON {table} '
            f"FOR ALL TO anon, authenticated USING (false)"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table in ALL_TABLES:
        op.execute(f'DROP POLICY IF EXISTS "deny_all_{table}" ON {table}')
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
