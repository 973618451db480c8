"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the point of sale schema:
- products: catalog (price in cents, tax rate in basis points)
- invoices / invoice_lines: committed invoices, immutable except for void
- inventory_deltas: append-only stock ledger
- invoice_events: outbox of committed / voided invoice events
- rollup_buckets: pre-aggregated analytics by window and dimension
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    # ============================================================================
    # invoices: committed sales
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMMITTED'),
        sa.Column('cashier_id', sa.String(length=64), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('total_cents = subtotal_cents + tax_cents', name='ck_invoices_total'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_cashier_id', 'invoices', ['cashier_id'])
    op.create_index('ix_invoices_store_id', 'invoices', ['store_id'])
    op.create_index('ix_invoices_store_created', 'invoices', ['store_id', 'created_at'])

    op.create_table(
        'invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'line_no', name='uq_invoice_lines_invoice_line_no'),
    )
    op.create_index('ix_invoice_lines_invoice_id', 'invoice_lines', ['invoice_id'])
    op.create_index('ix_invoice_lines_sku', 'invoice_lines', ['sku'])

    # ============================================================================
    # inventory_deltas: append-only stock ledger
    # ============================================================================
    op.create_table(
        'inventory_deltas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=16), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.CheckConstraint('delta != 0', name='ck_inventory_deltas_nonzero'),
        sa.ForeignKeyConstraint(['sku'], ['products.sku']),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_deltas_sku_id', 'inventory_deltas', ['sku', 'id'])
    op.create_index('ix_inventory_deltas_reason', 'inventory_deltas', ['reason'])
    op.create_index('ix_inventory_deltas_occurred_at', 'inventory_deltas', ['occurred_at'])
    op.create_index('ix_inventory_deltas_invoice_id', 'inventory_deltas', ['invoice_id'])

    # ============================================================================
    # invoice_events: outbox feeding analytics
    # ============================================================================
    op.create_table(
        'invoice_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('ingested_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_events_event_type', 'invoice_events', ['event_type'])
    op.create_index('ix_invoice_events_invoice_id', 'invoice_events', ['invoice_id'])
    op.create_index('ix_invoice_events_ingested_at', 'invoice_events', ['ingested_at'])

    # ============================================================================
    # rollup_buckets: analytics
    # ============================================================================
    op.create_table(
        'rollup_buckets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('granularity', sa.String(length=8), nullable=False),
        sa.Column('window_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('cashier_id', sa.String(length=64), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('invoice_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('void_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('granularity', 'window_start', 'store_id', 'cashier_id', 'sku',
                            name='uq_rollup_buckets_key'),
    )
    op.create_index('ix_rollup_buckets_window', 'rollup_buckets', ['granularity', 'window_start'])


def downgrade():
    op.drop_index('ix_rollup_buckets_window', table_name='rollup_buckets')
    op.drop_table('rollup_buckets')

    op.drop_index('ix_invoice_events_ingested_at', table_name='invoice_events')
    op.drop_index('ix_invoice_events_invoice_id', table_name='invoice_events')
    op.drop_index('ix_invoice_events_event_type', table_name='invoice_events')
    op.drop_table('invoice_events')

    op.drop_index('ix_inventory_deltas_invoice_id', table_name='inventory_deltas')
    op.drop_index('ix_inventory_deltas_occurred_at', table_name='inventory_deltas')
    op.drop_index('ix_inventory_deltas_reason', table_name='inventory_deltas')
    op.drop_index('ix_inventory_deltas_sku_id', table_name='inventory_deltas')
    op.drop_table('inventory_deltas')

    op.drop_index('ix_invoice_lines_sku', table_name='invoice_lines')
    op.drop_index('ix_invoice_lines_invoice_id', table_name='invoice_lines')
    op.drop_table('invoice_lines')

    op.drop_index('ix_invoices_store_created', table_name='invoices')
    op.drop_index('ix_invoices_store_id', table_name='invoices')
    op.drop_index('ix_invoices_cashier_id', table_name='invoices')
    op.drop_index('ix_invoices_status', table_name='invoices')
    op.drop_table('invoices')

    op.drop_index('ix_products_active_name', table_name='products')
    op.drop_table('products')
