"""initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Drivers, customers, LPG products, inventory snapshots, sales, the daily
receivable records with their onboarding and reconciliation adjustments,
customer receivables with payment/return events, and the audit log.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'driverstatus': ('ACTIVE', 'INACTIVE'),
    'drivertype': ('RETAIL', 'SHIPMENT'),
    'saletype': ('PACKAGE', 'REFILL'),
    'paymenttype': ('CASH', 'CREDIT', 'PARTIAL'),
    'receivabletype': ('CASH', 'CYLINDER'),
    'receivablestatus': ('CURRENT', 'DUE_SOON', 'OVERDUE', 'PAID'),
    'paymentmethod': ('CASH', 'BANK_TRANSFER', 'CHEQUE', 'DIGITAL_PAYMENT'),
}


def _enum(name):
    return sa.Enum(*ENUMS[name], name=name)


def _base_columns():
    """id / tenant_id / timestamps shared by every tenant-scoped table"""
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _create_base_indexes(table, *columns):
    for column in ('id', 'tenant_id') + columns:
        op.create_index(op.f(f'ix_{table}_{column}'), table, [column])


def upgrade():
    # ===== DRIVERS / CUSTOMERS =====
    op.create_table(
        'drivers',
        *_base_columns(),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('route', sa.String(length=150), nullable=True),
        sa.Column('status', _enum('driverstatus'), nullable=False),
        sa.Column('driver_type', _enum('drivertype'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_driver_tenant_name'),
    )
    _create_base_indexes('drivers', 'status', 'driver_type')

    op.create_table(
        'customers',
        *_base_columns(),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('driver_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('customers', 'name', 'driver_id')

    # ===== PRODUCTS =====
    op.create_table(
        'lpg_companies',
        *_base_columns(),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_lpg_company_tenant_name'),
    )
    _create_base_indexes('lpg_companies')

    op.create_table(
        'cylinder_sizes',
        *_base_columns(),
        sa.Column('size', sa.String(length=20), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'size', name='uq_cylinder_size_tenant_size'),
    )
    _create_base_indexes('cylinder_sizes')

    op.create_table(
        'products',
        *_base_columns(),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('cylinder_size_id', sa.Uuid(), nullable=False),
        sa.Column('current_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['lpg_companies.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('products', 'company_id', 'cylinder_size_id')

    # ===== INVENTORY =====
    op.create_table(
        'inventory_records',
        *_base_columns(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('full_cylinders', sa.Integer(), nullable=False),
        sa.Column('empty_cylinders', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'date', name='uq_inventory_record_tenant_date'),
    )
    _create_base_indexes('inventory_records', 'date')

    op.create_table(
        'full_cylinder_stock',
        *_base_columns(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('cylinder_size_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_full_stock_quantity_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['company_id'], ['lpg_companies.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'product_id', 'date', name='uq_full_stock_tenant_product_date'),
    )
    _create_base_indexes('full_cylinder_stock', 'date', 'product_id', 'cylinder_size_id')

    op.create_table(
        'empty_cylinder_stock',
        *_base_columns(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('cylinder_size_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_in_hand', sa.Integer(), nullable=False),
        sa.Column('quantity_with_drivers', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_empty_stock_quantity_non_negative'),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'cylinder_size_id', 'date', name='uq_empty_stock_tenant_size_date'),
    )
    _create_base_indexes('empty_cylinder_stock', 'date', 'cylinder_size_id')

    # ===== SALES =====
    op.create_table(
        'sales',
        *_base_columns(),
        sa.Column('driver_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('sale_type', _enum('saletype'), nullable=False),
        sa.Column('payment_type', _enum('paymenttype'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('total_value', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('discount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('net_value', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('cash_deposited', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('cylinders_deposited', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=150), nullable=True),
        sa.Column('is_deposit_only', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('quantity >= 0', name='ck_sales_quantity_non_negative'),
        sa.CheckConstraint('cylinders_deposited >= 0', name='ck_sales_cylinders_deposited_non_negative'),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('sales', 'driver_id', 'product_id', 'sale_date')
    op.create_index('ix_sales_tenant_driver_date', 'sales', ['tenant_id', 'driver_id', 'sale_date'])

    # ===== RECEIVABLES =====
    op.create_table(
        'receivable_records',
        *_base_columns(),
        sa.Column('driver_id', sa.Uuid(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('cash_receivables_change', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('cylinder_receivables_change', sa.Integer(), nullable=False),
        sa.Column('onboarding_cash_receivables', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('onboarding_cylinder_receivables', sa.Integer(), nullable=False),
        sa.Column('adjustment_cash_receivables', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('adjustment_cylinder_receivables', sa.Integer(), nullable=False),
        sa.Column('total_cash_receivables', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('total_cylinder_receivables', sa.Integer(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'driver_id', 'date', name='uq_receivable_record_tenant_driver_date'),
    )
    _create_base_indexes('receivable_records', 'driver_id', 'date')

    op.create_table(
        'customer_receivables',
        *_base_columns(),
        sa.Column('driver_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=True),
        sa.Column('customer_name', sa.String(length=150), nullable=False),
        sa.Column('receivable_type', _enum('receivabletype'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('size', sa.String(length=20), nullable=True),
        sa.Column('status', _enum('receivablestatus'), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('amount >= 0', name='ck_customer_receivable_amount_non_negative'),
        sa.CheckConstraint('quantity >= 0', name='ck_customer_receivable_quantity_non_negative'),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('customer_receivables', 'driver_id', 'customer_id', 'receivable_type', 'status')
    op.create_index('ix_customer_receivables_tenant_driver_status', 'customer_receivables',
                    ['tenant_id', 'driver_id', 'status'])

    op.create_table(
        'receivable_payment_events',
        *_base_columns(),
        sa.Column('receivable_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('payment_method', _enum('paymentmethod'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('sale_id', sa.Uuid(), nullable=True),
        sa.Column('actor_user_id', sa.Uuid(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_event_amount_positive'),
        sa.ForeignKeyConstraint(['receivable_id'], ['customer_receivables.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('receivable_payment_events', 'receivable_id')

    op.create_table(
        'receivable_return_events',
        *_base_columns(),
        sa.Column('receivable_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('size', sa.String(length=20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('sale_id', sa.Uuid(), nullable=True),
        sa.Column('actor_user_id', sa.Uuid(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_return_event_quantity_positive'),
        sa.ForeignKeyConstraint(['receivable_id'], ['customer_receivables.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _create_base_indexes('receivable_return_events', 'receivable_id')

    # ===== AUDIT =====
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_tenant_id'), 'audit_logs', ['tenant_id'])
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_tenant_entity', 'audit_logs', ['tenant_id', 'entity_type', 'entity_id'])


def downgrade():
    for table in (
        'audit_logs',
        'receivable_return_events',
        'receivable_payment_events',
        'customer_receivables',
        'receivable_records',
        'sales',
        'empty_cylinder_stock',
        'full_cylinder_stock',
        'inventory_records',
        'products',
        'cylinder_sizes',
        'lpg_companies',
        'customers',
        'drivers',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUMS:
            _enum(name).drop(bind, checkfirst=True)
