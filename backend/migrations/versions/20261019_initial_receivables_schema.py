"""Initial receivables schema: customers, invoices, debts, receipts, cash floats

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. users, customers
2. sales (invoices) and debts (one open-balance row per unpaid invoice)
3. register_sessions and money_boxes (cash floats)
4. customer_receipts and customer_receipt_allocations
5. cash_ledger_entries (single-target CHECK, one entry per receipt and type)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. USERS / CUSTOMERS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_username'), ['username'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_is_active'), ['is_active'], unique=False)

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.create_index('ix_customers_name', ['name'], unique=False)
        batch_op.create_index(batch_op.f('ix_customers_phone'), ['phone'], unique=False)
        batch_op.create_index(batch_op.f('ix_customers_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 2. SALES / DEBTS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('invoice_no', sa.String(length=64), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('paid_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('paid_amount_cents >= 0', name='ck_sales_paid_non_negative'),
        sa.CheckConstraint('paid_amount_cents <= total_amount_cents', name='ck_sales_paid_le_total'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_no', name='uq_sales_invoice_no'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_payment_status'), ['payment_status'], unique=False)
        batch_op.create_index('ix_sales_customer_status_due', ['customer_id', 'payment_status', 'due_date'], unique=False)

    op.create_table('debts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_debts_amount_positive'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', name='uq_debts_sale'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('debts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_debts_customer_id'), ['customer_id'], unique=False)

    # ==========================================================================
    # 3. CASH FLOATS
    # ==========================================================================
    op.create_table('register_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_cash_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('register_sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_register_sessions_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_register_sessions_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_register_sessions_opened_at'), ['opened_at'], unique=False)
        batch_op.create_index('ix_register_sessions_user_status', ['user_id', 'status'], unique=False)

    op.create_table('money_boxes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('balance_cents >= 0', name='ck_money_boxes_balance_non_negative'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_money_boxes_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('money_boxes', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_money_boxes_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 4. CUSTOMER RECEIPTS
    # ==========================================================================
    op.create_table('customer_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('receipt_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('excess_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('reference_number', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('money_box_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('cash_posting_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('cash_posting_error', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('amount_cents > 0', name='ck_customer_receipts_amount_positive'),
        sa.CheckConstraint('excess_amount_cents >= 0', name='ck_customer_receipts_excess_non_negative'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['voided_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_number', name='uq_customer_receipts_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_receipts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_receipts_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipts_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipts_money_box_id'), ['money_box_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipts_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipts_cash_posting_status'), ['cash_posting_status'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipts_created_by_user_id'), ['created_by_user_id'], unique=False)
        batch_op.create_index('ix_customer_receipts_customer_created', ['customer_id', 'created_at'], unique=False)

    op.create_table('customer_receipt_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_receipt_allocations_amount_positive'),
        sa.ForeignKeyConstraint(['receipt_id'], ['customer_receipts.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_id', 'sale_id', name='uq_receipt_allocations_receipt_sale'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_receipt_allocations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customer_receipt_allocations_receipt_id'), ['receipt_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_customer_receipt_allocations_sale_id'), ['sale_id'], unique=False)

    # ==========================================================================
    # 5. CASH LEDGER
    # ==========================================================================
    op.create_table('cash_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('money_box_id', sa.Integer(), nullable=True),
        sa.Column('register_session_id', sa.Integer(), nullable=True),
        sa.Column('entry_type', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_before_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('related_money_box_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('(money_box_id IS NULL) <> (register_session_id IS NULL)', name='ck_cash_ledger_single_target'),
        sa.ForeignKeyConstraint(['money_box_id'], ['money_boxes.id'], ),
        sa.ForeignKeyConstraint(['register_session_id'], ['register_sessions.id'], ),
        sa.ForeignKeyConstraint(['receipt_id'], ['customer_receipts.id'], ),
        sa.ForeignKeyConstraint(['related_money_box_id'], ['money_boxes.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_id', 'entry_type', name='uq_cash_ledger_receipt_entry_type'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_ledger_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_ledger_entries_entry_type'), ['entry_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_ledger_entries_receipt_id'), ['receipt_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_ledger_entries_created_by_user_id'), ['created_by_user_id'], unique=False)
        batch_op.create_index('ix_cash_ledger_money_box_created', ['money_box_id', 'created_at'], unique=False)
        batch_op.create_index('ix_cash_ledger_session_created', ['register_session_id', 'created_at'], unique=False)


def downgrade():
    op.drop_table('cash_ledger_entries')
    op.drop_table('customer_receipt_allocations')
    op.drop_table('customer_receipts')
    op.drop_table('money_boxes')
    op.drop_table('register_sessions')
    op.drop_table('debts')
    op.drop_table('sales')
    op.drop_table('customers')
    op.drop_table('users')
