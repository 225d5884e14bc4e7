"""
Alembic migration: Initial order fulfillment schema.

Creates products, inventory records and stock movements, per-seller orders
with their items and status history, partial payments and return requests.
Stock, money and quantity invariants are enforced with check constraints.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ('pending', 'confirmed', 'shipped', 'delivered', 'cancelled', 'payment_failed')
ORDER_PAYMENT_STATUSES = ('unpaid', 'paid', 'failed', 'refunded', 'canceled')
STOCK_OPERATIONS = ('increment', 'decrement', 'set')
PARTIAL_PAYMENT_STATUSES = ('pending', 'completed', 'refunded')
RETURN_STATUSES = ('pending', 'approved', 'rejected', 'received', 'refunded')


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text('gen_random_uuid()'),
        ),
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
            comment='Record creation timestamp',
        ),
        sa.Column(
            'updated_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
            comment='Last modification timestamp',
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to the initial fulfillment model.
    """
    order_status = postgresql.ENUM(*ORDER_STATUSES, name='order_status')
    order_payment_status = postgresql.ENUM(*ORDER_PAYMENT_STATUSES, name='order_payment_status')
    stock_operation = postgresql.ENUM(*STOCK_OPERATIONS, name='stock_operation')
    partial_payment_status = postgresql.ENUM(
        *PARTIAL_PAYMENT_STATUSES, name='partial_payment_status'
    )
    return_status = postgresql.ENUM(*RETURN_STATUSES, name='return_status')

    # Create products table
    op.create_table(
        'products',
        *_base_columns(),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=False,
                  comment='Seller who owns the listing'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False,
                  comment='Current live price'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        comment='Seller product listings',
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])

    # Create inventory tables
    op.create_table(
        'inventory_records',
        *_base_columns(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0',
                  comment='On-hand quantity'),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_records'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('product_id', name='uq_inventory_records_product_id'),
        sa.CheckConstraint('stock >= 0', name='ck_inventory_records_stock_non_negative'),
        comment='Per-product stock levels',
    )

    op.create_table(
        'stock_movements',
        *_base_columns(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('operation', stock_operation, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_movements_quantity_non_negative'),
        sa.CheckConstraint('new_stock >= 0', name='ck_stock_movements_new_stock_non_negative'),
        comment='Stock mutation audit trail',
    )
    op.create_index(
        'ix_stock_movements_product_created',
        'stock_movements',
        ['product_id', 'created_at'],
    )

    # Create orders tables
    op.create_table(
        'orders',
        *_base_columns(),
        sa.Column('checkout_session_id', postgresql.UUID(as_uuid=True), nullable=False,
                  comment='Checkout session shared by sibling seller orders'),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=False,
                  comment='Customer who placed the order'),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=False,
                  comment='Seller fulfilling the order'),
        sa.Column('courier_id', postgresql.UUID(as_uuid=True), nullable=True,
                  comment='Courier assigned for delivery'),
        sa.Column('status', order_status, nullable=False, server_default='pending',
                  comment='Current order status'),
        sa.Column('payment_status', order_payment_status, nullable=False,
                  server_default='unpaid', comment='Current payment status'),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False,
                  comment='Sum of line item totals'),
        sa.Column('shipping_cost', sa.Numeric(precision=10, scale=2), nullable=False,
                  server_default='0', comment='Shipping charged for this seller order'),
        sa.Column('total_amount', sa.Numeric(precision=10, scale=2), nullable=False,
                  comment='Subtotal plus shipping'),
        sa.Column('payment_method', sa.String(length=50), nullable=False,
                  comment='Payment method chosen at checkout'),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True,
                  comment='Payment provider intent identifier'),
        sa.Column('shipping_address', sa.JSON(), nullable=False,
                  comment='Shipping address snapshot taken at checkout'),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True,
                  comment='Timestamp when payment was confirmed'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('shipping_cost >= 0', name='ck_orders_shipping_cost_non_negative'),
        sa.CheckConstraint(
            'total_amount = subtotal + shipping_cost',
            name='ck_orders_total_is_subtotal_plus_shipping',
        ),
        comment='Per-seller orders created at checkout',
    )
    for column in (
        'checkout_session_id',
        'customer_id',
        'seller_id',
        'courier_id',
        'status',
        'payment_status',
        'payment_intent_id',
    ):
        op.create_index(f'ix_orders_{column}', 'orders', [column])
    op.create_index('ix_orders_customer_status', 'orders', ['customer_id', 'status'])
    op.create_index('ix_orders_seller_status', 'orders', ['seller_id', 'status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False,
                  comment='Product name captured at checkout'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=10, scale=2), nullable=False,
                  comment='Unit price captured at checkout'),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='RESTRICT'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
        comment='Individual items in an order',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_status_history',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('from_status', sa.String(length=50), nullable=True),
        sa.Column('to_status', sa.String(length=50), nullable=False),
        sa.Column('payment_status', sa.String(length=50), nullable=False),
        sa.Column('changed_by', postgresql.UUID(as_uuid=True), nullable=True,
                  comment='User who made the change; null for provider events'),
        sa.Column('source', sa.String(length=50), nullable=False,
                  comment='What drove the change (checkout, webhook, seller, courier, ...)'),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_order_status_history'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # Create partial payments table
    op.create_table(
        'partial_payments',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=False),
        sa.Column('transaction_ref', sa.String(length=255), nullable=True,
                  comment='Payment provider transaction reference'),
        sa.Column('status', partial_payment_status, nullable=False, server_default='pending'),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_partial_payments'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.CheckConstraint('amount > 0', name='ck_partial_payments_amount_positive'),
    )
    op.create_index('ix_partial_payments_order_id', 'partial_payments', ['order_id'])
    op.create_index(
        'ix_partial_payments_order_status',
        'partial_payments',
        ['order_id', 'status'],
    )

    # Create return requests table
    op.create_table(
        'return_requests',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_item_id', postgresql.UUID(as_uuid=True), nullable=True,
                  comment='Line item being returned; null for whole-order returns'),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('reason', sa.String(length=1000), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('refund_method', sa.String(length=50), nullable=False),
        sa.Column('status', return_status, nullable=False, server_default='pending'),
        sa.Column('refund_amount', sa.Numeric(precision=10, scale=2), nullable=True,
                  comment='Frozen at approval'),
        sa.Column('approver_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('rejection_reason', sa.String(length=1000), nullable=True),
        sa.Column('refund_reference', sa.String(length=255), nullable=True,
                  comment='Payment provider refund identifier'),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_return_requests'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ondelete='RESTRICT'),
        sa.CheckConstraint('quantity > 0', name='ck_return_requests_quantity_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'rejected') OR refund_amount IS NOT NULL",
            name='ck_return_requests_refund_amount_after_approval',
        ),
        comment='Customer return and refund requests',
    )
    op.create_index('ix_return_requests_order_id', 'return_requests', ['order_id'])
    op.create_index('ix_return_requests_customer_id', 'return_requests', ['customer_id'])
    op.create_index(
        'ix_return_requests_order_status',
        'return_requests',
        ['order_id', 'status'],
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing every fulfillment table.
    """
    op.drop_table('return_requests')
    op.drop_table('partial_payments')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('stock_movements')
    op.drop_table('inventory_records')
    op.drop_table('products')

    bind = op.get_bind()
    for enum_name in (
        'return_status',
        'partial_payment_status',
        'stock_operation',
        'order_payment_status',
        'order_status',
    ):
        postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
