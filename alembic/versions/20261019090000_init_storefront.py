from alembic import op
import sqlalchemy as sa

revision = "20261019090000"
down_revision = None

ACTIVE = "status IN ('pending', 'reviewed', 'processing')"
NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'fragrances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=200), nullable=False, unique=True),
        sa.Column('brand', sa.String(length=120), nullable=True),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('image_path', sa.String(length=512), nullable=True),
        sa.Column('hidden', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_table(
        'variants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('fragrance_id', sa.Integer(), sa.ForeignKey('fragrances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('size_ml', sa.Integer(), nullable=True),
        sa.Column('label', sa.String(length=64), nullable=False),
        sa.Column('price_cents', sa.BigInteger(), nullable=True),
        sa.Column('is_whole_bottle', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('in_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_quantity', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=32), nullable=True, unique=True),
        sa.Column('user_id', sa.String(length=64), nullable=True, index=True),
        sa.Column('customer_ip', sa.String(length=64), nullable=True, index=True),
        sa.Column('customer_key', sa.String(length=128), nullable=False),
        sa.Column('customer_first_name', sa.String(length=120), nullable=False),
        sa.Column('customer_last_name', sa.String(length=120), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True, index=True),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('delivery_city', sa.String(length=120), nullable=False),
        sa.Column('delivery_region', sa.String(length=120), nullable=False),
        sa.Column('delivery_type', sa.String(length=32), nullable=False, server_default='home'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', index=True),
        sa.Column('reviewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_amount', sa.BigInteger(), nullable=False),
        sa.Column('review_deadline', sa.DateTime(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('audit_log', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_index(
        'uq_orders_active_customer', 'orders', ['customer_key'], unique=True,
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('fragrance_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('fragrance_name', sa.String(length=200), nullable=False),
        sa.Column('fragrance_brand', sa.String(length=120), nullable=True),
        sa.Column('variant_size', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('is_whole_bottle', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_table(
        'customer_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_ip', sa.String(length=64), nullable=False, unique=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('active_order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )

def downgrade():
    op.drop_table('customer_sessions')
    op.drop_table('order_items')
    op.drop_index('uq_orders_active_customer', table_name='orders')
    op.drop_table('orders')
    op.drop_table('variants')
    op.drop_table('fragrances')
