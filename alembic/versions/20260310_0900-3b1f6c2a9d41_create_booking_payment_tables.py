"""create_booking_payment_tables

Revision ID: 3b1f6c2a9d41
Revises:
Create Date: 2026-03-10 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
    ]


def upgrade() -> None:
    op.create_table(
        'rides',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False, comment='司机用户ID'),
        sa.Column('driver_payout_account', sa.String(length=100), nullable=True, comment='司机 Stripe Connect 账户'),
        sa.Column('origin', sa.String(length=255), nullable=False, server_default='', comment='出发地'),
        sa.Column('destination', sa.String(length=255), nullable=False, server_default='', comment='目的地'),
        sa.Column('departure_time', sa.DateTime(timezone=True), nullable=False, comment='出发时间'),
        sa.Column('available_seats', sa.Integer(), nullable=False, comment='剩余座位'),
        sa.Column('price_per_seat', sa.Numeric(precision=10, scale=2), nullable=False, comment='每座价格'),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='乐观锁版本号'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_rides'),
        comment='行程表'
    )
    op.create_index('ix_rides_id', 'rides', ['id'])
    op.create_index('ix_rides_driver_id', 'rides', ['driver_id'])
    op.create_index('ix_rides_departure_time', 'rides', ['departure_time'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ride_id', sa.Integer(), nullable=False, comment='行程ID'),
        sa.Column('passenger_id', sa.Integer(), nullable=False, comment='乘客用户ID'),
        sa.Column('seats', sa.Integer(), nullable=False, server_default='1', comment='预订座位数'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='预订状态: pending/confirmed/rejected/cancelled/completed'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('passenger_alerted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('driver_alerted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='乐观锁版本号'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['ride_id'], ['rides.id'], name='fk_bookings_ride_id_rides'),
        sa.PrimaryKeyConstraint('id', name='pk_bookings'),
        comment='预订表'
    )
    op.create_index('ix_bookings_id', 'bookings', ['id'])
    op.create_index('ix_bookings_ride_id', 'bookings', ['ride_id'])
    op.create_index('ix_bookings_passenger_id', 'bookings', ['passenger_id'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_ride_passenger_status', 'bookings', ['ride_id', 'passenger_id', 'status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False, comment='预订ID'),
        sa.Column('passenger_id', sa.Integer(), nullable=False, comment='乘客用户ID'),
        sa.Column('driver_id', sa.Integer(), nullable=False, comment='司机用户ID'),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False, comment='支付总额'),
        sa.Column('platform_fee', sa.Numeric(precision=10, scale=2), nullable=False, comment='平台佣金'),
        sa.Column('driver_amount', sa.Numeric(precision=10, scale=2), nullable=False, comment='司机所得'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR', comment='货币代码 ISO-4217'),
        sa.Column('payment_intent_id', sa.String(length=100), nullable=True, comment='Stripe PaymentIntent ID'),
        sa.Column('destination_account_id', sa.String(length=100), nullable=True, comment='Stripe Connect 目标账户'),
        sa.Column('transfer_id', sa.String(length=100), nullable=True),
        sa.Column('refund_id', sa.String(length=100), nullable=True),
        sa.Column('refunded_amount', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0', comment='已退款金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='支付状态: pending/authorized/captured/cancelled/refunded/failed'),
        *_timestamps(),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name='fk_payments_booking_id_bookings'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        comment='支付表'
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_booking_id', 'payments', ['booking_id'])
    op.create_index('ix_payments_passenger_id', 'payments', ['passenger_id'])
    op.create_index('ix_payments_driver_id', 'payments', ['driver_id'])
    op.create_index('ix_payments_payment_intent_id', 'payments', ['payment_intent_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_booking_status', 'payments', ['booking_id', 'status'])

    op.create_table(
        'booking_transition_intents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False, comment='预订动作: hold/accept/reject/cancel/complete'),
        sa.Column('operation', sa.String(length=20), nullable=False, comment='网关操作: hold/void/capture/refund/settle'),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/succeeded/failed'),
        sa.Column('payment_intent_id', sa.String(length=100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name='fk_booking_transition_intents_booking_id_bookings'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_booking_transition_intents_payment_id_payments'),
        sa.PrimaryKeyConstraint('id', name='pk_booking_transition_intents'),
        comment='网关调用前写入的状态转换意图（outbox）'
    )
    op.create_index('ix_booking_transition_intents_id', 'booking_transition_intents', ['id'])
    op.create_index('ix_booking_transition_intents_booking_id', 'booking_transition_intents', ['booking_id'])
    op.create_index('ix_booking_transition_intents_idempotency_key', 'booking_transition_intents', ['idempotency_key'])
    op.create_index('ix_transition_intents_status_created', 'booking_transition_intents', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_transition_intents_status_created', table_name='booking_transition_intents')
    op.drop_index('ix_booking_transition_intents_idempotency_key', table_name='booking_transition_intents')
    op.drop_index('ix_booking_transition_intents_booking_id', table_name='booking_transition_intents')
    op.drop_index('ix_booking_transition_intents_id', table_name='booking_transition_intents')
    op.drop_table('booking_transition_intents')

    for name in (
        'ix_payments_booking_status', 'ix_payments_created_at', 'ix_payments_status',
        'ix_payments_payment_intent_id', 'ix_payments_driver_id', 'ix_payments_passenger_id',
        'ix_payments_booking_id', 'ix_payments_id',
    ):
        op.drop_index(name, table_name='payments')
    op.drop_table('payments')

    for name in (
        'ix_bookings_ride_passenger_status', 'ix_bookings_status', 'ix_bookings_passenger_id',
        'ix_bookings_ride_id', 'ix_bookings_id',
    ):
        op.drop_index(name, table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('ix_rides_departure_time', table_name='rides')
    op.drop_index('ix_rides_driver_id', table_name='rides')
    op.drop_index('ix_rides_id', table_name='rides')
    op.drop_table('rides')
