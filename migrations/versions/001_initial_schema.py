"""Initial schema: users, rides, bids, counter-offer history and promo codes.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

USER_ROLE = postgresql.ENUM("rider", "driver", "admin", name="userrole", create_type=False)
VEHICLE_TYPE = postgresql.ENUM(
    "standard", "wheelchair", "stretcher", name="vehicletype", create_type=False
)
STAIRS_TIER = postgresql.ENUM(
    "none", "1-3", "4-10", "11+", "full_flight", name="stairstier", create_type=False
)
RIDE_STATUS = postgresql.ENUM(
    "requested",
    "bidding",
    "edit_pending",
    "scheduled",
    "payment_pending",
    "paid",
    "en_route",
    "arrived",
    "in_progress",
    "completed",
    "cancelled",
    name="ridestatus",
    create_type=False,
)
BID_STATUS = postgresql.ENUM(
    "pending", "selected", "accepted", "countered", "rejected", "withdrawn",
    name="bidstatus",
    create_type=False,
)
COUNTER_PARTY = postgresql.ENUM("rider", "driver", name="counterparty", create_type=False)
DISCOUNT_TYPE = postgresql.ENUM(
    "fixed_amount", "percentage", "set_price", name="discounttype", create_type=False
)

ENUMS = (
    USER_ROLE,
    VEHICLE_TYPE,
    STAIRS_TIER,
    RIDE_STATUS,
    BID_STATUS,
    COUNTER_PARTY,
    DISCOUNT_TYPE,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("role", USER_ROLE, nullable=False, server_default="rider"),
        sa.Column(
            "documents_complete", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("reference_number", sa.String(20), unique=True, nullable=False),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("pickup_location", sa.Text, nullable=False),
        sa.Column("dropoff_location", sa.Text, nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_round_trip", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("return_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_pickup_location", sa.Text, nullable=True),
        sa.Column("return_dropoff_location", sa.Text, nullable=True),
        sa.Column("return_pickup_lat", sa.Float, nullable=True),
        sa.Column("return_pickup_lng", sa.Float, nullable=True),
        sa.Column("return_dropoff_lat", sa.Float, nullable=True),
        sa.Column("return_dropoff_lng", sa.Float, nullable=True),
        sa.Column("vehicle_type", VEHICLE_TYPE, nullable=False),
        sa.Column("pickup_stairs", STAIRS_TIER, nullable=False, server_default="none"),
        sa.Column("dropoff_stairs", STAIRS_TIER, nullable=False, server_default="none"),
        sa.Column("needs_ramp", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("needs_companion", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("needs_stair_chair", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("needs_wait_time", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("wait_time_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("special_instructions", sa.Text, nullable=True),
        sa.Column("rider_bid", sa.Float, nullable=True),
        sa.Column("suggested_price", sa.Float, nullable=True),
        sa.Column("final_price", sa.Float, nullable=True),
        sa.Column("promo_code", sa.String(40), nullable=True),
        sa.Column("discounted_price", sa.Float, nullable=True),
        sa.Column("status", RIDE_STATUS, nullable=False, server_default="requested"),
        sa.Column("is_urgent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("urgent_cancellation_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_edit", sa.JSON, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("cancellation_fee", sa.Float, nullable=True),
        sa.Column("payment_failure_reason", sa.Text, nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_scheduled_time", "rides", ["scheduled_time"])
    op.create_index("idx_rides_status_expires", "rides", ["status", "expires_at"])
    op.create_index("idx_rides_idempotency", "rides", ["idempotency_key"])

    # ── bids ──────────────────────────────────────────────────────────
    op.create_table(
        "bids",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("status", BID_STATUS, nullable=False, server_default="pending"),
        sa.Column("bid_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("counter_party", COUNTER_PARTY, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_bids_ride", "bids", ["ride_id"])
    op.create_index("idx_bids_driver", "bids", ["driver_id"])
    op.create_index("idx_bids_ride_status", "bids", ["ride_id", "status"])
    op.create_index(
        "uq_bids_one_accepted_per_ride",
        "bids",
        ["ride_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )

    # ── counter_offers ────────────────────────────────────────────────
    op.create_table(
        "counter_offers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("bid_id", sa.Integer, sa.ForeignKey("bids.id"), nullable=False),
        sa.Column("party", COUNTER_PARTY, nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_counter_offers_bid", "counter_offers", ["bid_id"])

    # ── promo_codes ───────────────────────────────────────────────────
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(40), unique=True, nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("discount_type", DISCOUNT_TYPE, nullable=False),
        sa.Column("discount_value", sa.Float, nullable=False),
        sa.Column("max_uses", sa.Integer, nullable=True),
        sa.Column("used_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "applicable_roles",
            sa.JSON,
            nullable=False,
            server_default=sa.text("'[\"rider\", \"driver\"]'"),
        ),
        sa.Column("minimum_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("promo_codes")
    op.drop_table("counter_offers")
    op.drop_table("bids")
    op.drop_table("rides")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
