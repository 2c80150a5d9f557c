"""Quotation workflow schema: users, catalog, quotations, sales orders, step-up

Revision ID: 20261018_quotation_workflow
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_quotation_workflow"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False, server_default=False):
    if server_default:
        return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    # -- Identity --
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at", server_default=True),
        _timestamp("last_login_at", nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_username", ["username"], unique=False)

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        _timestamp("assigned_at", server_default=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("user_roles", schema=None) as batch_op:
        batch_op.create_index("ix_user_roles_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_user_roles_role_id", ["role_id"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        _timestamp("created_at"),
        _timestamp("last_used_at"),
        _timestamp("expires_at"),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        _timestamp("revoked_at", nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)

    # -- Catalog --
    op.create_table(
        "catalog_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("price_unit", sa.String(32), nullable=False, server_default="unit"),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("delivered_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at", server_default=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_catalog_items_stock_nonneg"),
        sa.CheckConstraint("delivered_quantity >= 0", name="ck_catalog_items_delivered_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("catalog_items", schema=None) as batch_op:
        batch_op.create_index("ix_catalog_items_sku", ["sku"], unique=True)

    # -- Quotations --
    op.create_table(
        "quotations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("staff_comment", sa.Text(), nullable=True),
        _timestamp("valid_from"),
        _timestamp("valid_until"),
        _timestamp("created_at", server_default=True),
        _timestamp("updated_at", nullable=True),
        _timestamp("submitted_at", nullable=True),
        _timestamp("issued_at", nullable=True),
        sa.Column("issued_by_user_id", sa.Integer(), nullable=True),
        _timestamp("expired_at", nullable=True),
        sa.Column("decision_kind", sa.String(16), nullable=True),
        sa.Column("decision_comment", sa.Text(), nullable=True),
        _timestamp("decided_at", nullable=True),
        sa.Column("decided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("linked_order_number", sa.String(64), nullable=True),
        sa.Column("last_adjustments", sa.JSON(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["issued_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["decided_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("linked_order_number"),
        sa.CheckConstraint("shipping_cents >= 0", name="ck_quotations_shipping_nonneg"),
        sa.CheckConstraint("discount_cents >= 0", name="ck_quotations_discount_nonneg"),
        sa.CheckConstraint("tax_rate_bps >= 0", name="ck_quotations_tax_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("quotations", schema=None) as batch_op:
        batch_op.create_index("ix_quotations_reference_number", ["reference_number"], unique=True)
        batch_op.create_index("ix_quotations_buyer_id", ["buyer_id"], unique=False)
        batch_op.create_index("ix_quotations_status", ["status"], unique=False)
        batch_op.create_index("ix_quotations_buyer_status", ["buyer_id", "status"], unique=False)

    op.create_table(
        "quotation_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("quotation_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("catalog_item_id", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("price_unit", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("available_at_request", sa.Integer(), nullable=True),
        _timestamp("price_captured_at", nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"]),
        sa.ForeignKeyConstraint(["catalog_item_id"], ["catalog_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity > 0", name="ck_quotation_lines_quantity_pos"),
        sa.CheckConstraint("unit_price_cents >= 0", name="ck_quotation_lines_price_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("quotation_lines", schema=None) as batch_op:
        batch_op.create_index("ix_quotation_lines_quotation_id", ["quotation_id"], unique=False)
        batch_op.create_index("ix_quotation_lines_catalog_item_id", ["catalog_item_id"], unique=False)

    # -- Sales orders --
    op.create_table(
        "sales_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("quotation_id", sa.Integer(), nullable=False),
        sa.Column("quotation_reference", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="confirmed"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False),
        sa.Column("payment_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("total_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("outstanding_balance_cents", sa.Integer(), nullable=False),
        _timestamp("created_at", server_default=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotations.id"]),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quotation_id", name="uq_sales_orders_quotation"),
        sa.CheckConstraint("outstanding_balance_cents >= 0", name="ck_sales_orders_outstanding_nonneg"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales_orders", schema=None) as batch_op:
        batch_op.create_index("ix_sales_orders_order_number", ["order_number"], unique=True)
        batch_op.create_index("ix_sales_orders_buyer_id", ["buyer_id"], unique=False)
        batch_op.create_index("ix_sales_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_orders_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_sales_orders_buyer_status", ["buyer_id", "status"], unique=False)

    op.create_table(
        "sales_order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("catalog_item_id", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("price_unit", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_dispatched", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["sales_orders.id"]),
        sa.ForeignKeyConstraint(["catalog_item_id"], ["catalog_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity > 0", name="ck_sales_order_lines_quantity_pos"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales_order_lines", schema=None) as batch_op:
        batch_op.create_index("ix_sales_order_lines_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_sales_order_lines_catalog_item_id", ["catalog_item_id"], unique=False)

    op.create_table(
        "payment_proofs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("proof_reference", sa.String(512), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=False),
        _timestamp("submitted_at", server_default=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        _timestamp("reviewed_at", nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["order_id"], ["sales_orders.id"]),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount_cents > 0", name="ck_payment_proofs_amount_pos"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_proofs", schema=None) as batch_op:
        batch_op.create_index("ix_payment_proofs_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_payment_proofs_status", ["status"], unique=False)
        batch_op.create_index("ix_payment_proofs_submitted_by_user_id", ["submitted_by_user_id"], unique=False)
        batch_op.create_index("ix_payment_proofs_submitted_at", ["submitted_at"], unique=False)

    op.create_table(
        "order_timeline_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("payment_proof_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("occurred_at", server_default=True),
        sa.ForeignKeyConstraint(["order_id"], ["sales_orders.id"]),
        sa.ForeignKeyConstraint(["payment_proof_id"], ["payment_proofs.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_timeline_events", schema=None) as batch_op:
        batch_op.create_index("ix_order_timeline_events_order_id", ["order_id"], unique=False)

    # -- Security, step-up and audit --
    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        _timestamp("occurred_at", server_default=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_success", ["success"], unique=False)
        batch_op.create_index("ix_security_events_user_type", ["user_id", "event_type"], unique=False)
        batch_op.create_index("ix_security_events_occurred", ["occurred_at"], unique=False)

    op.create_table(
        "stepup_challenges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("required_kinds", sa.JSON(), nullable=False),
        sa.Column("satisfied_kinds", sa.JSON(), nullable=False),
        sa.Column("risk_signals", sa.JSON(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("password_failures", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("verification_failures", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        _timestamp("created_at"),
        _timestamp("expires_at"),
        _timestamp("resolved_at", nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stepup_challenges", schema=None) as batch_op:
        batch_op.create_index("ix_stepup_challenges_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_stepup_challenges_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_stepup_challenges_status", ["status"], unique=False)
        batch_op.create_index("ix_stepup_challenges_expires_at", ["expires_at"], unique=False)
        batch_op.create_index(
            "ix_stepup_challenges_triple",
            ["actor_user_id", "action_type", "document_type", "document_id", "status"],
            unique=False,
        )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("from_status", sa.String(32), nullable=True),
        sa.Column("to_status", sa.String(32), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
        _timestamp("created_at", server_default=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.create_index("ix_audit_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_audit_events_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_audit_events_entity", ["entity_type", "entity_id"], unique=False)
        batch_op.create_index("ix_audit_events_occurred", ["occurred_at"], unique=False)


def downgrade():
    for table in (
        "audit_events",
        "document_sequences",
        "stepup_challenges",
        "security_events",
        "order_timeline_events",
        "payment_proofs",
        "sales_order_lines",
        "sales_orders",
        "quotation_lines",
        "quotations",
        "catalog_items",
        "session_tokens",
        "user_roles",
        "roles",
        "users",
    ):
        op.drop_table(table)
