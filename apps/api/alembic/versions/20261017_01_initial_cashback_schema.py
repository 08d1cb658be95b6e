"""initial cashback ledger and campaign schema"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261017_01_initial_cashback_schema"
down_revision = None
branch_labels = None
depends_on = None


RULE_TYPES = ("FIXED", "PERCENTAGE")
TIME_UNITS = ("DAYS", "WEEKS", "MONTHS", "YEARS")

ENUMS = {
    "sale_status": ("VALID", "CANCELLED"),
    "cashback_accrual_type": RULE_TYPES,
    "cashback_redemption_limit_type": RULE_TYPES,
    "campaign_cashback_type": RULE_TYPES,
    "cashback_transaction_type": ("ACCRUAL", "REDEMPTION", "EXPIRATION", "CANCELLATION"),
    "cashback_transaction_status": ("ACTIVE", "CONSUMED", "EXPIRED"),
    "campaign_trigger": (
        "NEW_PURCHASE",
        "FIRST_PURCHASE",
        "CASHBACK_ACCUMULATED",
        "TOTAL_PURCHASE_COUNT",
        "TOTAL_PURCHASE_VALUE",
        "SEGMENT_ENTRY",
        "SEGMENT_STAY",
        "CASHBACK_EXPIRING",
        "CLIENT_BIRTHDAY",
        "RECURRING",
    ),
    "campaign_time_unit": TIME_UNITS,
    "interaction_status": ("PENDING", "DISPATCHED", "FAILED", "CANCELLED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if with_updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("integration_type", sa.String(), nullable=True),
        sa.Column("integration_config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "operators",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("pin", sa.String(length=16), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("organization_id", "pin", name="uq_operators_organization_pin"),
    )
    op.create_table(
        "organization_memberships",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("operator_id", _uuid(), sa.ForeignKey("operators.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("organization_id", "operator_id", name="uq_organization_memberships_operator"),
    )
    op.create_table(
        "whatsapp_connections",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            _uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("token", sa.String(), nullable=True),
        sa.Column("gateway_session_id", sa.String(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_table(
        "clients",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("phone_base", sa.String(), nullable=True),
        sa.Column("document", sa.String(), nullable=True),
        sa.Column("acquisition_channel", sa.String(), nullable=True),
        sa.Column("rfm_segment", sa.String(), nullable=True),
        sa.Column("purchase_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purchase_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("first_sale_id", _uuid(), nullable=True),
        sa.Column("first_sale_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sale_id", _uuid(), nullable=True),
        sa.Column("last_sale_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clients_organization_id", "clients", ["organization_id"])
    op.create_index("ix_clients_phone_base", "clients", ["phone_base"])
    op.create_index("ix_clients_document", "clients", ["document"])

    op.create_table(
        "partners",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", _uuid(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("organization_id", "code", name="uq_partners_organization_code"),
    )
    op.create_table(
        "sales",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", _uuid(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("operator_id", _uuid(), sa.ForeignKey("operators.id", ondelete="SET NULL"), nullable=True),
        sa.Column("partner_id", _uuid(), sa.ForeignKey("partners.id", ondelete="SET NULL"), nullable=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("total_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", _enum("sale_status"), nullable=False),
        sa.Column("sold_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "external_id", name="uq_sales_organization_external_id"),
    )
    op.create_index("ix_sales_organization_id", "sales", ["organization_id"])

    op.create_table(
        "message_templates",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_table(
        "campaigns",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("trigger", _enum("campaign_trigger"), nullable=False),
        sa.Column("min_sale_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("min_new_cashback", sa.Numeric(14, 2), nullable=True),
        sa.Column("min_total_cashback", sa.Numeric(14, 2), nullable=True),
        sa.Column("min_purchase_count", sa.Integer(), nullable=True),
        sa.Column("min_purchase_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("segments", sa.JSON(), nullable=False),
        sa.Column("schedule_offset_value", sa.Integer(), nullable=True),
        sa.Column("schedule_offset_unit", _enum("campaign_time_unit"), nullable=False),
        sa.Column("schedule_time_block", sa.String(length=5), nullable=False),
        sa.Column("allow_recurrence", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("recurrence_interval_value", sa.Integer(), nullable=True),
        sa.Column("recurrence_interval_unit", _enum("campaign_time_unit"), nullable=True),
        sa.Column("cashback_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cashback_type", _enum("campaign_cashback_type"), nullable=True),
        sa.Column("cashback_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("cashback_expiration_value", sa.Integer(), nullable=True),
        sa.Column("cashback_expiration_unit", _enum("campaign_time_unit"), nullable=True),
        sa.Column(
            "template_id", _uuid(), sa.ForeignKey("message_templates.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("channel_phone_id", sa.String(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_campaigns_organization_id", "campaigns", ["organization_id"])

    op.create_table(
        "interactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", _uuid(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", _uuid(), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sale_id", _uuid(), sa.ForeignKey("sales.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _enum("interaction_status"), nullable=False),
        sa.Column("scheduled_for", sa.Date(), nullable=False),
        sa.Column("time_block", sa.String(length=5), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_interactions_sale_id", "interactions", ["sale_id"])
    op.create_index(
        "ix_interactions_client_campaign_created", "interactions", ["client_id", "campaign_id", "created_at"]
    )

    op.create_table(
        "cashback_programs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            _uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("accrual_type", _enum("cashback_accrual_type"), nullable=False),
        sa.Column("accrual_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("partner_accrual_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("minimum_sale_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("accrue_via_integration", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("accrue_via_point_of_interaction", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expiration_days", sa.Integer(), nullable=False, server_default="90"),
        sa.Column("redemption_limit_type", _enum("cashback_redemption_limit_type"), nullable=True),
        sa.Column("redemption_limit_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("discount_mode_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reward_mode_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_table(
        "cashback_program_balances",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", _uuid(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("program_id", _uuid(), sa.ForeignKey("cashback_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("available", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("accumulated_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("redeemed_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expired_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "program_id", name="uq_cashback_program_balances_client_program"),
    )
    op.create_table(
        "cashback_program_transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("organization_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("program_id", _uuid(), sa.ForeignKey("cashback_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "balance_id", _uuid(), sa.ForeignKey("cashback_program_balances.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("client_id", _uuid(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sale_id", _uuid(), sa.ForeignKey("sales.id", ondelete="SET NULL"), nullable=True),
        sa.Column("campaign_id", _uuid(), sa.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True),
        sa.Column("operator_id", _uuid(), sa.ForeignKey("operators.id", ondelete="SET NULL"), nullable=True),
        sa.Column("entry_type", _enum("cashback_transaction_type"), nullable=False),
        sa.Column("status", _enum("cashback_transaction_status"), nullable=False),
        sa.Column("status_reason", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("remaining", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("sale_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("balance_id", "sequence", name="uq_cashback_program_transactions_sequence"),
    )
    op.create_index(
        "ix_cashback_program_transactions_client_id", "cashback_program_transactions", ["client_id"]
    )
    op.create_index("ix_cashback_program_transactions_sale_id", "cashback_program_transactions", ["sale_id"])
    op.create_index(
        "ix_cashback_program_transactions_grants",
        "cashback_program_transactions",
        ["program_id", "status", "expires_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_cashback_program_transactions_grants", table_name="cashback_program_transactions")
    op.drop_index("ix_cashback_program_transactions_sale_id", table_name="cashback_program_transactions")
    op.drop_index("ix_cashback_program_transactions_client_id", table_name="cashback_program_transactions")
    op.drop_table("cashback_program_transactions")
    op.drop_table("cashback_program_balances")
    op.drop_table("cashback_programs")
    op.drop_index("ix_interactions_client_campaign_created", table_name="interactions")
    op.drop_index("ix_interactions_sale_id", table_name="interactions")
    op.drop_table("interactions")
    op.drop_index("ix_campaigns_organization_id", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("message_templates")
    op.drop_index("ix_sales_organization_id", table_name="sales")
    op.drop_table("sales")
    op.drop_table("partners")
    op.drop_index("ix_clients_document", table_name="clients")
    op.drop_index("ix_clients_phone_base", table_name="clients")
    op.drop_index("ix_clients_organization_id", table_name="clients")
    op.drop_table("clients")
    op.drop_table("whatsapp_connections")
    op.drop_table("organization_memberships")
    op.drop_table("operators")
    op.drop_table("organizations")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
