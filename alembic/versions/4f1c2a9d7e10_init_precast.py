"""init precast

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-03-02 09:14:27.118402

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name, **kw):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False, **kw)


def upgrade() -> None:
    # =========================
    # Identity & project scope
    # =========================
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("first_name", sa.String(), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(), nullable=False, server_default=""),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at"),
    )
    op.create_table(
        "session",
        sa.Column("session_id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("host_name", sa.String()),
        sa.Column("ip_address", sa.String()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_session_user_id", "session", ["user_id"])

    op.create_table(
        "client",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
    )
    op.create_table(
        "end_client",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("client.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("abbreviation", sa.String(), nullable=False, server_default=""),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
    )
    op.create_index("ix_end_client_client_id", "end_client", ["client_id"])

    op.create_table(
        "project",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("abbreviation", sa.String(), nullable=False, server_default=""),
        sa.Column("end_client_id", sa.Integer(), sa.ForeignKey("end_client.id"), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_project_end_client_id", "project", ["end_client_id"])

    op.create_table(
        "project_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    # =========================
    # Project setup
    # =========================
    op.create_table(
        "precast",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("precast.id")),
        sa.Column("naming_convention", sa.String(), nullable=False, server_default=""),
    )
    op.create_index("ix_precast_project_id", "precast", ["project_id"])
    op.create_index("ix_precast_parent_id", "precast", ["parent_id"])

    op.create_table(
        "project_stages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("assigned_to", sa.Integer()),
        sa.Column("qc_id", sa.Integer()),
        sa.Column("paper_id", sa.Integer()),
    )
    op.create_index("ix_project_stages_project_id", "project_stages", ["project_id"])

    op.create_table(
        "drawing_type",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
    )
    op.create_index("ix_drawing_type_project_id", "drawing_type", ["project_id"])

    op.create_table(
        "inv_bom",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("unit", sa.String()),
        sa.Column("rate", sa.Numeric(18, 2)),
    )

    # =========================
    # Element type aggregate
    # =========================
    op.create_table(
        "element_type",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        *[
            sa.Column(c, sa.Numeric(18, 4), nullable=False, server_default="0")
            for c in ("thickness", "length", "height", "width", "area", "volume", "mass", "density")
        ],
        sa.Column("version_code", sa.String(), nullable=False),
        sa.Column("stage_path", postgresql.ARRAY(sa.Integer()), nullable=False),
        sa.Column("total_count_element", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String()),
        sa.Column("updated_by", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("project_id", "code", name="uq_element_type_project_code"),
    )
    op.create_index("ix_element_type_project_id", "element_type", ["project_id"])

    # children of element_type hold a plain element_type_id (no FK)
    op.create_table(
        "element_type_hierarchy_quantity",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("hierarchy_id", sa.Integer(), sa.ForeignKey("precast.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("naming_convention", sa.String(), nullable=False, server_default=""),
        sa.UniqueConstraint("element_type_id", "hierarchy_id", name="uq_ethq_type_hierarchy"),
    )
    op.create_index("ix_element_type_hierarchy_quantity_element_type_id",
                    "element_type_hierarchy_quantity", ["element_type_id"])

    op.create_table(
        "drawings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("drawing_type_id", sa.Integer(), sa.ForeignKey("drawing_type.id"), nullable=False),
        sa.Column("current_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("file", sa.String()),
        sa.Column("comments", sa.Text()),
        sa.Column("created_by", sa.String()),
        sa.Column("updated_by", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("element_type_id", "drawing_type_id", name="uq_drawing_type_per_element_type"),
    )
    op.create_index("ix_drawings_project_id", "drawings", ["project_id"])
    op.create_index("ix_drawings_element_type_id", "drawings", ["element_type_id"])

    op.create_table(
        "drawings_revision",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_drawing_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("drawing_type_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("file", sa.String()),
        sa.Column("comments", sa.Text()),
        sa.Column("created_by", sa.String()),
        _ts("created_at"),
        sa.UniqueConstraint("parent_drawing_id", "version", name="uq_drawing_revision_version"),
    )
    op.create_index("ix_drawings_revision_parent_drawing_id", "drawings_revision", ["parent_drawing_id"])
    op.create_index("ix_drawings_revision_element_type_id", "drawings_revision", ["element_type_id"])

    op.create_table(
        "element_type_bom",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("inv_bom.id"), nullable=False),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("unit", sa.String()),
        sa.Column("rate", sa.Numeric(18, 2)),
        sa.Column("created_by", sa.String()),
        sa.Column("updated_by", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_element_type_bom_element_type_id", "element_type_bom", ["element_type_id"])

    op.create_table(
        "element_type_revision_bom",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_type_bom_id", sa.Integer(), nullable=False),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("unit", sa.String()),
        sa.Column("rate", sa.Numeric(18, 2)),
        _ts("changed_at"),
        sa.Column("changed_by", sa.String()),
    )
    op.create_index("ix_element_type_revision_bom_element_type_bom_id",
                    "element_type_revision_bom", ["element_type_bom_id"])
    op.create_index("ix_element_type_revision_bom_element_type_id",
                    "element_type_revision_bom", ["element_type_id"])

    # =========================
    # Production
    # =========================
    op.create_table(
        "element",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("element_code", sa.String(), nullable=False),
        sa.Column("element_name", sa.String(), nullable=False, server_default=""),
        sa.Column("target_location", sa.Integer(), sa.ForeignKey("precast.id"), nullable=False),
        sa.Column("element_type_version", sa.String(), nullable=False),
        sa.Column("instage", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("disable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("billable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("drawing_revision_id", sa.Integer(), sa.ForeignKey("drawings_revision.id")),
        sa.Column("bom_revision_id", sa.Integer(), sa.ForeignKey("element_type_revision_bom.id")),
        sa.Column("created_by", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("element_type_id", "element_code", name="uq_element_type_code"),
    )
    op.create_index("ix_element_element_type_id", "element", ["element_type_id"])
    op.create_index("ix_element_project_id", "element", ["project_id"])
    op.create_index("ix_element_type_location", "element", ["element_type_id", "target_location"])

    status_cols = [
        sa.Column(c, sa.String(), nullable=False, server_default="Inprogress")
        for c in ("status", "qc_status", "mesh_mold_status", "reinforcement_status",
                  "meshmold_qc_status", "reinforcement_qc_status")
    ]
    op.create_table(
        "activity",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_id", sa.Integer(), sa.ForeignKey("element.id"), nullable=False, unique=True),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("project_stages.id"), nullable=False),
        sa.Column("task_id", sa.Integer()),
        sa.Column("assigned_to", sa.Integer()),
        sa.Column("qc_id", sa.Integer()),
        sa.Column("paper_id", sa.Integer()),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *status_cols,
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_activity_project_id", "activity", ["project_id"])

    op.create_table(
        "complete_production",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_id", sa.Integer(), sa.ForeignKey("element.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        _ts("started_at"),
        sa.Column("status", sa.String()),
        sa.Column("user_id", sa.Integer()),
    )
    op.create_index("ix_complete_production_element_id", "complete_production", ["element_id"])

    op.create_table(
        "precast_stock",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("element_id", sa.Integer(), sa.ForeignKey("element.id"), nullable=False, unique=True),
        sa.Column("element_type_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("target_location", sa.Integer()),
        *[
            sa.Column(c, sa.Boolean(), nullable=False, server_default=sa.text("false"))
            for c in ("stockyard", "order_by_erection", "dispatch_status", "receive_in_erection", "erected")
        ],
        sa.Column("production_date", sa.DateTime(timezone=True)),
        sa.Column("dispatch_start", sa.DateTime(timezone=True)),
        sa.Column("dispatch_end", sa.DateTime(timezone=True)),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("NOT erected OR receive_in_erection", name="ck_precast_stock_erected_received"),
    )
    op.create_index("ix_precast_stock_element_type_id", "precast_stock", ["element_type_id"])
    op.create_index("ix_precast_stock_project_id", "precast_stock", ["project_id"])

    # =========================
    # Billing
    # =========================
    op.create_table(
        "work_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("wo_number", sa.String(), nullable=False),
        sa.Column("total_value", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("payment_term", postgresql.JSONB()),
        _ts("created_at"),
    )
    op.create_index("ix_work_order_project_id", "work_order", ["project_id"])

    op.create_table(
        "work_order_material",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("unit_rate", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("tax", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("volume", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("volume_used", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("floor_id", postgresql.ARRAY(sa.Integer())),
    )
    op.create_index("ix_work_order_material_work_order_id", "work_order_material", ["work_order_id"])

    op.create_table(
        "invoice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_order.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("project.id"), nullable=False),
        sa.Column("revision_no", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("billing_address", sa.Text()),
        sa.Column("shipping_address", sa.Text()),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_paid", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(), nullable=False, server_default="unpaid"),
        sa.Column("in_draft", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("work_order_id", "revision_no", name="uq_invoice_revision"),
    )
    op.create_index("ix_invoice_work_order_id", "invoice", ["work_order_id"])
    op.create_index("ix_invoice_project_id", "invoice", ["project_id"])

    op.create_table(
        "invoice_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False),
        sa.Column("work_order_material_id", sa.Integer(), sa.ForeignKey("work_order_material.id"), nullable=False),
        sa.Column("volume", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    op.create_index("ix_invoice_item_invoice_id", "invoice_item", ["invoice_id"])

    op.create_table(
        "invoice_payment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id"), nullable=False),
        sa.Column("amount_paid", sa.Numeric(18, 2), nullable=False),
        sa.Column("utr_number", sa.String(), nullable=False),
        _ts("payment_date"),
        sa.Column("created_by", sa.String()),
        _ts("created_at"),
    )
    op.create_index("ix_invoice_payment_invoice_id", "invoice_payment", ["invoice_id"])

    op.create_table(
        "element_invoice_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id"), nullable=False),
        sa.Column("work_order_id", sa.Integer(), nullable=False),
        sa.Column("element_id", sa.Integer(), sa.ForeignKey("element.id"), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("volume", sa.Numeric(18, 4), nullable=False, server_default="0"),
        _ts("created_at"),
        sa.UniqueConstraint("work_order_id", "element_id", "stage", name="uq_invoice_history_stage"),
    )
    op.create_index("ix_element_invoice_history_invoice_id", "element_invoice_history", ["invoice_id"])
    op.create_index("ix_element_invoice_history_element_id", "element_invoice_history", ["element_id"])

    # =========================
    # Audit / notify
    # =========================
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _ts("created_at"),
        sa.Column("user_name", sa.String()),
        sa.Column("host_name", sa.String()),
        sa.Column("ip_address", sa.String()),
        sa.Column("event_context", sa.String(), nullable=False),
        sa.Column("event_name", sa.String(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("project_id", sa.Integer()),
    )
    op.create_index("ix_activity_logs_project_id", "activity_logs", ["project_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="unread"),
        sa.Column("action", sa.String()),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    for table in (
        "notifications",
        "activity_logs",
        "element_invoice_history",
        "invoice_payment",
        "invoice_item",
        "invoice",
        "work_order_material",
        "work_order",
        "precast_stock",
        "complete_production",
        "activity",
        "element",
        "element_type_revision_bom",
        "element_type_bom",
        "drawings_revision",
        "drawings",
        "element_type_hierarchy_quantity",
        "element_type",
        "inv_bom",
        "drawing_type",
        "project_stages",
        "precast",
        "project_members",
        "project",
        "end_client",
        "client",
        "session",
        "users",
        "roles",
    ):
        op.drop_table(table)
