# models.py
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Session, relationship

from database import Base
from errors import InvariantViolation
from utils.stage_path import StagePathType

# JSONB on Postgres, JSON elsewhere (tests run on SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")
IntArray = JSON().with_variant(ARRAY(Integer), "postgresql")


def utcnow():
    return datetime.now(timezone.utc)


# =========================================
# ========= Identity & project scope ======
# =========================================

class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)   # superadmin / admin / ...


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    role = relationship("Role")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserSession(Base):
    """Sessions issued by the login service; the token carries ``sid``."""
    __tablename__ = "session"

    session_id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    host_name = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")


class Client(Base):
    __tablename__ = "client"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)   # admin login of the client

    end_clients = relationship("EndClient", back_populates="client")


class EndClient(Base):
    __tablename__ = "end_client"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("client.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    abbreviation = Column(String, nullable=False, default="")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    client = relationship("Client", back_populates="end_clients")
    projects = relationship("Project", back_populates="end_client")


class Project(Base):
    __tablename__ = "project"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    abbreviation = Column(String, nullable=False, default="")
    end_client_id = Column(Integer, ForeignKey("end_client.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    end_client = relationship("EndClient", back_populates="projects")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    project = relationship("Project", back_populates="members")

    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)


# =========================================
# ============ Project setup ==============
# =========================================

class Precast(Base):
    """Tower / floor node. A node with a parent is a floor of that tower."""
    __tablename__ = "precast"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    parent_id = Column(Integer, ForeignKey("precast.id"), nullable=True, index=True)
    naming_convention = Column(String, nullable=False, default="")


class ProjectStage(Base):
    __tablename__ = "project_stages"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    # defaults copied onto an Activity entering this stage
    assigned_to = Column(Integer, nullable=True)
    qc_id = Column(Integer, nullable=True)
    paper_id = Column(Integer, nullable=True)


class DrawingType(Base):
    __tablename__ = "drawing_type"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    name = Column(String, nullable=False)


class InvBom(Base):
    """Inventory products a BOM line can point at."""
    __tablename__ = "inv_bom"

    id = Column(Integer, primary_key=True)
    product_name = Column(String, nullable=False)
    unit = Column(String, nullable=True)
    rate = Column(Numeric(18, 2), nullable=True)


# =========================================
# ========= Element type aggregate ========
# =========================================

class ElementType(Base):
    __tablename__ = "element_type"

    id = Column(Integer, primary_key=True, autoincrement=False)   # random 9-digit id
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    code = Column(String, nullable=False)          # e.g. WALL
    name = Column(String, nullable=False, default="")

    thickness = Column(Numeric(18, 4), nullable=False, default=0)
    length = Column(Numeric(18, 4), nullable=False, default=0)
    height = Column(Numeric(18, 4), nullable=False, default=0)
    width = Column(Numeric(18, 4), nullable=False, default=0)
    area = Column(Numeric(18, 4), nullable=False, default=0)
    volume = Column(Numeric(18, 4), nullable=False, default=0)
    mass = Column(Numeric(18, 4), nullable=False, default=0)
    density = Column(Numeric(18, 4), nullable=False, default=0)

    version_code = Column(String, nullable=False)            # RV-01, RV-02, ...
    stage_path = Column(StagePathType(), nullable=False)
    total_count_element = Column(Integer, nullable=False, default=0)

    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # children keep a plain element_type_id (no FK) so the type row can go alone;
    # read-only relationships, writes go through the services
    hierarchy = relationship(
        "ElementTypeHierarchyQuantity",
        primaryjoin="ElementType.id == foreign(ElementTypeHierarchyQuantity.element_type_id)",
        order_by="ElementTypeHierarchyQuantity.hierarchy_id",
        viewonly=True,
    )
    drawings = relationship(
        "Drawing",
        primaryjoin="ElementType.id == foreign(Drawing.element_type_id)",
        order_by="Drawing.drawing_type_id",
        viewonly=True,
    )
    bom_lines = relationship(
        "ElementTypeBom",
        primaryjoin="ElementType.id == foreign(ElementTypeBom.element_type_id)",
        order_by="ElementTypeBom.id",
        viewonly=True,
    )

    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_element_type_project_code"),
    )


class ElementTypeHierarchyQuantity(Base):
    __tablename__ = "element_type_hierarchy_quantity"

    id = Column(Integer, primary_key=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    hierarchy_id = Column(Integer, ForeignKey("precast.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    naming_convention = Column(String, nullable=False, default="")

    __table_args__ = (
        UniqueConstraint("element_type_id", "hierarchy_id", name="uq_ethq_type_hierarchy"),
    )


class Drawing(Base):
    __tablename__ = "drawings"

    id = Column(Integer, primary_key=True, autoincrement=False)   # random 9-digit id
    project_id = Column(Integer, nullable=False, index=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    drawing_type_id = Column(Integer, ForeignKey("drawing_type.id"), nullable=False)
    current_version = Column(Integer, nullable=False, default=1)
    file = Column(String, nullable=True)
    comments = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    drawing_type = relationship("DrawingType")
    revisions = relationship(
        "DrawingRevision",
        primaryjoin="Drawing.id == foreign(DrawingRevision.parent_drawing_id)",
        order_by="DrawingRevision.version",
        viewonly=True,
    )

    __table_args__ = (
        UniqueConstraint("element_type_id", "drawing_type_id", name="uq_drawing_type_per_element_type"),
    )


class DrawingRevision(Base):
    """Append-only. ``parent_drawing_id`` is a weak back-reference."""
    __tablename__ = "drawings_revision"

    id = Column(Integer, primary_key=True)
    parent_drawing_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    element_type_id = Column(Integer, nullable=False, index=True)
    drawing_type_id = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)
    file = Column(String, nullable=True)
    comments = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("parent_drawing_id", "version", name="uq_drawing_revision_version"),
    )


class ElementTypeBom(Base):
    __tablename__ = "element_type_bom"

    id = Column(Integer, primary_key=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    product_id = Column(Integer, ForeignKey("inv_bom.id"), nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False, default=0)
    unit = Column(String, nullable=True)
    rate = Column(Numeric(18, 2), nullable=True)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ElementTypeRevisionBom(Base):
    """Append-only snapshot of one BOM line taken before the BOM is touched."""
    __tablename__ = "element_type_revision_bom"

    id = Column(Integer, primary_key=True)
    element_type_bom_id = Column(Integer, nullable=False, index=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit = Column(String, nullable=True)
    rate = Column(Numeric(18, 2), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    changed_by = Column(String, nullable=True)


# =========================================
# ============== Production ===============
# =========================================

class Element(Base):
    __tablename__ = "element"

    id = Column(Integer, primary_key=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False, index=True)
    element_code = Column(String, nullable=False)           # WALL/T1-F1/0001
    element_name = Column(String, nullable=False, default="")
    target_location = Column(Integer, ForeignKey("precast.id"), nullable=False)
    element_type_version = Column(String, nullable=False)

    instage = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    disable = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    billable = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    drawing_revision_id = Column(Integer, ForeignKey("drawings_revision.id"), nullable=True)
    bom_revision_id = Column(Integer, ForeignKey("element_type_revision_bom.id"), nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    location = relationship("Precast")
    element_type = relationship(
        "ElementType",
        primaryjoin="foreign(Element.element_type_id) == ElementType.id",
        viewonly=True,
    )
    activity = relationship("Activity", back_populates="element", uselist=False)
    stock = relationship("PrecastStock", back_populates="element", uselist=False)

    __table_args__ = (
        Index("ix_element_type_location", "element_type_id", "target_location"),
        UniqueConstraint("element_type_id", "element_code", name="uq_element_type_code"),
    )


STATUS_FIELDS = (
    "status",
    "qc_status",
    "mesh_mold_status",
    "reinforcement_status",
    "meshmold_qc_status",
    "reinforcement_qc_status",
)
IN_PROGRESS = "Inprogress"
COMPLETED = "completed"


class Activity(Base):
    """The single mutable work record of an element at its current stage."""
    __tablename__ = "activity"

    id = Column(Integer, primary_key=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, unique=True)
    project_id = Column(Integer, nullable=False, index=True)
    stage_id = Column(Integer, ForeignKey("project_stages.id"), nullable=False)
    task_id = Column(Integer, nullable=True)
    assigned_to = Column(Integer, nullable=True)
    qc_id = Column(Integer, nullable=True)
    paper_id = Column(Integer, nullable=True)
    completed = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    status = Column(String, nullable=False, default=IN_PROGRESS)
    qc_status = Column(String, nullable=False, default=IN_PROGRESS)
    mesh_mold_status = Column(String, nullable=False, default=IN_PROGRESS)
    reinforcement_status = Column(String, nullable=False, default=IN_PROGRESS)
    meshmold_qc_status = Column(String, nullable=False, default=IN_PROGRESS)
    reinforcement_qc_status = Column(String, nullable=False, default=IN_PROGRESS)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    element = relationship("Element", back_populates="activity")

    def statuses(self) -> dict:
        return {f: getattr(self, f) for f in STATUS_FIELDS}

    def all_completed(self) -> bool:
        return all(getattr(self, f) == COMPLETED for f in STATUS_FIELDS)


class CompleteProduction(Base):
    """Append-only log of stage completions. ``started_at`` is the completion timestamp."""
    __tablename__ = "complete_production"

    id = Column(Integer, primary_key=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    stage_id = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    status = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)


class PrecastStock(Base):
    __tablename__ = "precast_stock"

    id = Column(Integer, primary_key=True)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, unique=True)
    element_type_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False, index=True)
    target_location = Column(Integer, nullable=True)

    stockyard = Column(Boolean, nullable=False, default=False)
    order_by_erection = Column(Boolean, nullable=False, default=False)
    dispatch_status = Column(Boolean, nullable=False, default=False)
    receive_in_erection = Column(Boolean, nullable=False, default=False)
    erected = Column(Boolean, nullable=False, default=False)

    production_date = Column(DateTime(timezone=True), nullable=True)
    dispatch_start = Column(DateTime(timezone=True), nullable=True)
    dispatch_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    element = relationship("Element", back_populates="stock")


# =========================================
# ================ Billing ================
# =========================================

class WorkOrder(Base):
    __tablename__ = "work_order"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    wo_number = Column(String, nullable=False)
    total_value = Column(Numeric(18, 2), nullable=False, default=0)
    # {"casted": 40, "dispatch": 20, "erection": 30, "handover": 10}
    payment_term = Column(JsonType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    project = relationship("Project")
    materials = relationship("WorkOrderMaterial", back_populates="work_order", cascade="all, delete-orphan")


class WorkOrderMaterial(Base):
    __tablename__ = "work_order_material"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id", ondelete="CASCADE"), nullable=False, index=True)
    item_name = Column(String, nullable=False)        # element type code, matched case-insensitively
    unit_rate = Column(Numeric(18, 2), nullable=False, default=0)
    tax = Column(Numeric(6, 2), nullable=False, default=0)   # percent
    volume = Column(Numeric(18, 4), nullable=False, default=0)
    volume_used = Column(Numeric(18, 4), nullable=False, default=0)
    floor_id = Column(IntArray, nullable=True)

    work_order = relationship("WorkOrder", back_populates="materials")


class Invoice(Base):
    __tablename__ = "invoice"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_order.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    revision_no = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    billing_address = Column(Text, nullable=True)
    shipping_address = Column(Text, nullable=True)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total_paid = Column(Numeric(18, 2), nullable=False, default=0)
    payment_status = Column(String, nullable=False, default="unpaid")   # unpaid / partial_paid / fully_paid
    in_draft = Column(Boolean, nullable=False, default=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    work_order = relationship("WorkOrder")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan")
    payments = relationship("InvoicePayment", order_by="InvoicePayment.id", viewonly=True)

    __table_args__ = (
        UniqueConstraint("work_order_id", "revision_no", name="uq_invoice_revision"),
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_item"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    work_order_material_id = Column(Integer, ForeignKey("work_order_material.id"), nullable=False)
    volume = Column(Numeric(18, 4), nullable=False, default=0)
    amount = Column(Numeric(18, 2), nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="items")
    material = relationship("WorkOrderMaterial")


class InvoicePayment(Base):
    __tablename__ = "invoice_payment"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=False, index=True)
    amount_paid = Column(Numeric(18, 2), nullable=False)
    utr_number = Column(String, nullable=False)
    payment_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ElementInvoiceHistory(Base):
    """Which element reached which billing stage on which invoice. Append-only."""
    __tablename__ = "element_invoice_history"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=False, index=True)
    work_order_id = Column(Integer, nullable=False)
    element_id = Column(Integer, ForeignKey("element.id"), nullable=False, index=True)
    stage = Column(String, nullable=False)
    volume = Column(Numeric(18, 4), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("work_order_id", "element_id", "stage", name="uq_invoice_history_stage"),
    )


# =========================================
# ============ Audit / notify =============
# =========================================

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    user_name = Column(String, nullable=True)
    host_name = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    event_context = Column(String, nullable=False)
    event_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    project_id = Column(Integer, nullable=True, index=True)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="unread")
    action = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =========================================
# ================ Guards =================
# =========================================

APPEND_ONLY = (
    DrawingRevision,
    ElementTypeRevisionBom,
    CompleteProduction,
    ElementInvoiceHistory,
    InvoicePayment,
    ActivityLog,
    Notification,
)


def _refuse_mutation(mapper, connection, target):
    raise InvariantViolation(f"{target.__tablename__} is append-only")


for _model in APPEND_ONLY:
    event.listen(_model, "before_update", _refuse_mutation)
    event.listen(_model, "before_delete", _refuse_mutation)


@event.listens_for(Session, "do_orm_execute")
def _refuse_bulk_mutation(orm_execute_state):
    """query(...).update()/delete() skip mapper events; block them here too."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ in APPEND_ONLY:
        raise InvariantViolation(f"{mapper.class_.__tablename__} is append-only")


@event.listens_for(PrecastStock, "before_insert")
@event.listens_for(PrecastStock, "before_update")
def _stock_erected_needs_receipt(mapper, connection, target: PrecastStock):
    if target.erected and not target.receive_in_erection:
        raise InvariantViolation(
            f"precast_stock {target.element_id}: erected requires receive_in_erection"
        )
