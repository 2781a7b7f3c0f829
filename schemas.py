from __future__ import annotations

from typing import Optional, Literal, List, Dict
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =========================
# ===== Base (Pydantic v2)
# =========================
class APIBase(BaseModel):
    """
    Base for every output schema:
    - from_attributes=True: build straight from ORM rows
    - Decimal is serialised as float for JSON clients
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={Decimal: float}
    )

# =========================================
# ============ Element types ==============
# =========================================
class HierarchyQuantityIn(BaseModel):
    hierarchy_id: int
    quantity: int = Field(ge=0)

    @field_validator("hierarchy_id")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("hierarchy_id must be > 0")
        return v

class StageIn(BaseModel):
    stages_id: int

class DrawingIn(BaseModel):
    drawing_type_id: int
    file: str
    comments: Optional[str] = None

class DrawingRevisionIn(BaseModel):
    file: str = Field(min_length=1)
    comments: Optional[str] = None
    version: Optional[int] = Field(default=None, gt=0)

class ProductIn(BaseModel):
    product_id: int
    quantity: Decimal = Decimal("0")
    unit: Optional[str] = None
    rate: Optional[Decimal] = None

class ElementTypeCreate(BaseModel):
    project_id: int
    element_type: str = Field(min_length=1)         # code, e.g. WALL
    element_type_name: str = ""
    thickness: Decimal = Decimal("0")
    length: Decimal = Decimal("0")
    height: Decimal = Decimal("0")
    width: Decimal = Decimal("0")
    area: Decimal = Decimal("0")
    volume: Decimal = Decimal("0")
    mass: Decimal = Decimal("0")
    # either `stage_path: [76, 75]` or `stages: [{"stages_id": 76}, ...]`
    stage_path: Optional[List[int]] = None
    stages: Optional[List[StageIn]] = None
    hierarchy_quantity: List[HierarchyQuantityIn] = []
    drawings: List[DrawingIn] = []
    products: List[ProductIn] = []

    def stage_ids(self) -> List[int]:
        if self.stage_path:
            return list(self.stage_path)
        return [s.stages_id for s in (self.stages or [])]

class ElementTypeUpdate(BaseModel):
    """Zero / empty fields mean "leave as is"."""
    element_type: Optional[str] = None
    element_type_name: Optional[str] = None
    thickness: Optional[Decimal] = None
    length: Optional[Decimal] = None
    height: Optional[Decimal] = None
    width: Optional[Decimal] = None
    area: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    mass: Optional[Decimal] = None
    stage_path: Optional[List[int]] = None
    stages: Optional[List[StageIn]] = None
    hierarchy_quantity: Optional[List[HierarchyQuantityIn]] = None
    drawings: Optional[List[DrawingIn]] = None
    products: Optional[List[ProductIn]] = None

    def stage_ids(self) -> List[int]:
        if self.stage_path:
            return list(self.stage_path)
        return [s.stages_id for s in (self.stages or [])]

class HierarchyQuantityOut(APIBase):
    hierarchy_id: int
    quantity: int
    naming_convention: str

class DrawingRevisionOut(APIBase):
    id: int
    parent_drawing_id: int
    version: int
    file: Optional[str] = None
    comments: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

class DrawingOut(APIBase):
    id: int
    drawing_type_id: int
    current_version: int
    file: Optional[str] = None
    comments: Optional[str] = None
    revisions: List[DrawingRevisionOut] = []

class BomLineOut(APIBase):
    id: int
    product_id: int
    product_name: str
    quantity: Decimal
    unit: Optional[str] = None
    rate: Optional[Decimal] = None

class ProductOut(APIBase):
    id: int
    product_name: str
    unit: Optional[str] = None
    rate: Optional[Decimal] = None

class BomRevisionOut(APIBase):
    id: int
    element_type_bom_id: int
    product_id: int
    product_name: str
    quantity: Decimal
    unit: Optional[str] = None
    rate: Optional[Decimal] = None
    changed_at: datetime
    changed_by: Optional[str] = None

class ElementTypeOut(APIBase):
    id: int
    project_id: int
    code: str
    name: str
    thickness: Decimal
    length: Decimal
    height: Decimal
    width: Decimal
    area: Decimal
    volume: Decimal
    mass: Decimal
    density: Decimal
    version_code: str
    stage_path: List[int]
    total_count_element: int
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("stage_path", mode="before")
    @classmethod
    def _as_list(cls, v):
        return list(v or [])

class ElementTypeDetail(ElementTypeOut):
    hierarchy: List[HierarchyQuantityOut] = []
    drawings: List[DrawingOut] = []
    bom_lines: List[BomLineOut] = []

# =========================================
# ================ Elements ===============
# =========================================
class ElementOut(APIBase):
    id: int
    element_type_id: int
    project_id: int
    element_code: str
    element_name: str
    target_location: int
    element_type_version: str
    instage: bool
    disable: bool
    billable: bool
    drawing_revision_id: Optional[int] = None
    bom_revision_id: Optional[int] = None

class ActivityOut(APIBase):
    id: int
    element_id: int
    stage_id: int
    assigned_to: Optional[int] = None
    qc_id: Optional[int] = None
    paper_id: Optional[int] = None
    completed: bool
    status: str
    qc_status: str
    mesh_mold_status: str
    reinforcement_status: str
    meshmold_qc_status: str
    reinforcement_qc_status: str

class CompleteProductionOut(APIBase):
    id: int
    element_id: int
    stage_id: int
    started_at: datetime
    status: Optional[str] = None

StatusValue = Literal["Inprogress", "completed"]

class ActivityStatusUpdate(BaseModel):
    status: Optional[StatusValue] = None
    qc_status: Optional[StatusValue] = None
    mesh_mold_status: Optional[StatusValue] = None
    reinforcement_status: Optional[StatusValue] = None
    meshmold_qc_status: Optional[StatusValue] = None
    reinforcement_qc_status: Optional[StatusValue] = None

# =========================================
# ============= Precast stock =============
# =========================================
class PrecastStockOut(APIBase):
    id: int
    element_id: int
    element_type_id: int
    stockyard: bool
    order_by_erection: bool
    dispatch_status: bool
    receive_in_erection: bool
    erected: bool
    production_date: Optional[datetime] = None
    dispatch_start: Optional[datetime] = None
    dispatch_end: Optional[datetime] = None

class StockFlagsUpdate(BaseModel):
    stockyard: Optional[bool] = None
    order_by_erection: Optional[bool] = None
    dispatch_status: Optional[bool] = None
    receive_in_erection: Optional[bool] = None
    erected: Optional[bool] = None

class DispatchIn(BaseModel):
    element_ids: List[int]
    dispatch_start: Optional[datetime] = None
    dispatch_end: Optional[datetime] = None

class ElementIdsIn(BaseModel):
    element_ids: List[int]

# =========================================
# ================ Invoices ===============
# =========================================
class InvoiceItemIn(BaseModel):
    work_order_material_id: int
    volume: Decimal = Field(gt=0)

class InvoiceCreate(BaseModel):
    work_order_id: int
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    items: List[InvoiceItemIn] = []

class InvoicePaymentIn(BaseModel):
    utr_number: str = Field(min_length=1)
    payment_status: Literal["fully_paid", "partial_paid"]
    amount_paid: Decimal = Field(gt=0)
    payment_date: Optional[datetime] = None

class StageHistoryIn(BaseModel):
    period_start: datetime
    period_end: datetime

class InvoiceOut(APIBase):
    id: int
    work_order_id: int
    project_id: int
    revision_no: int
    name: str
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    total_amount: Decimal
    total_paid: Decimal
    payment_status: str
    in_draft: bool
    created_at: Optional[datetime] = None

class PaymentTermIn(BaseModel):
    payment_term: Dict[str, Decimal]
