from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field

class Role(str, Enum):
    citizen = "citizen"
    admin = "admin"
    subworker = "subworker"

class WorkerStatus(str, Enum):
    available = "available"
    busy = "busy"
    offline = "offline"

class ReportStatus(str, Enum):
    submitted = "submitted"
    assigned = "assigned"
    in_progress = "in-progress"
    submitted_for_approval = "submitted_for_approval"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"

class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

class RedemptionStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"

class NotificationType(str, Enum):
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"
    assignment = "assignment"
    approval = "approval"
    rejection = "rejection"

class ItemCategory(str, Enum):
    dustbins = "dustbins"
    compost = "compost"
    tools = "tools"
    plants = "plants"
    vouchers = "vouchers"

class SortMode(str, Enum):
    availability = "availability"
    name = "name"
    performance = "performance"
    ward = "ward"

# Points a citizen earns for an approved report, fixed per priority
ECO_POINTS_BY_PRIORITY: Dict[str, int] = {
    Priority.low.value: 10,
    Priority.medium.value: 20,
    Priority.high.value: 30,
    Priority.urgent.value: 40,
}
DEFAULT_PRIORITY = Priority.medium.value


def eco_points_for_priority(priority: Optional[str]) -> int:
    return ECO_POINTS_BY_PRIORITY.get((priority or "").lower(), ECO_POINTS_BY_PRIORITY[DEFAULT_PRIORITY])


# --- Auth ---

class SignUpRequest(BaseModel):
    # Self-registration is citizen-only; staff roles come from Supabase app_metadata
    email: EmailStr
    password: str = Field(min_length=6)
    name: str
    aadhar: str = Field(pattern=r"^\d{12}$")
    phone: Optional[str] = None
    ward: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None

class SignInRequest(BaseModel):
    email: EmailStr
    password: str

class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    email: str
    role: str
    eco_points: int


# --- Entities (the single row -> API mapping per table) ---

class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str
    eco_points: int = 0
    phone: Optional[str] = None
    address: Optional[str] = None
    ward: Optional[str] = None
    city: Optional[str] = None

class SubWorkerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    ward: Optional[str] = None
    city: Optional[str] = None
    assigned_ward: Optional[str] = None
    current_task_id: Optional[str] = None
    task_completion_count: int = 0
    eco_points: int = 0

class WorkerStats(BaseModel):
    total: int
    available: int
    busy: int
    offline: int
    average_completion_rate: float

class AIAnalysis(BaseModel):
    waste_type: str = "General waste"
    severity: str = "Moderate"
    environmental_impact: str = "Standard cleanup required"
    cleanup_difficulty: str = "Medium effort"
    reasoning: str = "AI analysis completed with standard assessment"

class ClassificationResult(BaseModel):
    priority_level: Priority
    eco_points: int
    analysis: AIAnalysis
    fallback: bool = False

class ReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = []
    lat: float
    lng: float
    address: Optional[str] = None
    ward: Optional[str] = None
    status: str
    priority_level: Optional[str] = None
    eco_points: Optional[int] = None
    ai_analysis: Optional[AIAnalysis] = None
    assigned_to: Optional[str] = None
    proof_image: Optional[str] = None
    proof_lat: Optional[float] = None
    proof_lng: Optional[float] = None
    rejection_comment: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

class ReportCreatedResponse(BaseModel):
    message: str
    report: ReportOut

class ProofResponse(BaseModel):
    message: str
    distance_meters: float
    report: ReportOut

class StoreItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    point_cost: int
    quantity: int
    image_url: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True

class RedemptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    item_id: str
    item_name: Optional[str] = None
    quantity: int
    total_points_spent: int
    status: str
    delivery_address: Optional[str] = None
    created_at: Optional[datetime] = None

class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    message: Optional[str] = None
    type: str
    related_report_id: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


# --- Store ---

class RedemptionRequest(BaseModel):
    item_id: str
    quantity: int = 1
    delivery_address: Optional[str] = None

class OrderDetails(BaseModel):
    item_name: Optional[str]
    quantity: int
    total_points_spent: int
    delivery_address: str
    order_status: str
    redemption_date: datetime

class RedemptionResult(BaseModel):
    success: bool = True
    order_id: str
    message: str
    order_details: OrderDetails

class RedemptionCheck(BaseModel):
    can_redeem: bool
    reason: Optional[str] = None
    required_points: Optional[int] = None


# --- Workers / admin ---

class AssignRequest(BaseModel):
    worker_id: str

class RejectRequest(BaseModel):
    comment: str = Field(min_length=1)

class WorkerStatusUpdate(BaseModel):
    status: WorkerStatus

class AssignmentCheck(BaseModel):
    is_eligible: bool
    reason: Optional[str] = None

class LeaderboardEntry(BaseModel):
    rank: int
    id: str
    name: Optional[str] = None
    eco_points: int
    city: Optional[str] = None
    reports_count: int

class PlaceResult(BaseModel):
    address: str = ""
    latitude: float
    longitude: float
    ward: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


# --- Integrity ---

class IntegrityIssue(BaseModel):
    type: str
    record_id: str
    description: str
    severity: str
    suggested_fix: str
    # Stable name of the check that raised the issue; auto-fix dispatches on it
    check: str

class IntegrityCheckResult(BaseModel):
    table: str
    issues: List[IntegrityIssue] = []
    records_checked: int = 0

    @computed_field
    @property
    def issues_found(self) -> int:
        return len(self.issues)

class IntegrityReport(BaseModel):
    results: List[IntegrityCheckResult]
    total_issues: int

class AutoFixResponse(BaseModel):
    fixes_applied: List[str]
    remaining_issues: int
