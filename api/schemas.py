"""
Pydantic schemas for API requests and responses.
"""
from datetime import date as Date, datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field


# Response envelope
class SuccessResponse(BaseModel):
    """Success envelope used by every endpoint."""
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope."""
    error: str
    retryAfter: Optional[int] = None


def ok(data: Any = None, message: str = None) -> SuccessResponse:
    return SuccessResponse(data=data, message=message)


# ============== Auth / user ==============

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    year: Optional[int] = Field(None, description="Academic year 1-6 (students)")
    division: Optional[str] = Field(None, description="A or B for years 1-4")


class LoginRequest(BaseModel):
    email: str
    password: str
    totp_code: Optional[str] = Field(None, description="TOTP code when 2FA is enabled")


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


class UpdateYearRequest(BaseModel):
    year: int = Field(..., ge=1, le=6)
    division: Optional[str] = None


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


class TwoFactorDisableRequest(BaseModel):
    password: str


# ============== Admin ==============

class CreateUserRequest(BaseModel):
    email: str
    password: str
    name: str
    role: str = Field(..., description="student, teacher, admin or admin_director")
    year: Optional[int] = None
    division: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    year: Optional[int] = None
    division: Optional[str] = None
    is_active: Optional[bool] = None


class RejectStudentRequest(BaseModel):
    reason: Optional[str] = None


class SubjectCreateRequest(BaseModel):
    name: str
    code: str
    year: int = Field(..., ge=1, le=6)
    division: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[int] = None
    teacher_id: Optional[int] = None
    image_url: Optional[str] = None


class SubjectUpdateRequest(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    year: Optional[int] = Field(None, ge=1, le=6)
    division: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[int] = None
    teacher_id: Optional[int] = None
    image_url: Optional[str] = None


class AssignStudentsRequest(BaseModel):
    student_ids: List[int] = Field(..., min_length=1)


class TeacherEmailRequest(BaseModel):
    email: str


class MaintenanceRequest(BaseModel):
    enabled: bool
    message: Optional[str] = None
    estimated_end: Optional[str] = None


# ============== Units / content ==============

class UnitCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    is_published: bool = True


class UnitUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_published: Optional[bool] = None


class UnitReorderRequest(BaseModel):
    unit_ids: List[int]


class ContentCreateRequest(BaseModel):
    title: str
    content_type: str = Field(..., description="content, document, video, link, text, ...")
    content: Optional[str] = None
    unit_id: Optional[int] = None
    file_url: Optional[str] = None
    is_public: bool = False


class ContentUpdateRequest(BaseModel):
    title: Optional[str] = None
    content_type: Optional[str] = None
    content: Optional[str] = None
    unit_id: Optional[int] = None
    file_url: Optional[str] = None
    is_public: Optional[bool] = None


# ============== Assignments ==============

class AssignmentCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    max_score: float = Field(10, gt=0)
    unit_id: Optional[int] = None


class AssignmentUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    max_score: Optional[float] = Field(None, gt=0)
    unit_id: Optional[int] = None


class GradeRequest(BaseModel):
    score: float
    feedback: Optional[str] = None


# ============== Forums ==============

class ForumCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    unit_id: Optional[int] = None
    allow_student_answers: bool = True
    require_approval: bool = False


class ForumUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    allow_student_answers: Optional[bool] = None
    require_approval: Optional[bool] = None


class QuestionCreateRequest(BaseModel):
    title: str
    content: str


class AnswerCreateRequest(BaseModel):
    content: str


class LockRequest(BaseModel):
    locked: bool = True


# ============== Messaging ==============

class ConversationCreateRequest(BaseModel):
    participant_ids: List[int] = Field(..., min_length=1)
    title: Optional[str] = None
    type: str = "direct"


class ParticipantsRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)


class MessageCreateRequest(BaseModel):
    content: str
    reply_to_id: Optional[int] = None


class MessageUpdateRequest(BaseModel):
    content: str


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=16)


# ============== Notifications / support ==============

class NotificationCreateRequest(BaseModel):
    user_id: int
    title: str
    message: str
    type: str = "info"
    action_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class TicketCreateRequest(BaseModel):
    subject: str
    description: str
    category: str
    screenshot_url: Optional[str] = None


class TicketUpdateRequest(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    admin_response: Optional[str] = None


# ============== Calendar ==============

class EventCreateRequest(BaseModel):
    title: str
    date: Date
    type: str = Field(..., description="exam, assignment, class, holiday or meeting")
    description: Optional[str] = None
    time: Optional[str] = Field(None, description="HH:MM")
    is_personal: bool = False
    is_global: bool = False
    subject_id: Optional[int] = None
    year: Optional[int] = None


class EventUpdateRequest(BaseModel):
    title: Optional[str] = None
    date: Optional[Date] = None
    type: Optional[str] = None
    description: Optional[str] = None
    time: Optional[str] = None
    is_personal: Optional[bool] = None
    is_global: Optional[bool] = None
    subject_id: Optional[int] = None
    year: Optional[int] = None
