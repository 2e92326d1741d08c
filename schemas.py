"""
Database Schemas for Civic-Sense

Each document model represents a MongoDB collection.
Collection name = snake case of class name (Report -> "report", ReportVote -> "report_vote").
Request bodies sit below the document models; most of their fields are optional so the
handlers can answer missing input with the exact messages clients rely on.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    AUTHORITY_CONTACTED = "AUTHORITY_CONTACTED"
    ELIGIBLE_FOR_VOTE = "ELIGIBLE_FOR_VOTE"
    ELIGIBLE_FOR_DRIVE = "ELIGIBLE_FOR_DRIVE"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_MONITORING = "UNDER_MONITORING"
    RESOLVED = "RESOLVED"


class DriveStatus(str, Enum):
    PLANNED = "PLANNED"
    ONGOING = "ONGOING"
    VOTING_FINALIZED = "VOTING_FINALIZED"
    COMPLETED = "COMPLETED"


class ContactMode(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    WEBSITE = "WEBSITE"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    IN_PERSON = "IN_PERSON"
    OTHER = "OTHER"


class ContactStatus(str, Enum):
    PENDING = "PENDING"
    CONTACTED = "CONTACTED"
    RESPONDED = "RESPONDED"
    NO_RESPONSE = "NO_RESPONSE"


class AuthorityCategory(str, Enum):
    GOVERNMENT = "GOVERNMENT"
    NGO = "NGO"
    COMMUNITY = "COMMUNITY"
    OTHER = "OTHER"


class AuthorityRole(str, Enum):
    CLEANUP = "CLEANUP"
    WASTE_MANAGEMENT = "WASTE_MANAGEMENT"


class TaskStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    COMPLETED = "COMPLETED"


class EngagementLevel(str, Enum):
    SOLO = "SOLO"
    DUAL = "DUAL"
    GROUP = "GROUP"


class MonitoringStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ESCALATED = "ESCALATED"


class DiscussionPhase(str, Enum):
    GENERAL = "GENERAL"
    REPORT_VOTING = "REPORT_VOTING"
    DRIVE_VOTING = "DRIVE_VOTING"


class EnhancementType(str, Enum):
    TREE_PLANTING = "TREE_PLANTING"
    WALL_PAINTING = "WALL_PAINTING"
    SIGNAGE = "SIGNAGE"
    CLEANUP = "CLEANUP"
    OTHER = "OTHER"


def is_member(enum_cls, value) -> bool:
    return value in {item.value for item in enum_cls}


# ---------- Documents ----------

class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    role: Literal['user', 'volunteer', 'municipal'] = Field('user', description="Role of the account")
    password_hash: str = Field(..., description="Hashed password")
    is_active: bool = Field(True, description="Whether user is active")


class Location(BaseModel):
    lat: Optional[float] = Field(None)
    lng: Optional[float] = Field(None)
    address: Optional[str] = Field('', description="Nearest address or landmark")
    city: Optional[str] = Field(None)


class Report(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str = Field(..., min_length=1, description="Short issue title")
    description: str = Field(..., description="Issue description")
    reporter: Optional[str] = Field(None, description="Reporter display name")
    reporterId: Optional[str] = Field(None, description="Id of the submitting user")
    imageUrl: Optional[str] = Field(None, description="Primary image URL")
    mediaUrls: List[str] = Field(default_factory=list)
    location: Location = Field(default_factory=Location)
    status: ReportStatus = Field(ReportStatus.PENDING)
    voteCount: int = Field(0, description="Votes cast by the community")
    finalVoteCount: Optional[int] = Field(None, description="Vote count frozen at promotion")
    votingOpenAt: Optional[datetime] = Field(None)
    votingCloseAt: Optional[datetime] = Field(None)


class Drive(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    participant: int = Field(0, description="Target number of participants")
    startDate: datetime
    endDate: Optional[datetime] = Field(None)
    status: DriveStatus = Field(DriveStatus.PLANNED)
    organizerId: Optional[str] = Field(None)
    voteCount: int = Field(0)
    finalVoteCount: Optional[int] = Field(None)
    votingOpenAt: Optional[datetime] = Field(None)
    votingCloseAt: Optional[datetime] = Field(None)


class Authority(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str
    category: AuthorityCategory
    role: AuthorityRole
    city: str
    region: Optional[str] = None
    contactMode: ContactMode
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    other: Optional[str] = None
    active: bool = True
    submittedById: Optional[str] = None


class Task(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    reportId: Optional[str] = None
    driveId: Optional[str] = None
    volunteerId: Optional[str] = None
    title: str = "Task"
    description: str = ""
    engagement: Optional[EngagementLevel] = None
    timeSlot: Optional[datetime] = None
    status: TaskStatus = TaskStatus.OPEN


# ---------- Request bodies ----------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    role: str = "user"  # 'user', 'volunteer' or 'municipal'


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ReportCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    reporter: Optional[str] = None
    imageUrl: Optional[str] = None
    mediaUrls: List[str] = Field(default_factory=list)
    location: Location = Field(default_factory=Location)


class ReportUpdate(BaseModel):
    reporter: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    imageUrl: Optional[str] = None
    mediaUrls: Optional[List[str]] = None
    location: Optional[Location] = None


class ReportStatusUpdate(BaseModel):
    status: Optional[str] = None
    note: Optional[str] = None


class ResolveRequest(BaseModel):
    resolutionSummary: Optional[str] = None
    resolvedByAuthority: bool = False
    resolutionDate: Optional[datetime] = None
    proofImages: List[str] = Field(default_factory=list)
    remainingConcerns: bool = False
    remarks: Optional[str] = None


class AuthorityInput(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    role: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    contactMode: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    other: Optional[str] = None


class ReportAuthorityInput(BaseModel):
    contactMode: Optional[str] = None
    platformDetail: Optional[str] = None
    submittedMessage: Optional[str] = None
    referenceId: Optional[str] = None
    contactedAt: Optional[datetime] = None


class ContactAuthorityRequest(BaseModel):
    authority: AuthorityInput = Field(default_factory=AuthorityInput)
    reportAuthority: ReportAuthorityInput = Field(default_factory=ReportAuthorityInput)


class AuthorityUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    role: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    contactMode: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    other: Optional[str] = None
    active: Optional[bool] = None


class ReportAuthorityCreate(BaseModel):
    reportId: Optional[str] = None
    authorityId: Optional[str] = None
    volunteerId: Optional[str] = None
    contactedAt: Optional[datetime] = None


class ReportAuthorityUpdate(BaseModel):
    volunteerId: Optional[str] = None
    status: Optional[str] = None
    contactedAt: Optional[datetime] = None


class ReportVoteRequest(BaseModel):
    reportId: Optional[str] = None


class DriveVoteRequest(BaseModel):
    driveId: Optional[str] = None


class TaskInput(BaseModel):
    engagement: Optional[EngagementLevel] = None
    title: Optional[str] = None
    description: Optional[str] = None


class DriveCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    participant: Optional[int] = None
    linkedReports: Optional[List[str]] = None
    reportId: Optional[str] = None
    taskBreakdown: List[TaskInput] = Field(default_factory=list)


class DriveUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    participant: Optional[int] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class DriveCompletionRequest(BaseModel):
    summary: Optional[str] = None
    successful: bool = True
    remainingIssues: bool = False
    proofImages: List[str] = Field(default_factory=list)


class TaskCreate(BaseModel):
    reportId: Optional[str] = None
    driveId: Optional[str] = None
    volunteerId: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    engagement: Optional[EngagementLevel] = None
    timeSlot: Optional[datetime] = None
    status: Optional[str] = None


class TaskUpdate(BaseModel):
    volunteerId: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    engagement: Optional[EngagementLevel] = None
    timeSlot: Optional[datetime] = None
    status: Optional[str] = None


class VolunteerCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class VolunteerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class VolunteerJoin(BaseModel):
    reportId: Optional[str] = None
    driveId: Optional[str] = None


class MonitoringCreate(BaseModel):
    reportId: Optional[str] = None
    driveId: Optional[str] = None
    volunteerId: Optional[str] = None
    checkDate: Optional[datetime] = None
    notes: Optional[str] = None


class MonitoringUpdate(BaseModel):
    notes: Optional[str] = None
    status: Optional[str] = None
    checkDate: Optional[datetime] = None


class DiscussionCreate(BaseModel):
    phase: Optional[str] = None
    content: Optional[str] = None
    reportId: Optional[str] = None
    driveId: Optional[str] = None


class CommentRequest(BaseModel):
    content: Optional[str] = None


class FlagRequest(BaseModel):
    reason: Optional[str] = None
    note: Optional[str] = None


class EnhancementCreate(BaseModel):
    driveId: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    referenceUrls: List[str] = Field(default_factory=list)
