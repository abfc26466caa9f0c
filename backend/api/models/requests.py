"""
Pydantic request models for API endpoints.

Field names are snake_case; the camelCase names the frontends send are
accepted through aliases.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    """Request model for student registration."""
    email: str
    password: str
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    institution: Optional[str] = Field(default=None, description="Institution ID")
    course: Optional[str] = Field(default=None, description="Course ID")
    year_of_study: Optional[int] = Field(default=None, alias="yearOfStudy")


class LoginRequest(BaseModel):
    """Request model for login."""
    email: str
    password: str


class SubscriptionInitiateRequest(CamelModel):
    """Request model for starting an M-Pesa subscription payment."""
    course_id: str = Field(..., alias="courseId")
    year: int = Field(..., description="Study year the subscription unlocks")
    phone_number: str = Field(..., alias="phoneNumber")
    semester: Optional[int] = None
    unit_code: Optional[str] = Field(default=None, alias="unitCode")
    unit_name: Optional[str] = Field(default=None, alias="unitName")
    notes: Optional[str] = None


class PublishRequest(BaseModel):
    """Request model for publishing or unpublishing an assessment."""
    status: str = Field(..., description="published or draft")


class LogAccessRequest(CamelModel):
    """Request model for the secure viewer access log."""
    assessment_id: str = Field(..., alias="assessmentId")
    assessment_type: str = Field(..., alias="assessmentType")
    action: str = Field(..., description="start_viewing or end_viewing")
    timestamp: Optional[str] = None


class DownloadRequest(CamelModel):
    """Request model for registering a student download."""
    course_id: str = Field(..., alias="courseId")
    year: int
    resource_id: str = Field(..., alias="resourceId")
    filename: str
    resource_title: Optional[str] = Field(default=None, alias="resourceTitle")
    file_size: Optional[int] = Field(default=None, alias="fileSize", ge=0)
    unit_id: Optional[str] = Field(default=None, alias="unitId")
    unit_name: Optional[str] = Field(default=None, alias="unitName")
    topic_id: Optional[str] = Field(default=None, alias="topicId")
    topic_title: Optional[str] = Field(default=None, alias="topicTitle")
    origin: Optional[str] = None
