from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any, List
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class JobCreateRequest(CamelModel):
    user_id: str = Field(..., min_length=1, examples=["user_123"])
    prompt: str = Field(..., min_length=1, examples=["Add a leaderboard tab with the top 10 scores"])
    project_id: Optional[str] = Field(None, examples=["my-miniapp"])
    context: Dict[str, Any] = Field(default_factory=dict)


class JobResponse(CamelModel):
    id: str
    user_id: str
    project_id: Optional[str] = None
    prompt: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: datetime


class ProcessRequest(CamelModel):
    job_id: Optional[str] = None


class ProcessResponse(CamelModel):
    success: bool
    job_id: Optional[str] = None
    status: Optional[str] = None
    message: str


class PendingJob(CamelModel):
    id: str
    user_id: str
    status: str
    created_at: datetime


class PendingJobsResponse(CamelModel):
    pending_count: int
    jobs: List[PendingJob]


class FailRequest(CamelModel):
    error: Optional[str] = None
    logs: Optional[str] = None
    deployment_error: Optional[str] = None


class FailResponse(CamelModel):
    success: bool
    message: str
    job_id: str


class FileEntry(CamelModel):
    filename: str
    content: str


class ProjectFilesResponse(CamelModel):
    project_id: str
    files: List[FileEntry]


class FileUpdateRequest(CamelModel):
    file_path: str = Field(..., min_length=1)
    content: str
    redeploy: bool = False


class FileUpdateResponse(CamelModel):
    success: bool
    file_path: str
    preview_updated: Optional[bool] = None
