import base64
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RestoreVersionRequest(CamelModel):
    version_id: UUID


class SnapshotRequest(CamelModel):
    note_id: UUID


class NoteResponse(CamelModel):
    id: UUID
    title: str
    content: str | None = None
    workspace_id: UUID | None = None
    updated_at: datetime | None = None


class VersionSummaryResponse(CamelModel):
    id: UUID
    note_id: UUID
    version: int
    title: str
    created_by_id: str
    created_at: datetime | None = None


class VersionResponse(VersionSummaryResponse):
    content: str | None = None
    ydoc: str | None = Field(default=None, description="Base64-encoded Yjs state")

    @field_validator("ydoc", mode="before")
    @classmethod
    def _encode_ydoc(cls, value):
        if isinstance(value, (bytes, bytearray)):
            return base64.b64encode(value).decode()
        return value


class PageMeta(CamelModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class VersionListResponse(CamelModel):
    data: list[VersionSummaryResponse]
    meta: PageMeta


class VersionDetailResponse(CamelModel):
    data: VersionResponse


class RestoreResponse(CamelModel):
    note: NoteResponse
    restored_from: int
    undo_version_id: UUID


class SnapshotResponse(CamelModel):
    created: bool
    reason: str
    version_id: UUID | None = None
    version: int | None = None
