import datetime as dt

from pydantic import BaseModel


class SubmitTodayRequest(BaseModel):
    content: str
    turnstile_token: str | None = None


class Entry(BaseModel):
    date: dt.date
    content: str
    created_at: dt.datetime
    updated_at: dt.datetime
    can_edit: bool
    version_number: int | None = None


class TodayEmpty(BaseModel):
    date: dt.date
    content: None = None
    can_edit: bool = True


class EntrySummary(BaseModel):
    date: dt.date
    preview: str
    updated_at: dt.datetime


class EntryPage(BaseModel):
    items: list[EntrySummary]
    next_cursor: str | None = None


class Version(BaseModel):
    entry_date: dt.date
    version_number: int
    content: str
    created_at: dt.datetime


class VersionSummary(BaseModel):
    version_number: int
    created_at: dt.datetime
    preview: str


class VersionList(BaseModel):
    entry_date: dt.date
    current_content: str | None = None
    versions: list[VersionSummary]


class AdminSessionCreate(BaseModel):
    admin_token: str


class AdminSession(BaseModel):
    token: str
    expires_at: dt.datetime


class ErrorResponse(BaseModel):
    detail: str
    code: str
