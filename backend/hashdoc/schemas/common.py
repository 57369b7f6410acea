"""Shared Pydantic schemas."""
from pydantic import BaseModel


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: str = ""


class HealthResponse(BaseModel):
    status: str
    database: str
