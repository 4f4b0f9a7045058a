from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=20, ge=1, le=100)
    search: str | None = None


class PaginationMeta(BaseModel):
    offset: int
    limit: int
    total: int
    filtered_total: int
    total_pages: int
    filtered_total_pages: int
    current_page: int
    has_next: bool
    has_prev: bool
