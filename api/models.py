"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from catalog.models import Genre


class APIModel(BaseModel):
    """Response base: camelCase keys on the wire."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class AuthorSummary(APIModel):
    """Author fields embedded in book responses."""
    id: str = Field(..., description="Author identifier")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    nationality: Optional[str] = Field(None, description="Nationality")


class BookResponse(APIModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: Optional[AuthorSummary] = Field(None, description="Populated author, null if it no longer exists")
    isbn: str = Field(..., description="ISBN without separators")
    genre: Genre = Field(..., description="Book genre")
    publication_year: int = Field(..., description="Year of publication")
    publisher: str = Field(..., description="Publisher name")
    page_count: int = Field(..., description="Number of pages")
    language: str = Field("English", description="Language of the edition")
    description: Optional[str] = Field(None, description="Short description")
    cover_image_url: Optional[str] = Field(None, description="Cover image URL")
    available_copies: int = Field(..., description="Copies available for lending")
    user: Optional[str] = Field(None, description="Identifier of the user who added the book")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")


class BookListResponse(APIModel):
    """Paginated envelope for book listings."""
    success: bool = Field(True, description="Request outcome")
    count: int = Field(..., description="Number of books in this page")
    total: int = Field(..., description="Total number of matching books")
    total_pages: int = Field(..., description="Total number of pages")
    current_page: int = Field(..., description="Current page number")
    data: List[BookResponse] = Field(..., description="Books in this page")


class BookEnvelope(APIModel):
    """Single book envelope."""
    success: bool = Field(True, description="Request outcome")
    message: Optional[str] = Field(None, description="Human-readable outcome")
    data: BookResponse


class DeletedRecord(APIModel):
    id: str
    title: str


class DeleteResponse(APIModel):
    """Envelope returned by delete endpoints."""
    success: bool = True
    message: str
    data: DeletedRecord


class BookQueryParams(BaseModel):
    """Query parameters for book listing."""
    page: int = Field(1, ge=1, description="Page number")
    limit: int = Field(10, ge=1, le=100, description="Items per page")
    genre: Optional[Genre] = Field(None, description="Filter by genre")
    author: Optional[str] = Field(None, description="Author ID or (part of) the author's name")
    search: Optional[str] = Field(None, description="Case-insensitive match on title, genre or ISBN")
    user: Optional[str] = Field(None, description="Restrict to books added by this user")


class AuthorResponse(APIModel):
    """Author response model for API."""
    id: str = Field(..., description="Unique author identifier")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    nationality: str = Field(..., description="Nationality")
    birth_date: datetime = Field(..., description="Date of birth")
    death_date: Optional[datetime] = Field(None, description="Date of death")
    biography: Optional[str] = Field(None, description="Biography")
    website: Optional[str] = Field(None, description="Personal website")
    genres: List[Genre] = Field(default_factory=list, description="Genres")
    awards: List[str] = Field(default_factory=list, description="Awards received")
    book_count: int = Field(0, description="Number of books referencing this author")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")


class AuthorListResponse(APIModel):
    """Envelope for author listings."""
    success: bool = True
    count: int = Field(..., description="Number of authors")
    data: List[AuthorResponse]


class AuthorEnvelope(APIModel):
    success: bool = True
    message: Optional[str] = None
    data: AuthorResponse


class DeletedAuthor(APIModel):
    id: str
    first_name: str
    last_name: str


class AuthorDeleteResponse(APIModel):
    success: bool = True
    message: str
    data: DeletedAuthor


class UserResponse(APIModel):
    """Authenticated user profile."""
    id: str = Field(..., description="User identifier")
    display_name: str = Field("Demo User", description="Display name")
    email: Optional[str] = Field(None, description="E-mail address")
    avatar: Optional[str] = Field(None, description="Avatar URL")
    role: str = Field("user", description="Role")
    is_demo: bool = Field(False, description="Whether this is a demo identity")


class AuthResponse(APIModel):
    success: bool = True
    message: Optional[str] = None
    user: Optional[UserResponse] = None


class DemoLoginRequest(APIModel):
    """Demo login payload."""
    user_id: Optional[str] = Field(None, description="Identifier to log in as")


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""
    success: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Error title")
    message: Optional[str] = Field(None, description="Error message")
    field: Optional[str] = Field(None, description="Offending field, when known")
    errors: Optional[List[FieldError]] = Field(None, description="Field-level validation messages")
    stack: Optional[str] = Field(None, description="Traceback (non-production only)")
    status_code: int = Field(..., description="HTTP status code")


class AuthenticationStatus(APIModel):
    required: bool
    has_user: bool
    has_session: bool


class HealthResponse(APIModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    uptime: float = Field(..., description="Seconds since startup")
    version: str = Field(..., description="API version")
    environment: str = Field(..., description="Runtime environment")
    database_status: str = Field(..., description="Database connection status")
    database: Dict[str, Any] = Field(default_factory=dict, description="Database details")
    authentication: AuthenticationStatus
