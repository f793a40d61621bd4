"""
Pydantic models for book and author validation and document conversion.
Field constraints declared here double as the request validation rules.
"""

import re
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ISBN_PATTERN = re.compile(r"^\d{10}(\d{3})?$", re.ASCII)
URL_PATTERN = re.compile(r"^https?://.+")
ISBN_SEPARATORS = re.compile(r"[-\s]")


class Genre(str, Enum):
    """Genres shared by books and authors."""
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    SCIENCE_FICTION = "Science Fiction"
    FANTASY = "Fantasy"
    MYSTERY = "Mystery"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SELF_HELP = "Self-Help"
    OTHER = "Other"


def normalize_isbn(value: str) -> str:
    """Strip hyphens and whitespace from an ISBN."""
    return ISBN_SEPARATORS.sub("", value)


def _as_datetime(value: Optional[date]) -> Optional[datetime]:
    # BSON has no pure date type
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


class CatalogModel(BaseModel):
    """Base model: camelCase JSON keys, trimmed strings, enum values stored as text."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "str_strip_whitespace": True,
        "use_enum_values": True,
        "extra": "ignore",
    }


class BookData(CatalogModel):
    """
    Book write model used for both creation and full updates.
    """
    title: str = Field(..., min_length=2, description="Book title")
    author: str = Field(..., description="Identifier of the book's author")
    isbn: str = Field(..., description="ISBN-10 or ISBN-13, separators allowed")
    genre: Genre = Field(..., description="Book genre")
    publication_year: int = Field(..., ge=1000, description="Year of publication")
    publisher: str = Field(..., min_length=1, description="Publisher name")
    page_count: int = Field(..., ge=1, description="Number of pages")
    language: str = Field(default="English", min_length=1, description="Language of the edition")
    description: Optional[str] = Field(None, max_length=1000, description="Short description")
    cover_image_url: Optional[str] = Field(None, description="Absolute or site-relative cover image URL")
    available_copies: int = Field(default=1, ge=0, description="Copies available for lending")

    @field_validator('author')
    @classmethod
    def validate_author(cls, v):
        """Ensure the author reference is a valid ObjectId."""
        if not ObjectId.is_valid(v):
            raise ValueError('Valid author ID is required')
        return v

    @field_validator('isbn')
    @classmethod
    def validate_isbn(cls, v):
        """Normalize the ISBN and check its digit count."""
        v = normalize_isbn(v)
        if not ISBN_PATTERN.match(v):
            raise ValueError('Please enter a valid ISBN')
        return v

    @field_validator('publication_year')
    @classmethod
    def validate_publication_year(cls, v):
        """Reject years in the future."""
        if v > datetime.utcnow().year:
            raise ValueError('Publication year cannot be in the future')
        return v

    @field_validator('cover_image_url')
    @classmethod
    def validate_cover_image_url(cls, v):
        """Allow empty values, site-relative paths and http(s) URLs."""
        if not v:
            return None
        if v.startswith('/') or URL_PATTERN.match(v):
            return v
        raise ValueError('coverImageUrl must be empty, start with /, or be a valid URL')

    def to_document(self) -> Dict[str, Any]:
        """Convert to a MongoDB document (camelCase keys, ObjectId author)."""
        document = self.model_dump(by_alias=True, exclude_none=True)
        document["author"] = ObjectId(self.author)
        return document

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "The Great Gatsby",
                "author": "64b7f0c2a1b2c3d4e5f60718",
                "isbn": "978-0-74-327356-5",
                "genre": "Fiction",
                "publicationYear": 1925,
                "publisher": "Charles Scribner's Sons",
                "pageCount": 180,
                "language": "English",
                "description": "A novel about the American Dream during the Jazz Age",
                "availableCopies": 10
            }
        }
    }


class AuthorData(CatalogModel):
    """
    Author write model used for both creation and full updates.
    """
    first_name: str = Field(..., min_length=2, description="First name")
    last_name: str = Field(..., min_length=2, description="Last name")
    nationality: str = Field(..., min_length=1, description="Nationality")
    birth_date: date = Field(..., description="Date of birth")
    death_date: Optional[date] = Field(None, description="Date of death")
    biography: Optional[str] = Field(None, max_length=2000, description="Biography")
    website: Optional[str] = Field(None, description="Personal website URL")
    genres: List[Genre] = Field(default_factory=list, description="Genres the author writes in")
    awards: List[str] = Field(default_factory=list, description="Awards received")

    @field_validator('website')
    @classmethod
    def validate_website(cls, v):
        """Ensure website is an http(s) URL."""
        if not v:
            return None
        if not URL_PATTERN.match(v):
            raise ValueError('Please enter a valid URL')
        return v

    @field_validator('awards')
    @classmethod
    def strip_awards(cls, v):
        return [award.strip() for award in v if award.strip()]

    @model_validator(mode='after')
    def validate_lifespan(self):
        """Death date cannot precede birth date."""
        if self.death_date and self.death_date < self.birth_date:
            raise ValueError('Death date cannot be before birth date')
        return self

    def to_document(self) -> Dict[str, Any]:
        """Convert to a MongoDB document (camelCase keys, datetime dates)."""
        document = self.model_dump(by_alias=True, exclude_none=True)
        document["birthDate"] = _as_datetime(self.birth_date)
        if self.death_date:
            document["deathDate"] = _as_datetime(self.death_date)
        return document

    model_config = {
        "json_schema_extra": {
            "example": {
                "firstName": "Harper",
                "lastName": "Lee",
                "nationality": "American",
                "birthDate": "1926-04-28",
                "deathDate": "2016-02-19",
                "genres": ["Fiction"],
                "awards": ["Pulitzer Prize"]
            }
        }
    }
