"""
Database service layer for the FastAPI application.
"""

import math
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from bson import ObjectId
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from api.errors import (
    CatalogError, CatalogValidationError, DuplicateEntryError, InvalidIdError,
    NotFoundError, ReferenceNotFoundError, ServiceUnavailableError,
    duplicate_key_field,
)
from api.models import (
    AuthorListResponse, AuthorResponse, AuthorSummary, BookListResponse,
    BookQueryParams, BookResponse, DeletedAuthor, DeletedRecord,
)
from catalog.models import AuthorData, BookData, normalize_isbn

logger = structlog.get_logger(__name__)

LIST_AUTHOR_FIELDS = {"firstName": 1, "lastName": 1}
DETAIL_AUTHOR_FIELDS = {"firstName": 1, "lastName": 1, "nationality": 1}


def to_object_id(value: str, entity: str = "book") -> ObjectId:
    """
    Parse a path identifier.

    Raises:
        InvalidIdError: If the value is not a 24-character hex ObjectId
    """
    if not ObjectId.is_valid(value):
        raise InvalidIdError(entity)
    return ObjectId(value)


def _contains(term: str) -> Dict[str, str]:
    """Case-insensitive substring match."""
    return {"$regex": re.escape(term), "$options": "i"}


class APIDatabaseService:
    """Database service for API operations."""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database
        self.books_collection = database.books
        self.authors_collection = database.authors
        self.users_collection = database.users

    # Books

    async def get_books(self, query_params: BookQueryParams) -> BookListResponse:
        """
        Get books with filtering, search and pagination, newest first.

        Args:
            query_params: Query parameters for filtering and pagination

        Returns:
            BookListResponse with the requested page
        """
        try:
            filter_query = await self._build_book_filter(query_params)

            skip = (query_params.page - 1) * query_params.limit

            total = await self.books_collection.count_documents(filter_query)
            total_pages = math.ceil(total / query_params.limit)

            cursor = (
                self.books_collection.find(filter_query)
                .sort("createdAt", -1)
                .skip(skip)
                .limit(query_params.limit)
            )
            book_docs = await cursor.to_list(length=query_params.limit)

            authors = await self._authors_by_id(
                (doc.get("author") for doc in book_docs), LIST_AUTHOR_FIELDS
            )
            books = [self._book_response(doc, authors) for doc in book_docs]

            return BookListResponse(
                count=len(books),
                total=total,
                total_pages=total_pages,
                current_page=query_params.page,
                data=books,
            )

        except CatalogError:
            raise
        except Exception as e:
            logger.error("Failed to get books", error=str(e), query_params=query_params.model_dump())
            raise

    async def get_books_by_user(self, user_id: str, query_params: BookQueryParams) -> BookListResponse:
        """Same listing restricted to books added by ``user_id``."""
        return await self.get_books(query_params.model_copy(update={"user": user_id}))

    async def _build_book_filter(self, query_params: BookQueryParams) -> Dict[str, Any]:
        filter_query: Dict[str, Any] = {}

        if query_params.genre:
            filter_query["genre"] = query_params.genre.value

        if query_params.user:
            filter_query["user"] = query_params.user

        if query_params.author:
            if ObjectId.is_valid(query_params.author):
                filter_query["author"] = ObjectId(query_params.author)
            else:
                filter_query["author"] = {"$in": await self._find_author_ids_by_name(query_params.author)}

        if query_params.search:
            term = query_params.search.strip()
            clauses = [{"title": _contains(term)}, {"genre": _contains(term)}]
            isbn_term = normalize_isbn(term)
            if isbn_term:
                clauses.append({"isbn": _contains(isbn_term)})
            filter_query["$or"] = clauses

        return filter_query

    async def _find_author_ids_by_name(self, name: str) -> List[ObjectId]:
        """Every word of ``name`` must match the first or last name."""
        words = name.split()
        if not words:
            return []
        name_query = {
            "$and": [
                {"$or": [{"firstName": _contains(word)}, {"lastName": _contains(word)}]}
                for word in words
            ]
        }
        cursor = self.authors_collection.find(name_query, {"_id": 1})
        return [doc["_id"] for doc in await cursor.to_list(length=None)]

    async def _authors_by_id(
        self, author_ids: Iterable[Optional[ObjectId]], projection: Dict[str, int]
    ) -> Dict[ObjectId, Dict]:
        ids = list({author_id for author_id in author_ids if author_id})
        if not ids:
            return {}
        cursor = self.authors_collection.find({"_id": {"$in": ids}}, projection)
        return {doc["_id"]: doc for doc in await cursor.to_list(length=None)}

    def _book_response(self, book_doc: Dict, authors: Dict[ObjectId, Dict]) -> BookResponse:
        book = dict(book_doc)
        book["id"] = str(book.pop("_id"))
        author = authors.get(book.get("author"))
        book["author"] = self._author_summary(author) if author else None
        return BookResponse.model_validate(book)

    @staticmethod
    def _author_summary(author_doc: Dict) -> AuthorSummary:
        return AuthorSummary.model_validate({**author_doc, "id": str(author_doc["_id"])})

    async def get_book_by_id(self, book_id: str) -> BookResponse:
        """
        Get a single book by ID with its author populated.

        Raises:
            InvalidIdError: Malformed identifier
            NotFoundError: No such book
        """
        object_id = to_object_id(book_id)
        book_doc = await self.books_collection.find_one({"_id": object_id})
        if not book_doc:
            raise NotFoundError("Book")

        authors = await self._authors_by_id([book_doc.get("author")], DETAIL_AUTHOR_FIELDS)
        return self._book_response(book_doc, authors)

    async def create_book(self, book: BookData, user_id: Optional[str] = None) -> BookResponse:
        """
        Insert a book and increment its author's book count.

        Args:
            book: Validated book data
            user_id: Identifier of the caller, stored as the book's owner

        Raises:
            ReferenceNotFoundError: The author does not exist
            DuplicateEntryError: The ISBN is already used
        """
        author_id = ObjectId(book.author)
        author = await self._require_author(author_id)

        now = datetime.utcnow()
        book_doc = book.to_document()
        book_doc.update(createdAt=now, updatedAt=now)
        if user_id:
            book_doc["user"] = user_id

        try:
            result = await self.books_collection.insert_one(book_doc)
        except DuplicateKeyError as e:
            field = duplicate_key_field(e.details)
            logger.warning("Duplicate book rejected", field=field, isbn=book.isbn)
            raise DuplicateEntryError(field) from e

        book_doc["_id"] = result.inserted_id
        await self._adjust_book_count(author_id, 1)

        logger.info("Book created", book_id=str(result.inserted_id), isbn=book.isbn, user=user_id)
        return self._book_response(book_doc, {author_id: author})

    async def update_book(self, book_id: str, book: BookData) -> BookResponse:
        """
        Overwrite a book's fields and move the count when the author changes.

        Raises:
            InvalidIdError, NotFoundError, ReferenceNotFoundError, DuplicateEntryError
        """
        object_id = to_object_id(book_id)
        existing = await self.books_collection.find_one({"_id": object_id})
        if not existing:
            raise NotFoundError("Book")

        new_author_id = ObjectId(book.author)
        author = await self._require_author(new_author_id)

        update_data = book.to_document()
        update_data["updatedAt"] = datetime.utcnow()

        try:
            updated = await self.books_collection.find_one_and_update(
                {"_id": object_id},
                {"$set": update_data},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            field = duplicate_key_field(e.details)
            logger.warning("Duplicate book rejected", field=field, book_id=book_id)
            raise DuplicateEntryError(field) from e

        if not updated:
            raise NotFoundError("Book")

        old_author_id = existing.get("author")
        if old_author_id != new_author_id:
            # Two separate writes; not atomic across the author documents
            if old_author_id:
                await self._adjust_book_count(old_author_id, -1)
            await self._adjust_book_count(new_author_id, 1)

        logger.info("Book updated", book_id=book_id)
        return self._book_response(updated, {new_author_id: author})

    async def delete_book(self, book_id: str) -> DeletedRecord:
        """
        Remove a book and decrement its author's book count.

        Raises:
            InvalidIdError, NotFoundError
        """
        object_id = to_object_id(book_id)
        deleted = await self.books_collection.find_one_and_delete({"_id": object_id})
        if not deleted:
            raise NotFoundError("Book")

        if deleted.get("author"):
            await self._adjust_book_count(deleted["author"], -1)

        logger.info("Book deleted", book_id=book_id, title=deleted.get("title"))
        return DeletedRecord(id=str(deleted["_id"]), title=deleted.get("title", ""))

    async def _require_author(self, author_id: ObjectId) -> Dict:
        author = await self.authors_collection.find_one({"_id": author_id}, DETAIL_AUTHOR_FIELDS)
        if not author:
            raise ReferenceNotFoundError("Author")
        return author

    async def _adjust_book_count(self, author_id: ObjectId, delta: int) -> None:
        filter_query: Dict[str, Any] = {"_id": author_id}
        if delta < 0:
            # bookCount never drops below zero
            filter_query["bookCount"] = {"$gte": -delta}

        result = await self.authors_collection.update_one(
            filter_query, {"$inc": {"bookCount": delta}}
        )
        if result.modified_count:
            logger.debug("Author book count adjusted", author_id=str(author_id), delta=delta)
        else:
            logger.warning("Author book count not adjusted", author_id=str(author_id), delta=delta)

    # Authors

    async def get_authors(self) -> AuthorListResponse:
        """Get all authors sorted by last name."""
        try:
            cursor = self.authors_collection.find({}).sort("lastName", 1)
            author_docs = await cursor.to_list(length=None)
            authors = [self._author_response(doc) for doc in author_docs]
            return AuthorListResponse(count=len(authors), data=authors)

        except Exception as e:
            logger.error("Failed to get authors", error=str(e))
            raise

    @staticmethod
    def _author_response(author_doc: Dict) -> AuthorResponse:
        author = dict(author_doc)
        author["id"] = str(author.pop("_id"))
        return AuthorResponse.model_validate(author)

    async def get_author_by_id(self, author_id: str) -> AuthorResponse:
        object_id = to_object_id(author_id, "author")
        author_doc = await self.authors_collection.find_one({"_id": object_id})
        if not author_doc:
            raise NotFoundError("Author")
        return self._author_response(author_doc)

    async def create_author(self, author: AuthorData) -> AuthorResponse:
        """Insert an author with a zero book count."""
        now = datetime.utcnow()
        author_doc = author.to_document()
        author_doc.update(bookCount=0, createdAt=now, updatedAt=now)

        result = await self.authors_collection.insert_one(author_doc)
        author_doc["_id"] = result.inserted_id

        logger.info("Author created", author_id=str(result.inserted_id))
        return self._author_response(author_doc)

    async def update_author(self, author_id: str, author: AuthorData) -> AuthorResponse:
        """Overwrite an author's fields; bookCount is left untouched."""
        object_id = to_object_id(author_id, "author")
        update_data = author.to_document()
        update_data["updatedAt"] = datetime.utcnow()

        updated = await self.authors_collection.find_one_and_update(
            {"_id": object_id},
            {"$set": update_data},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Author")

        logger.info("Author updated", author_id=author_id)
        return self._author_response(updated)

    async def delete_author(self, author_id: str) -> DeletedAuthor:
        """
        Remove an author that no book references.

        Raises:
            CatalogValidationError: Books still reference the author
        """
        object_id = to_object_id(author_id, "author")
        author_doc = await self.authors_collection.find_one({"_id": object_id})
        if not author_doc:
            raise NotFoundError("Author")

        book_count = await self.books_collection.count_documents({"author": object_id})
        if book_count:
            raise CatalogValidationError(
                "Cannot delete an author who still has books",
                errors=[{"field": "author", "message": f"{book_count} book(s) reference this author"}],
            )

        await self.authors_collection.delete_one({"_id": object_id})
        logger.info("Author deleted", author_id=author_id)
        return DeletedAuthor(
            id=author_id,
            first_name=author_doc.get("firstName", ""),
            last_name=author_doc.get("lastName", ""),
        )

    # Users

    async def upsert_oauth_user(self, profile: Dict[str, Any]) -> Dict:
        """
        Create or refresh a user from an OAuth profile.

        Args:
            profile: Dict with googleId, displayName, email and avatar

        Returns:
            The stored user document
        """
        now = datetime.utcnow()
        user = await self.users_collection.find_one_and_update(
            {"googleId": profile["googleId"]},
            {
                "$set": {
                    "displayName": profile.get("displayName"),
                    "email": profile.get("email"),
                    "avatar": profile.get("avatar"),
                    "lastLoginAt": now,
                },
                "$setOnInsert": {"role": "user", "createdAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info("OAuth user stored", user_id=str(user["_id"]), email=profile.get("email"))
        return user

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")

            books_count = await self.books_collection.count_documents({})
            authors_count = await self.authors_collection.count_documents({})

            return {
                "status": "healthy",
                "books_count": books_count,
                "authors_count": authors_count
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }


def get_db_service(request: Request) -> APIDatabaseService:
    """FastAPI dependency returning the service created at startup."""
    service = getattr(request.app.state, "db_service", None)
    if service is None:
        raise ServiceUnavailableError("Database service not available")
    return service
