"""
MongoDB connection management for the library catalog.
Handles connection, indexing, seeding and author book-count maintenance.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure

from .models import AuthorData, BookData

logger = structlog.get_logger(__name__)


class MongoDBManager:
    """
    Async MongoDB manager for the catalog collections.
    Owns the client; services receive the database handle.
    """

    def __init__(self, connection_url: str, database_name: str):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.connected = False

    async def connect(self) -> None:
        """Establish connection to MongoDB and create indexes."""
        try:
            self.client = AsyncIOMotorClient(
                self.connection_url,
                serverSelectionTimeoutMS=5000,
                socketTimeoutMS=45000,
            )
            self.database = self.client[self.database_name]

            await self.client.admin.command('ping')
            self.connected = True
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            self.connected = False
            logger.info("Disconnected from MongoDB")

    def connection_state(self) -> str:
        """Report the connection state for health checks."""
        return "connected" if self.connected else "disconnected"

    async def _create_indexes(self) -> None:
        """
        Create indexes backing uniqueness, filtering and session expiry.
        """
        try:
            books = self.database.books
            await books.create_index("isbn", unique=True)
            await books.create_index("author")
            await books.create_index("genre")
            await books.create_index("user")
            await books.create_index([("createdAt", DESCENDING)])

            await self.database.authors.create_index([("lastName", ASCENDING)])

            await self.database.users.create_index("googleId", unique=True, sparse=True)

            # Expired sessions are removed by the server
            await self.database.sessions.create_index("expiresAt", expireAfterSeconds=0)

            logger.info("Successfully created MongoDB indexes")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def seed(self, authors: List[AuthorData], books: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Replace the catalog with sample data.

        Args:
            authors: Authors to insert
            books: Book payloads; each ``author`` value is an index into ``authors``

        Returns:
            Dict with inserted author and book counts
        """
        try:
            await self.database.books.delete_many({})
            await self.database.authors.delete_many({})

            now = datetime.utcnow()
            author_docs = []
            for author in authors:
                doc = author.to_document()
                doc.update(bookCount=0, createdAt=now, updatedAt=now)
                author_docs.append(doc)
            result = await self.database.authors.insert_many(author_docs)
            author_ids = result.inserted_ids

            book_docs = []
            for payload in books:
                payload = dict(payload, author=str(author_ids[payload["author"]]))
                doc = BookData(**payload).to_document()
                doc.update(createdAt=now, updatedAt=now)
                book_docs.append(doc)
            if book_docs:
                await self.database.books.insert_many(book_docs)

            await self.recount_author_books()

            logger.info("Catalog seeded", authors=len(author_docs), books=len(book_docs))
            return {"authors": len(author_docs), "books": len(book_docs)}

        except Exception as e:
            logger.error("Failed to seed catalog", error=str(e))
            raise

    async def recount_author_books(self) -> int:
        """
        Recompute every author's bookCount from the books collection.

        Returns:
            Number of authors whose count changed
        """
        try:
            pipeline = [{"$group": {"_id": "$author", "count": {"$sum": 1}}}]
            cursor = self.database.books.aggregate(pipeline)
            counts = {row["_id"]: row["count"] async for row in cursor}

            changed = 0
            async for author in self.database.authors.find({}, {"bookCount": 1}):
                actual = counts.get(author["_id"], 0)
                if author.get("bookCount") != actual:
                    await self.database.authors.update_one(
                        {"_id": author["_id"]},
                        {"$set": {"bookCount": actual}}
                    )
                    changed += 1

            logger.info("Author book counts recomputed", changed=changed)
            return changed

        except Exception as e:
            logger.error("Failed to recount author books", error=str(e))
            raise

    async def get_database_stats(self) -> Dict[str, Any]:
        """Get collection counts for monitoring."""
        try:
            return {
                "database": self.database_name,
                "books": await self.database.books.count_documents({}),
                "authors": await self.database.authors.count_documents({}),
                "users": await self.database.users.count_documents({}),
                "sessions": await self.database.sessions.count_documents({}),
                "last_updated": datetime.utcnow().isoformat()
            }

        except Exception as e:
            logger.error("Failed to get database stats", error=str(e))
            raise
