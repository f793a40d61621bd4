#!/usr/bin/env python3
"""
Catalog Management Utility

This script provides utilities to manage the library catalog:
- Seed the database with sample authors and books
- Recompute author book counts from the books collection
- Show collection statistics
"""

import asyncio
import sys
from datetime import date
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from catalog.database import MongoDBManager
from catalog.models import AuthorData, Genre
from utilities.config import config
from utilities.logger import setup_logging

SAMPLE_AUTHORS = [
    AuthorData(
        first_name="F. Scott",
        last_name="Fitzgerald",
        nationality="American",
        birth_date=date(1896, 9, 24),
        death_date=date(1940, 12, 21),
        genres=[Genre.FICTION],
        awards=["None"],
    ),
    AuthorData(
        first_name="Harper",
        last_name="Lee",
        nationality="American",
        birth_date=date(1926, 4, 28),
        death_date=date(2016, 2, 19),
        genres=[Genre.FICTION],
        awards=["Pulitzer Prize"],
    ),
]

# "author" is an index into SAMPLE_AUTHORS
SAMPLE_BOOKS = [
    {
        "title": "The Great Gatsby",
        "author": 0,
        "isbn": "9780743273565",
        "genre": "Fiction",
        "publicationYear": 1925,
        "publisher": "Charles Scribner's Sons",
        "pageCount": 180,
        "language": "English",
        "description": "A novel about the American Dream during the Jazz Age",
        "availableCopies": 10,
    },
    {
        "title": "To Kill a Mockingbird",
        "author": 1,
        "isbn": "9780061120084",
        "genre": "Fiction",
        "publicationYear": 1960,
        "publisher": "J.B. Lippincott & Co.",
        "pageCount": 281,
        "language": "English",
        "description": "A novel about racial injustice in the American South",
        "availableCopies": 8,
    },
]


def _manager() -> MongoDBManager:
    return MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database
    )


async def seed_catalog() -> bool:
    """Replace the catalog with the sample data."""
    print("\n" + "=" * 60)
    print("🌱 SEEDING CATALOG")
    print("=" * 60)

    db_manager = _manager()
    try:
        await db_manager.connect()
        counts = await db_manager.seed(SAMPLE_AUTHORS, SAMPLE_BOOKS)
        print(f"✅ Created {counts['authors']} authors")
        print(f"✅ Created {counts['books']} books")
        return True

    except Exception as e:
        print(f"❌ Error seeding database: {e}")
        return False
    finally:
        await db_manager.disconnect()


async def recount_author_books() -> bool:
    """Recompute every author's bookCount."""
    print("\n🔢 RECOUNTING AUTHOR BOOKS")
    print("=" * 60)

    db_manager = _manager()
    try:
        await db_manager.connect()
        changed = await db_manager.recount_author_books()
        if changed:
            print(f"✅ Corrected book counts for {changed} authors")
        else:
            print("✅ All author book counts were already correct")
        return True

    except Exception as e:
        print(f"❌ Error recounting author books: {e}")
        return False
    finally:
        await db_manager.disconnect()


async def show_statistics() -> bool:
    """Print collection counts."""
    print("\n📊 CATALOG STATISTICS")
    print("=" * 60)

    db_manager = _manager()
    try:
        await db_manager.connect()
        stats = await db_manager.get_database_stats()
        print(f"Database: {stats['database']}")
        print(f"Books:    {stats['books']}")
        print(f"Authors:  {stats['authors']}")
        print(f"Users:    {stats['users']}")
        print(f"Sessions: {stats['sessions']}")
        return True

    except Exception as e:
        print(f"❌ Error getting statistics: {e}")
        return False
    finally:
        await db_manager.disconnect()


COMMANDS = {
    "seed": seed_catalog,
    "recount": recount_author_books,
    "stats": show_statistics,
}


def print_usage():
    print("Usage: python manage_catalog.py [seed|recount|stats]")
    print()
    print("Commands:")
    print("  seed     - Replace books and authors with sample data")
    print("  recount  - Recompute author book counts from the books collection")
    print("  stats    - Show collection statistics")


async def main(argv=None) -> int:
    """Main function."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print_usage()
        return 1

    command = argv[0].lower()
    if command not in COMMANDS:
        print(f"❌ Unknown command: {command}")
        print(f"Available commands: {', '.join(COMMANDS)}")
        return 1

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    succeeded = await COMMANDS[command]()
    return 0 if succeeded else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
