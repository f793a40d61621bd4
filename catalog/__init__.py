"""
Catalog package: book and author schemas plus MongoDB bootstrap.

This package contains:
- Book and author validation models
- ISBN normalization
- Connection, indexing and seeding of the catalog collections
- Author book-count recomputation
"""

__version__ = "1.0.0"
