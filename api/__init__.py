"""
FastAPI RESTful API for the Book Library catalog.

This module provides a REST API for:
- Book CRUD with pagination, filtering and search
- Author CRUD with maintained book counts
- Demo (header or session) and Google OAuth authentication
- Interactive API documentation at /api-docs
"""
