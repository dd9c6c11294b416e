"""
Database Models

This package defines the persistent data structures of the accounts service using
SQLAlchemy ORM, plus the small in-process state objects owned by the application.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- accounts.py: Registered accounts and their hashed secrets
- projects.py: Projects created by authenticated accounts
- health.py: Health monitoring gauge
- comments.py: State owned by the comment polling task

The data models follow these relationships:
- Account: A unique handle with a one-way hashed secret and an optional linked
  third-party handle
- Project: A titled record attributed to exactly one Account

Handle uniqueness is enforced by a unique index at the store level. Handlers insert
directly and translate the resulting integrity error instead of checking first.

The models use SQLAlchemy's async interface for non-blocking database operations.
"""
