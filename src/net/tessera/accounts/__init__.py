"""
Tessera Accounts

This package implements the account service behind Tessera: handle/secret registration,
password login with signed session tokens, public profiles with the projects an account
owns, and linking a third-party account handle to a local account.

Key Components:
- app: Web application layer with request handlers, middleware and server configuration
- security: Password hashing and session token signing/verification
- linking: Redirect based flow that attaches a third-party handle to an account
- model: Database models for accounts and projects, plus in-process task state

Architecture Overview:
1. Authentication:
   - Secrets are stored only as bcrypt hashes
   - Login issues a short lived HS256 session token
   - Protected routes are marked on the handler and enforced by middleware

2. Storage:
   - Accounts and projects live in a relational store through SQLAlchemy
   - Handle uniqueness is enforced by a unique index, not by a lookup before insert
   - Pending link requests are kept in Redis with an expiry
"""
