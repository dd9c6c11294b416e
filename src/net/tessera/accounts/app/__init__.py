"""
Accounts Application Layer

This package implements the web application layer for the accounts service using the
aiohttp framework.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration and middleware setup
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for the account, project, linking and internal endpoints
- tasks.py: Background tasks for health monitoring and comment feed polling
- util/: Command line utilities

The application uses several middleware layers:
- Statsd middleware for metrics collection
- Sentry middleware for error reporting
- Auth middleware enforcing session tokens on protected routes
"""
