"""Application package for the PDF QR Link backend.

This package exposes the migration subsystem, the service, repository
and model modules, and the FastAPI application used for database
maintenance. Individual modules contain the concrete implementations
and documentation.
"""
