"""Application package for the LMS catalog backend.

This package exposes the service, repository and model modules used by
the FastAPI application (users, categories and courses). It is
intentionally lightweight; individual modules contain the concrete
implementations and documentation.
"""
