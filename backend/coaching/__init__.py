"""Application package for the coaching programs backend.

Programs are templates of weekly tasks; enrolling a client (or opening
a cohort) materializes a dated program instance. The package exposes
the service, repository and model modules used by the FastAPI
application; individual modules contain the concrete implementations.
"""
