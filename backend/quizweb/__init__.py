"""Application package for the QuizWeb classroom quiz backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `quizweb.main`. It is intentionally
lightweight; individual modules contain the concrete implementations and
documentation.
"""
