"""
Domain packages

Each domain keeps the same layering: schemas (pydantic), repository
(SQLAlchemy queries), service (business rules, HTTP errors) and router
(FastAPI endpoints).
"""
