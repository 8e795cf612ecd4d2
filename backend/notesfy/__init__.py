"""
Notesfy Backend — Application Package Initializer
==================================================

What: Marks the `notesfy` directory as a Python package.
Who:  Imported by uvicorn (`uvicorn notesfy.main:app`), Alembic and pytest.

Architecture Note:
    The backend follows a layered layout:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← download / payout orchestration,
    │                                     │    catalog, accounts, gateway adapter
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Routes translate HTTP to service calls; services own the ledger rules
    and talk to the payment gateway; models describe the tables.
"""

__version__ = "1.0.0"
