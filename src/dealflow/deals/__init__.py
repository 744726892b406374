"""Deal records module -- data models, schemas, and repository for the deal workflow.

Provides SQLAlchemy models (Deal, FundingPartner, DealRelease, Document, Activity,
Notification, PartnerAccessLog), Pydantic schemas (enums, Read/Create
payloads, the public deal projection), and DealRepository for async CRUD.
"""
