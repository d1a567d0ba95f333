"""Business logic layer for files app.

This package contains all business logic for hosted files:
- Single-shot storage, lookup, download and owner deletion
- Expiration sweeping of files and upload sessions
- Storage maintenance, monitoring and background job locking
- Request rate limiting

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
