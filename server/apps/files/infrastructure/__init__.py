"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Storage backend for hosted files and upload chunks (S3/MinIO/R2)
- Checksum engine and streaming readers
- MIME type detection

Keep infrastructure concerns separate from business logic.
"""
