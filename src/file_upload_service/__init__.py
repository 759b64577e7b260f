"""File upload service: file metadata in SQL, file bytes on local disk or S3."""
