"""
Central constants for the Senexus application.
"""
from __future__ import annotations

# Firm theme palette (value -> CSS color)
THEMES = {
    "default": "#3b82f6",
    "blue": "#2563eb",
    "green": "#16a34a",
    "amber": "#d97706",
}

MIN_PASSWORD_LENGTH = 8
MIN_NAME_LENGTH = 2

# Uploads accepted by POST /upload-image
IMAGE_CONTENT_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp", "image/svg+xml"})

AUDIT_PAGE_SIZE = 200

# Employee documents: scans, PDFs and office files
DOCUMENT_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "image/png",
        "image/jpeg",
        "image/webp",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
DOCUMENT_MAX_BYTES = 10 * 1024 * 1024
