"""
KYC Capture Workflow

This package contains the server side of the identity-verification workflow:
- Identifier, address and credential validation
- Image quality gate for captured frames
- Document storage with signed URLs
- OCR-based field extraction
- Capture progress and admin review on the customer record
"""

__version__ = "1.0.0"
