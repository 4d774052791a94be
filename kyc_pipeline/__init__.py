"""
Passport Selfie Verification Pipeline

This package contains the pipeline for verifying a "selfie holding a passport" photo
against a user profile:
- Document text recognition and passport field parsing
- Face detection, pairing and comparison
- Name matching against the profile
- Final decision with reason codes and audit journal
- Avatar extraction from the selfie
"""

__version__ = "1.0.0"
