"""
KYC Verification Engine

This package contains the verification and risk-decisioning engine:
- Face capture and document feature extraction adapters
- Liveness and anti-spoofing scoring
- Face match scoring
- Document validation scoring
- Risk decision engine and application state machine
"""

__version__ = "1.0.0"
