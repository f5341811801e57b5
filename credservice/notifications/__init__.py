"""
Notification delivery for CredService.

This package provides:
- Email job models
- A self-healing broker dispatcher used by the credential flows
"""
