"""
Authentication microservice for CredService.

This module provides the credential lifecycle:
- Registration gated by a one-time code
- Login with signed session tokens
- Password change and forgot/reset password
"""
