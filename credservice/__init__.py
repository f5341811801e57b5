"""
CredService: credential lifecycle and notification dispatch.
"""
