"""
Utility modules for pkiwatch: configuration, hostname normalization,
error classification with the TLS retry, and message formatting.
"""
