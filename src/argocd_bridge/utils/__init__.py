# ABOUTME: Utilities package initialization for the ArgoCD bridge
# ABOUTME: Contains the transport, domain client, and logging modules

"""
ArgoCD bridge utilities

Shared utilities:
    - http.py: Authenticated HTTP transport and incremental NDJSON decoding
    - client.py: ArgoCD domain client built on the transport
    - logging.py: Structured logging with correlation IDs and audit trails
"""
