# ABOUTME: ArgoCD bridge package initialization
# ABOUTME: Exposes version information

"""
ArgoCD bridge - ArgoCD's REST API as callable, schema-validated tool operations.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_bridge/
├── __init__.py          <- Package entry point
├── config.py            <- Settings from environment variables
├── models.py            <- Schemas for Application and resource references
├── server.py            <- MCP tools, registration, and main()
└── utils/
    ├── __init__.py
    ├── http.py          <- Authenticated transport, query rules, NDJSON streams
    ├── client.py        <- One method per ArgoCD operation
    └── logging.py       <- Structured logging with audit trails

Control flow for one tool call:

    server tool -> ArgocdClient method -> HttpClient request/stream
                <- reshaped payload    <- decoded JSON or records

Errors raised by the transport (NetworkError, HttpStatusError, DecodeError)
travel back up unchanged until the tool layer reports them.
"""

# Version 0.x.x: the API may still change without warning.
__version__ = "0.1.0"

__all__ = ["__version__"]
