"""tokenbroker -- reuse browser-issued bearer tokens for an ERP API.

The remote ERP has no programmatic login endpoint: a human logs in through a
web page that then renders a temporary access key inside an HTML element.
This package turns that browser-only flow into a cached credential that the
rest of the program can reuse until it expires.

Typical workflow::

    tokenbroker token get            # reuse the cached token or open a browser
    tokenbroker call stock-list Sayfa=1
    tokenbroker token delete         # forget the cached token

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic settings models shared across the package.
    config: XDG-aware settings storage and secret-source resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    operations: Declarative registry of named ERP operations.
"""

__version__ = "0.1.0"
