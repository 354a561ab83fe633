"""REST transport for the sync pipeline (FastAPI).

Routers are thin: they translate HTTP into ``ledgersync.ops`` requests and
``OperationResult`` failures into RFC 7807 problem responses.
"""

from ledgersync.api.app import create_app

__all__ = ["create_app"]
