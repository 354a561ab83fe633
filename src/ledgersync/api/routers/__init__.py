"""API routers.  Each module owns one API domain and delegates to ``ledgersync.ops``."""
