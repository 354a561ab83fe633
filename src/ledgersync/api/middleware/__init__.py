"""API middleware package: request ids, timing, and error mapping."""
