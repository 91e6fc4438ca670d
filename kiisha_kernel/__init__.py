"""
KIISHA Kernel -- shared infrastructure for the job subsystem.

Provides:
- Typed exceptions with machine-readable codes
- Structured JSON logging with context propagation
- Injectable clocks
- SQLAlchemy base classes, engine and transactional session scope
- Settings loading (YAML file + environment overrides)
"""

__version__ = "0.1.0"
