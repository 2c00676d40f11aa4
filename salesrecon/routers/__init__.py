# salesrecon/routers/__init__.py

from salesrecon.routers import health
from salesrecon.routers import imports
from salesrecon.routers import catalog

__all__ = ["health", "imports", "catalog"]
