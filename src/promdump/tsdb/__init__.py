from .catalog import BlockCatalog
from .selector import select

__all__ = ["BlockCatalog", "select"]
