__version__ = "1.0.5"

from .client import Sheetlog
from .errors import RequestError, SheetlogError, SheetlogResponseError
from .permissions import ALL, DELETE, GET, POST, PUT, unsafe

__all__ = [
    "Sheetlog", "SheetlogError", "SheetlogResponseError", "RequestError",
    "ALL", "GET", "POST", "PUT", "DELETE", "unsafe", "__version__",
]
