"""Router modules exposed by the Zelosify API."""
from . import auth, system, vendor

__all__ = ["auth", "system", "vendor"]
