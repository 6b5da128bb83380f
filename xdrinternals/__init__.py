__version__ = '1.0.0'

from xdrinternals.cache import CacheEntry, CacheKey, TtlCache
from xdrinternals.errors import ApiCallError, AuthenticationError, ValidationError, XdrError
from xdrinternals.models import TenantContext
from xdrinternals.client import XdrClient
from xdrinternals.auth import XdrSession
