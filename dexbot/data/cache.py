import time
from typing import Any, Dict, Tuple, Optional

class MemoryCache:
    def __init__(self): self.store: Dict[str, Tuple[float, Any]] = {}
    def set(self, key: str, value: Any, ttl: int = 30):
        self.store[key] = (time.monotonic() + ttl, value)
    def get(self, key: str) -> Optional[Any]:
        exp, val = self.store.get(key, (0, None))
        if exp and exp > time.monotonic(): return val
        if key in self.store: del self.store[key]
        return None
    def clear(self): self.store.clear()

cache = MemoryCache()
