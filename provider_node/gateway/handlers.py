# provider_node/gateway/handlers.py
"""Registry of the APIs a node serves."""
import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Params = Mapping[str, Any]
APIHandler = Callable[[Params], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class HandlerRegistration:
    """
    One API bound to a name.

    `timeout` is in seconds; None means the dispatcher's default applies.
    `rate_limit` is advertised only and is not enforced.
    """
    name: str
    handler: APIHandler
    price: float = 0.0
    timeout: Optional[float] = None
    rate_limit: Optional[int] = None

    def __post_init__(self):
        if not math.isfinite(self.price) or self.price < 0:
            raise ValueError(f"Price for API '{self.name}' must be a finite non-negative number, got {self.price}")
        if self.timeout is not None and (math.isnan(self.timeout) or self.timeout <= 0):
            raise ValueError(f"Timeout for API '{self.name}' must be positive, got {self.timeout}")


class HandlerRegistry:
    """
    Thread-safe name -> HandlerRegistration map.

    Registering an existing name replaces the previous registration
    (last write wins). There is no removal.
    """

    def __init__(self):
        self._registrations: Dict[str, HandlerRegistration] = {}
        self._lock = threading.Lock()

    def register(self, registration: HandlerRegistration) -> HandlerRegistration:
        with self._lock:
            replaced = registration.name in self._registrations
            self._registrations[registration.name] = registration
        if replaced:
            logger.info(f"Replaced API: {registration.name} (price: ${registration.price})")
        else:
            logger.info(f"Registered API: {registration.name} (price: ${registration.price})")
        return registration

    def get(self, name: str) -> Optional[HandlerRegistration]:
        with self._lock:
            return self._registrations.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._registrations)

    def price_table(self) -> Dict[str, float]:
        with self._lock:
            return {name: reg.price for name, reg in self._registrations.items()}

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._registrations)
