"""
Endpoint records and the persisted registry that resolves them.
"""

from .models import Endpoint, EndpointUpdate
from .registry import DEFAULT_SEEDS, EndpointRegistry, load_seed_file

__all__ = ["Endpoint", "EndpointUpdate", "EndpointRegistry", "DEFAULT_SEEDS", "load_seed_file"]
