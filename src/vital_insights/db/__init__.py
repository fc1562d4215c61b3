"""Persistence: storage protocols, the SQLite store and the type catalog."""

from .base import HealthStore, RecommendationFilter, TypeRepository
from .catalog import DEFAULT_VITAL_SIGN_TYPES, TypeCatalog
from .database import HealthDatabase

__all__ = [
    "HealthStore",
    "RecommendationFilter",
    "TypeRepository",
    "DEFAULT_VITAL_SIGN_TYPES",
    "TypeCatalog",
    "HealthDatabase",
]
