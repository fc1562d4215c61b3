"""
Vital sign type catalog.

Reference data is loaded once, range-checked, and then served read-only to
every component through the TypeRepository interface.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..exceptions import VitalSignTypeNotFoundError
from ..models.vital_signs import VitalSignType


logger = logging.getLogger(__name__)


DEFAULT_VITAL_SIGN_TYPES: List[VitalSignType] = [
    VitalSignType(
        id="blood_pressure",
        name="blood_pressure",
        display_name="Blood Pressure",
        unit_primary="mmHg",
        has_secondary_value=True,
        normal_range_min=90.0,
        normal_range_max=140.0,
        warning_range_min=80.0,
        warning_range_max=160.0,
        min_value=60.0,
        max_value=250.0,
    ),
    VitalSignType(
        id="oxygen_saturation",
        name="oxygen_saturation",
        display_name="Oxygen Saturation",
        unit_primary="%",
        normal_range_min=95.0,
        normal_range_max=100.0,
        warning_range_min=90.0,
        warning_range_max=100.0,
        min_value=70.0,
        max_value=100.0,
    ),
    VitalSignType(
        id="weight",
        name="weight",
        display_name="Weight",
        unit_primary="kg",
        unit_secondary="lbs",
        normal_range_min=50.0,
        normal_range_max=100.0,
        warning_range_min=40.0,
        warning_range_max=150.0,
        min_value=30.0,
        max_value=300.0,
    ),
    VitalSignType(
        id="blood_glucose",
        name="blood_glucose",
        display_name="Blood Glucose",
        unit_primary="mg/dL",
        unit_secondary="mmol/L",
        normal_range_min=70.0,
        normal_range_max=100.0,
        warning_range_min=60.0,
        warning_range_max=140.0,
        min_value=40.0,
        max_value=500.0,
    ),
    VitalSignType(
        id="heart_rate",
        name="heart_rate",
        display_name="Heart Rate",
        unit_primary="bpm",
        normal_range_min=60.0,
        normal_range_max=100.0,
        warning_range_min=50.0,
        warning_range_max=120.0,
        min_value=40.0,
        max_value=200.0,
    ),
    VitalSignType(
        id="body_temperature",
        name="body_temperature",
        display_name="Body Temperature",
        unit_primary="°C",
        unit_secondary="°F",
        normal_range_min=36.1,
        normal_range_max=37.2,
        warning_range_min=35.0,
        warning_range_max=39.0,
        min_value=30.0,
        max_value=45.0,
    ),
]


class TypeCatalog:
    """
    Immutable, in-memory lookup of vital sign types by id and by name.

    Every type is range-checked on construction, so a misconfigured type
    fails at startup rather than during analysis.
    """

    def __init__(self, types: Optional[Iterable[VitalSignType]] = None):
        """
        Build the catalog.

        Args:
            types: Types to serve; defaults to DEFAULT_VITAL_SIGN_TYPES

        Raises:
            InvalidRangeConfigurationError: If any type's ranges are inconsistent
        """
        self._by_id: Dict[str, VitalSignType] = {}
        self._by_name: Dict[str, VitalSignType] = {}
        for vital_sign_type in (DEFAULT_VITAL_SIGN_TYPES if types is None else types):
            vital_sign_type.check_ranges()
            self._by_id[vital_sign_type.id] = vital_sign_type
            self._by_name[vital_sign_type.name] = vital_sign_type
        logger.debug(f"Loaded {len(self._by_id)} vital sign types")

    @classmethod
    def from_repository(cls, repository) -> "TypeCatalog":
        """Snapshot every type a repository knows about."""
        return cls(repository.list_vital_sign_types())

    def fetch_vital_sign_type(self, type_id: str) -> VitalSignType:
        """
        Resolve a type by id, falling back to its name.

        Raises:
            VitalSignTypeNotFoundError: If neither matches
        """
        found = self._by_id.get(type_id) or self._by_name.get(type_id)
        if found is None:
            raise VitalSignTypeNotFoundError(type_id)
        return found

    def list_vital_sign_types(self) -> List[VitalSignType]:
        return list(self._by_id.values())

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._by_id or type_id in self._by_name

    def __len__(self) -> int:
        return len(self._by_id)
