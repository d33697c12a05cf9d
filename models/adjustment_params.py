from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
import math
import numbers
from typing import Tuple, Union

from models.errors import DomainError


class FilterType(str, Enum):
    NONE = "none"
    GRAYSCALE = "grayscale"
    SEPIA = "sepia"
    INVERT = "invert"
    POSTERIZE = "posterize"


FILTER_CHOICES: Tuple[FilterType, ...] = tuple(FilterType)


@dataclass(frozen=True)
class ControlSpec:
    """Declared domain and slider granularity of one numeric adjustment."""
    field: str
    label: str
    minimum: float
    maximum: float
    step: float
    default: float
    group: str  # "basic" or "effects" tab

    @property
    def integral(self) -> bool:
        return float(self.step).is_integer()


CONTROL_SPECS: Tuple[ControlSpec, ...] = (
    ControlSpec("brightness", "Brightness", 0, 200, 1, 100, "basic"),
    ControlSpec("contrast",   "Contrast",   0, 200, 1, 100, "basic"),
    ControlSpec("saturation", "Saturation", 0, 200, 1, 100, "basic"),
    ControlSpec("blur",       "Blur",       0, 20,  0.5, 0, "effects"),
)

_SPECS_BY_FIELD = {spec.field: spec for spec in CONTROL_SPECS}


@dataclass(frozen=True)
class AdjustmentParams:
    """
    Value-object fully describing one render request.
    Always fully populated; change one field with ``with_field``.
    """
    brightness: int = 100       # [0, 200]
    contrast:   int = 100       # [0, 200]
    saturation: int = 100       # [0, 200]
    blur:       float = 0.0     # [0, 20]
    filter:     FilterType = FilterType.NONE

    # ── Domain checks ────────────────────────────────────────────────
    @staticmethod
    def coerce(field: str, value) -> Union[int, float, FilterType]:
        """
        Validate *value* against *field*'s domain and return it in the
        field's canonical type. Out-of-domain values are rejected, never clamped.
        """
        if field == "filter":
            try:
                return FilterType(value)
            except ValueError as err:
                raise DomainError(field, value) from err

        spec = _SPECS_BY_FIELD.get(field)
        if spec is None:
            raise DomainError(field, value, f"Unknown adjustment field: {field!r}")
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise DomainError(field, value, f"{field} must be a number, got {type(value).__name__}")
        if math.isnan(value) or not spec.minimum <= value <= spec.maximum:
            raise DomainError(field, value)

        if spec.integral:
            if not float(value).is_integer():
                raise DomainError(field, value, f"{field} must be an integer, got {value!r}")
            return int(value)
        return float(value)

    def with_field(self, field: str, value) -> AdjustmentParams:
        """Return a copy with *field* replaced by the validated *value*."""
        return replace(self, **{field: self.coerce(field, value)})

    @property
    def is_neutral(self) -> bool:
        return self == NEUTRAL_PARAMS


NEUTRAL_PARAMS = AdjustmentParams()
