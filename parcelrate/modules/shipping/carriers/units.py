"""
Weight and dimension conversion shared by all carriers.

Weights pivot through kilograms so any pair of units converts with one
table lookup each way.
"""

KG_PER_UNIT = {
    "kg": 1.0,
    "lb": 0.45359237,
    "oz": 0.0283495,
}

CM_PER_UNIT = {
    "cm": 1.0,
    "in": 2.54,
}

WEIGHT_UNITS = tuple(KG_PER_UNIT)
DIMENSION_UNITS = tuple(CM_PER_UNIT)


def convert_weight(value: float, from_unit: str, to_unit: str) -> float:
    """Convert a weight between kg, lb and oz."""
    from_unit, to_unit = from_unit.lower(), to_unit.lower()
    if from_unit not in KG_PER_UNIT or to_unit not in KG_PER_UNIT:
        raise ValueError(f"Unsupported weight conversion: {from_unit} -> {to_unit}")
    if from_unit == to_unit:
        return value
    return value * KG_PER_UNIT[from_unit] / KG_PER_UNIT[to_unit]


def convert_dimension(value: float, from_unit: str, to_unit: str) -> float:
    """Convert a length between cm and in."""
    from_unit, to_unit = from_unit.lower(), to_unit.lower()
    if from_unit not in CM_PER_UNIT or to_unit not in CM_PER_UNIT:
        raise ValueError(f"Unsupported dimension conversion: {from_unit} -> {to_unit}")
    if from_unit == to_unit:
        return value
    return value * CM_PER_UNIT[from_unit] / CM_PER_UNIT[to_unit]
