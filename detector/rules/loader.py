"""Load rule thresholds from YAML.

    burst:
      threshold: 5
    recurrence:
      threshold: 3
      window_seconds: 300

Either section may be omitted; the class defaults apply.
"""

from pathlib import Path

import yaml

from detector.rules import BurstRule, RecurrenceRule

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "thresholds.yml"

_SECTIONS = {"burst", "recurrence"}
_FIELDS = {"threshold", "window_seconds"}


def load_rules(path: str | Path = DEFAULT_RULES_PATH) -> tuple[BurstRule, RecurrenceRule]:
    """Parse *path* and return (burst_rule, recurrence_rule)."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Rules file not found: {path}")

    definition = _parse_and_validate(path)
    return (
        BurstRule(**definition.get("burst", {})),
        RecurrenceRule(**definition.get("recurrence", {})),
    )


def _parse_and_validate(path: Path) -> dict:
    with open(path) as f:
        definition = yaml.safe_load(f) or {}

    if not isinstance(definition, dict):
        raise ValueError(f"{path.name}: top level must be a mapping")

    for section, values in definition.items():
        if section not in _SECTIONS:
            raise ValueError(f"{path.name}: unknown section '{section}'")
        if not isinstance(values, dict):
            raise ValueError(f"{path.name}: section '{section}' must be a mapping")
        for field, value in values.items():
            if field not in _FIELDS:
                raise ValueError(f"{path.name}: {section}: unknown field '{field}'")
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(
                    f"{path.name}: {section}.{field} must be an integer"
                )

    return definition
