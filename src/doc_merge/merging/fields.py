import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .errors import MissingFieldsError

logger = logging.getLogger(__name__)


def flatten_keys(data: Mapping[str, object] | None, prefix: str = "") -> list[str]:
    """Return the dot-paths of every leaf in a nested mapping.

    Nested mappings are descended into; everything else, lists included, is a
    leaf addressed by its own dot-path. ``{"client": {"name": "X"}, "items": [1]}``
    flattens to ``["client.name", "items"]``.
    """
    out: list[str] = []
    for key, value in (data or {}).items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            out.extend(flatten_keys(value, path))
        else:
            out.append(path)
    return out


@dataclass(frozen=True)
class FieldReport:
    missing: list[str]
    extra: list[str]

    @property
    def ok(self) -> bool:
        return not self.missing


def check_fields(declared: Iterable[str], data: Mapping[str, object] | None) -> FieldReport:
    allowed = set(declared)
    provided = flatten_keys(data)
    provided_set = set(provided)
    extra = [k for k in provided if k not in allowed]
    missing = sorted(k for k in allowed if k not in provided_set)
    return FieldReport(missing=missing, extra=extra)


def validate_fields(declared: Iterable[str], data: Mapping[str, object] | None) -> FieldReport:
    """Raise MissingFieldsError when a declared placeholder has no value.

    Undeclared keys are only logged; templates may ignore context they do not use.
    """
    report = check_fields(declared, data)
    if report.extra:
        logger.warning("Unexpected fields in merge payload: %s", report.extra)
    if report.missing:
        raise MissingFieldsError(report.missing)
    return report
