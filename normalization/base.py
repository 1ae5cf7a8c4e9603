"""Batch normalization of raw platform records.

Each platform module registers one function per record kind that maps a raw
record to its canonical model. A function signals a bad record by raising
NormalizationWarning; the batch skips that record, keeps the warning and
carries on with the rest.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core.config import StoreConfig
from core.errors import NormalizationWarning
from core.models import CanonicalBase
from core.observability import get_logger, get_metrics

logger = get_logger(__name__)

RecordKind = str  # "orders" | "products" | "customers"
Normalizer = Callable[[Dict[str, Any], StoreConfig], CanonicalBase]

_normalizers: Dict[Tuple[str, RecordKind], Normalizer] = {}


def register_normalizer(platform_type: str, kind: RecordKind):
    """Decorator to register the normalizer of one record kind."""
    def decorator(func: Normalizer) -> Normalizer:
        _normalizers[(platform_type, kind)] = func
        return func
    return decorator


def get_normalizer(platform_type: str, kind: RecordKind) -> Normalizer:
    try:
        return _normalizers[(platform_type, kind)]
    except KeyError:
        raise KeyError(f"No {kind} normalizer registered for platform {platform_type!r}")


@dataclass
class NormalizationResult:
    """Canonical records of one batch plus the warnings of skipped records."""
    records: List[CanonicalBase] = field(default_factory=list)
    warnings: List[NormalizationWarning] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def normalize_batch(
    kind: RecordKind,
    raw_records: Iterable[Dict[str, Any]],
    store: StoreConfig,
) -> NormalizationResult:
    """Normalize a page of raw records, skipping the ones that fail.

    Args:
        kind: "orders", "products" or "customers"
        raw_records: Raw records as returned by the adapter
        store: Store the records belong to

    Returns:
        NormalizationResult with records in source order
    """
    normalize = get_normalizer(store.platform_type, kind)
    result = NormalizationResult()

    for raw in raw_records:
        try:
            result.records.append(normalize(raw, store))
        except NormalizationWarning as warning:
            result.warnings.append(warning)
        except ValidationError as e:
            result.warnings.append(NormalizationWarning(_describe(e), record_id=_raw_id(raw)))

    if result.warnings:
        get_metrics().record_records_skipped(kind, len(result.warnings))
        for warning in result.warnings:
            logger.warning(
                f"Skipped {kind[:-1]} {warning}",
                extra_fields={"record_id": warning.record_id, "reason": warning.reason},
            )

    return result


# =============================================================================
# Helpers shared by platform normalizers
# =============================================================================

def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"invalid {location}: {first.get('msg')}" if location else str(first.get("msg"))


def _raw_id(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    for key in ("id", "OrderID", "ItemID"):
        value = raw.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def require_id(raw: Any, key: str) -> str:
    """The record's external id as a string.

    Raises:
        NormalizationWarning: Record is not an object or the id is missing
    """
    if not isinstance(raw, dict):
        raise NormalizationWarning(f"expected an object, got {type(raw).__name__}")
    value = raw.get(key)
    if value in (None, ""):
        raise NormalizationWarning(f"missing {key}")
    return str(value)


def text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def collect_extra(raw: Dict[str, Any], modeled: Iterable[str]) -> Dict[str, Any]:
    """Top-level scalar fields the canonical record does not model."""
    modeled = set(modeled)
    return {
        key: value
        for key, value in raw.items()
        if key not in modeled and isinstance(value, (str, int, float, bool))
    }
