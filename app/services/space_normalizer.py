"""
Normalization of raw demographic (Space API) payloads.

Upstream fields are inconsistent: plain numbers, numeric strings and
pt-BR currency strings such as ``"1.234,56 MI"`` all show up. Everything
is coerced to a finite float here so that no ``NaN``/``Infinity`` ever
reaches a caller.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from app.models.domain import (
    AgeBandValue,
    CategoryValue,
    DemographicSnapshot,
    QueryPoint,
    SnapshotHead,
    SnapshotMeta,
    SnapshotTotals,
    SocialClassShare,
)

MILLIONS_SUFFIX = " MI"
UNKNOWN_LOCALITY = "Localização desconhecida"

# (field key, label, display order)
CONSUMPTION_CATEGORIES: Tuple[Tuple[str, str, int], ...] = (
    ("cons_1_food", "Alimentação", 1),
    ("cons_2_housing", "Habitação", 2),
    ("cons_3_clothing", "Vestuário", 3),
    ("cons_4_transport", "Transporte", 4),
    ("cons_5_hygiene_care", "Higiene & Cuidados", 5),
    ("cons_6_health", "Saúde", 6),
    ("cons_7_education", "Educação", 7),
    ("cons_8_recreation", "Lazer/Recreação", 8),
    ("cons_9_tobacco", "Fumo", 9),
    ("cons_10_personal_services", "Serviços Pessoais", 10),
    ("cons_12_others", "Outros", 12),
    ("cons_13_asset_increase", "Aumento de Ativos", 13),
    ("cons_14_liability_reduction", "Redução de Passivos", 14),
)

# (field key, class code)
SOCIAL_CLASSES: Tuple[Tuple[str, str], ...] = (
    ("class_a1", "A1"),
    ("class_a2", "A2"),
    ("class_b1", "B1"),
    ("class_b2", "B2"),
    ("class_c", "C"),
    ("class_d", "D"),
    ("class_e", "E"),
)

# (field key, label)
AGE_BANDS: Tuple[Tuple[str, str], ...] = (
    ("age_0_4", "0-4 anos"),
    ("age_5_9", "5-9 anos"),
    ("age_10_14", "10-14 anos"),
    ("age_15_19", "15-19 anos"),
    ("age_20_24", "20-24 anos"),
    ("age_25_29", "25-29 anos"),
    ("age_30_34", "30-34 anos"),
    ("age_35_39", "35-39 anos"),
    ("age_40_44", "40-44 anos"),
    ("age_45_49", "45-49 anos"),
    ("age_50_54", "50-54 anos"),
    ("age_55_59", "55-59 anos"),
    ("age_60_64", "60-64 anos"),
    ("age_65_plus", "65+ anos"),
)

TOTAL_FIELDS = ("cons_a_total", "cons_b_current", "cons_c_expenditure")

# Money amounts, which upstream may send as "1.234,56 MI"
CURRENCY_FIELDS = frozenset(
    ("income", "consumer")
    + TOTAL_FIELDS
    + tuple(key for key, _, _ in CONSUMPTION_CATEGORIES)
)


def _finite(value: float, fallback: float) -> float:
    return value if math.isfinite(value) else fallback


def parse_localized_number(text: str, fallback: float = 0.0) -> float:
    """
    Parse a pt-BR formatted amount.

    ``"1.234,56 MI"`` -> 1234560000.0: the " MI" suffix means millions, dots
    are thousands separators and the comma is the decimal mark.

    Some upstream notes quote 1234560 for that example, which does not
    follow the x1,000,000 rule. The rule is applied as written.
    """
    text = text.strip()
    multiplier = 1.0
    if text.upper().endswith(MILLIONS_SUFFIX):
        text = text[:-len(MILLIONS_SUFFIX)]
        multiplier = 1_000_000.0
    text = text.strip().replace(".", "").replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return fallback
    return _finite(number * multiplier, fallback)


def to_number(value: Any, fallback: float = 0.0, currency: bool = False) -> float:
    """
    Coerce a raw upstream value to a finite float, or ``fallback``.

    Only currency fields accept pt-BR strings, and only when they carry a
    decimal comma or the " MI" suffix; ``"2500.50"`` is 2500.5 everywhere.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        try:
            return _finite(float(value), fallback)
        except OverflowError:
            return fallback
    if isinstance(value, str):
        text = value.strip()
        if currency and ("," in text or text.upper().endswith(MILLIONS_SUFFIX)):
            return parse_localized_number(text, fallback)
        try:
            return _finite(float(text), fallback)
        except ValueError:
            return parse_localized_number(text, fallback) if currency else fallback
    return fallback


def to_percent(numerator: float, denominator: float) -> float:
    """Share of ``numerator`` in ``denominator`` as a percentage with one decimal."""
    if not denominator > 0:
        return 0.0
    pct = (numerator / denominator) * 100
    return round(pct, 1) if math.isfinite(pct) else 0.0


def _field(raw: Mapping[str, Any], key: str, fallback: float = 0.0) -> float:
    return to_number(raw.get(key), fallback, currency=key in CURRENCY_FIELDS)


def _sparse(items: List[Any], value_of: Callable[[Any], float]) -> List[Any]:
    return [item for item in items if value_of(item) > 0]


def normalize(
    raw: Mapping[str, Any],
    point: QueryPoint,
    *,
    synthetic: bool = False,
    fallback_reason: Optional[str] = None,
    fallbacks: Optional[Dict[str, float]] = None,
    received_at: Optional[datetime] = None,
) -> DemographicSnapshot:
    """Turn a raw demographic payload into a ``DemographicSnapshot``."""
    fallbacks = fallbacks or {}
    if not isinstance(raw, Mapping):
        raw = {}

    def field(key: str) -> float:
        return _field(raw, key, fallbacks.get(key, 0.0))

    people = field("people")
    income = field("income")
    consumer = field("consumer") or field("cons_a_total")

    density = None
    if people > 0 and point.radius_m > 0:
        density = float(round(people / ((point.radius_m / 1000) ** 2)))

    categories = _sparse(
        [
            CategoryValue(key=key, label=label, order=order, value=field(key))
            for key, label, order in CONSUMPTION_CATEGORIES
        ],
        lambda c: c.value,
    )

    households = {code: field(key) for key, code in SOCIAL_CLASSES}
    total_households = sum(households.values())
    classes = _sparse(
        [
            SocialClassShare(code=code, households=count, pct=to_percent(count, total_households))
            for code, count in households.items()
        ],
        lambda c: c.households,
    )

    age_bands = _sparse(
        [AgeBandValue(key=key, label=label, value=field(key)) for key, label in AGE_BANDS],
        lambda a: a.value,
    )

    muni = raw.get("muni")
    return DemographicSnapshot(
        head=SnapshotHead(
            muni=muni if isinstance(muni, str) and muni.strip() else UNKNOWN_LOCALITY,
            people=people,
            income=income,
            consumer=consumer,
            density=density,
        ),
        totals=SnapshotTotals(
            consumption_total=field("cons_a_total"),
            consumption_current=field("cons_b_current"),
            expenditure=field("cons_c_expenditure"),
        ),
        categories=categories,
        classes=classes,
        age_bands=age_bands or None,
        meta=SnapshotMeta(
            lat=point.lat,
            lng=point.lng,
            radius_m=point.radius_m,
            received_at=received_at or datetime.now(timezone.utc),
        ),
        synthetic=synthetic,
        fallback_reason=fallback_reason,
    )
