from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FieldKind(str, Enum):
    IDENTIFIER = "identifier"
    COUNT = "count"
    RATE = "rate"


@dataclass(frozen=True)
class FieldSpec:
    logical_name: str
    source_code: str
    kind: FieldKind
    # Rate fields only: the count field used as the national weighting.
    weight: str | None = None


@dataclass(frozen=True)
class AggregateSpec:
    """A count assembled by summing several per-bucket source columns."""

    logical_name: str
    source_codes: tuple[str, ...]


@dataclass(frozen=True)
class ExtractSpec:
    name: str
    fields: tuple[FieldSpec, ...] = ()
    aggregates: tuple[AggregateSpec, ...] = ()

    @property
    def source_codes(self) -> list[str]:
        codes = [f.source_code for f in self.fields if f.kind is not FieldKind.IDENTIFIER]
        for agg in self.aggregates:
            codes.extend(agg.source_codes)
        return codes


@dataclass(frozen=True)
class PercentSpec:
    logical_name: str
    numerator: str
    denominator: str


@dataclass(frozen=True)
class ComplementSpec:
    logical_name: str
    primary: str


NAME = "Name"
NATIONAL_NAME = "United States"
CUMULATIVE_FIELD = "CumulativeShare"
PRIMARY_FIELD = "HispanicPop"
DEFAULT_THRESHOLD = 0.80

NAME_FIELD = FieldSpec(NAME, "NAME", FieldKind.IDENTIFIER)


def _codes(table: str, numbers: range) -> tuple[str, ...]:
    return tuple(f"{table}_{n:03d}E" for n in numbers)


DEMOGRAPHICS = ExtractSpec(
    name="demographics",
    fields=(
        NAME_FIELD,
        FieldSpec("HispanicPop", "B03001_003E", FieldKind.COUNT),
        FieldSpec("TotalPop", "B01003_001E", FieldKind.COUNT),
        FieldSpec("SpanishPop", "C16001_003E", FieldKind.COUNT),
        FieldSpec("MedianIncome", "B19013_001E", FieldKind.RATE, weight="TotalHouseholds"),
        FieldSpec("AvgHouseholdSize", "B25010_001E", FieldKind.RATE, weight="TotalHouseholds"),
        FieldSpec("TotalHouseholds", "B11001_001E", FieldKind.COUNT),
        FieldSpec("HispanicMedianIncome", "B19013I_001E", FieldKind.RATE, weight="HispanicPop"),
        FieldSpec("HispanicHHSize", "B25010I_001E", FieldKind.RATE, weight="HispanicPop"),
    ),
)

# Male and female 18-64 buckets of the sex-by-age tables.
AGE_18_64 = ExtractSpec(
    name="age_18_64",
    fields=(NAME_FIELD,),
    aggregates=(
        AggregateSpec("Pop18To64", _codes("B01001", range(7, 20)) + _codes("B01001", range(31, 44))),
    ),
)

HISPANIC_AGE_18_64 = ExtractSpec(
    name="hispanic_age_18_64",
    fields=(NAME_FIELD,),
    aggregates=(
        AggregateSpec("Hispanic18To64", _codes("B01001I", range(7, 14)) + _codes("B01001I", range(22, 29))),
    ),
)

SPANISH_18_64 = ExtractSpec(
    name="spanish_18_64",
    fields=(NAME_FIELD, FieldSpec("Spanish18To64", "B16004_026E", FieldKind.COUNT)),
)

EXTRACTS: tuple[ExtractSpec, ...] = (DEMOGRAPHICS, AGE_18_64, HISPANIC_AGE_18_64, SPANISH_18_64)

PERCENTAGES: tuple[PercentSpec, ...] = (
    PercentSpec("HispanicPct", "HispanicPop", "TotalPop"),
    PercentSpec("SpanishPct", "SpanishPop", "TotalPop"),
    PercentSpec("Pop18To64Pct", "Pop18To64", "TotalPop"),
    PercentSpec("Hispanic18To64Pct", "Hispanic18To64", "HispanicPop"),
    PercentSpec("HispanicShareOf18To64", "Hispanic18To64", "Pop18To64"),
    PercentSpec("Spanish18To64Pct", "Spanish18To64", "Pop18To64"),
)

COMPLEMENTS: tuple[ComplementSpec, ...] = (ComplementSpec("NonHispanicPct", "HispanicPct"),)


def all_fields(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> list[FieldSpec]:
    """Every non-identifier field across *extracts*, aggregates included as counts."""
    out: list[FieldSpec] = []
    for extract in extracts:
        out.extend(f for f in extract.fields if f.kind is not FieldKind.IDENTIFIER)
        out.extend(FieldSpec(a.logical_name, "+".join(a.source_codes), FieldKind.COUNT) for a in extract.aggregates)
    return out


def count_fields(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> list[str]:
    return [f.logical_name for f in all_fields(extracts) if f.kind is FieldKind.COUNT]


def rate_fields(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> list[FieldSpec]:
    return [f for f in all_fields(extracts) if f.kind is FieldKind.RATE]


def output_columns(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> list[str]:
    cols = [NAME] + [f.logical_name for f in all_fields(extracts)]
    cols += [p.logical_name for p in PERCENTAGES] + [c.logical_name for c in COMPLEMENTS]
    return cols


def request_codes(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> list[str]:
    """Source codes for one combined request, first-seen order, NAME excluded."""
    seen: set[str] = set()
    codes: list[str] = []
    for extract in extracts:
        for code in extract.source_codes:
            if code not in seen:
                seen.add(code)
                codes.append(code)
    return codes


def validate_catalog(extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> None:
    names = [f.logical_name for f in all_fields(extracts)]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate logical field names in catalog: {duplicates}")

    for extract in extracts:
        codes = extract.source_codes
        if len(codes) != len(set(codes)):
            raise ValueError(f"Duplicate source codes in extract '{extract.name}'")

    counts = set(count_fields(extracts))
    for spec in rate_fields(extracts):
        if spec.weight not in counts:
            raise ValueError(f"Rate field '{spec.logical_name}' needs a count weight, got {spec.weight!r}")

    known = set(names)
    for pct in PERCENTAGES:
        missing = {pct.numerator, pct.denominator} - known
        if missing:
            raise ValueError(f"Percentage '{pct.logical_name}' refers to unknown fields: {sorted(missing)}")


validate_catalog()
