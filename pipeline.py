from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

import numpy as np
import pandas as pd

from census_client import CensusClient, RawExtract
from fields import (
    COMPLEMENTS,
    CUMULATIVE_FIELD,
    DEFAULT_THRESHOLD,
    EXTRACTS,
    NAME,
    NATIONAL_NAME,
    PERCENTAGES,
    PRIMARY_FIELD,
    ExtractSpec,
    FieldKind,
    count_fields,
    output_columns,
    rate_fields,
    request_codes,
)
from narrative import NarrativeGenerator, NullNarrator, build_summary
from reporting import build_figures, export_png_pack, save_outputs
from settings import Settings

logger = logging.getLogger(__name__)

ANALYSIS_ERROR_PREFIX = "Error generating analysis: "


class Narrator(Protocol):
    def generate(self, summary: list[dict[str, Any]]) -> str: ...


@dataclass
class PipelineResult:
    dataset: pd.DataFrame
    analysis: str
    logs: dict[str, Any] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _to_number(series: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(series, errors="coerce").astype("float64")
    return numeric.mask(np.isinf(numeric))


# ============================================================================
# Ingestion
# ============================================================================


def ingest_extract(raw: RawExtract, spec: ExtractSpec) -> tuple[pd.DataFrame, dict[str, int]]:
    """Map one raw table onto the logical fields of *spec*.

    Columns are looked up by source code, never by position. Unparseable
    numeric cells become NaN and are tallied per field; aggregate columns
    treat them as zero.
    """
    frame = pd.DataFrame(raw.rows, columns=raw.columns, dtype="object")
    columns = list(frame.columns)
    out = pd.DataFrame(index=frame.index)
    unparsed: dict[str, int] = {}

    for spec_field in spec.fields:
        col = spec_field.source_code if spec_field.source_code in columns else None
        if spec_field.kind is FieldKind.IDENTIFIER:
            if col is None:
                raise KeyError(f"Extract '{spec.name}' has no identifier column '{spec_field.source_code}'")
            out[spec_field.logical_name] = frame[col]
            continue
        if col is None:
            logger.warning("Extract '%s' is missing column %s", spec.name, spec_field.source_code)
            out[spec_field.logical_name] = np.nan
            unparsed[spec_field.logical_name] = len(frame)
            continue
        values = _to_number(frame[col])
        out[spec_field.logical_name] = values
        bad = int(values.isna().sum())
        if bad:
            unparsed[spec_field.logical_name] = bad

    for agg in spec.aggregates:
        present = [c for c in agg.source_codes if c in columns]
        missing = len(agg.source_codes) - len(present)
        if missing:
            logger.warning("Extract '%s' is missing %d of the columns summed into %s", spec.name, missing, agg.logical_name)
        parts = pd.DataFrame({c: _to_number(frame[c]) for c in present}, index=frame.index)
        bad = int(parts.isna().to_numpy().sum())
        if bad:
            unparsed[agg.logical_name] = bad
        out[agg.logical_name] = parts.fillna(0).sum(axis=1).astype("float64")

    out = out[out[NAME].notna()]
    dupes = int(out[NAME].duplicated().sum())
    if dupes:
        logger.warning("Extract '%s' repeats %d region names; keeping first occurrence", spec.name, dupes)
        out = out.drop_duplicates(subset=[NAME], keep="first")
    return out.reset_index(drop=True), unparsed


# ============================================================================
# Merge & derive
# ============================================================================


def merge_extracts(frames: Iterable[pd.DataFrame], key: str = NAME) -> pd.DataFrame:
    """Full outer join of per-extract frames on *key*.

    A field asserted by more than one frame keeps the first non-null value.
    Rows come back ordered by key so the result does not depend on the
    order extracts arrived in.
    """
    frames = list(frames)
    if not frames:
        return pd.DataFrame(columns=[key])

    merged = frames[0].copy()
    for frame in frames[1:]:
        merged = merged.merge(frame, on=key, how="outer", suffixes=("", "__dup"))
        for dup in [c for c in merged.columns if c.endswith("__dup")]:
            base = dup[: -len("__dup")]
            merged[base] = merged[base].combine_first(merged[dup])
            merged = merged.drop(columns=dup)

    for col in merged.columns:
        if col != key:
            merged[col] = pd.to_numeric(merged[col], errors="coerce").astype("float64")
    return merged.sort_values(key, kind="stable").reset_index(drop=True)


def _column(frame: pd.DataFrame, name: str) -> pd.Series:
    if name in frame.columns:
        return frame[name]
    return pd.Series(np.nan, index=frame.index, dtype="float64")


def percentage(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """numerator / denominator * 100, NaN wherever the denominator is not positive."""
    return numerator.div(denominator.where(denominator > 0)) * 100


def derive_percentages(frame: pd.DataFrame) -> pd.DataFrame:
    out = frame.copy()
    for pct in PERCENTAGES:
        out[pct.logical_name] = percentage(_column(out, pct.numerator), _column(out, pct.denominator))
    for comp in COMPLEMENTS:
        out[comp.logical_name] = 100 - _column(out, comp.primary)
    return out


def weighted_average(values: Iterable[Any], weights: Iterable[Any]) -> float | None:
    """Sum(v * w) / Sum(w) over pairs where both sides are present.

    Returns None when the usable weight total is not positive.
    """
    v = pd.to_numeric(pd.Series(list(values), dtype="object"), errors="coerce").astype("float64")
    w = pd.to_numeric(pd.Series(list(weights), dtype="object"), errors="coerce").astype("float64")
    if len(v) != len(w):
        raise ValueError(f"values and weights differ in length ({len(v)} vs {len(w)})")
    usable = v.notna() & w.notna()
    total_weight = float(w[usable].sum())
    if total_weight <= 0:
        return None
    return float((v[usable] * w[usable]).sum() / total_weight)


def build_national_row(regions: pd.DataFrame, extracts: tuple[ExtractSpec, ...] = EXTRACTS) -> pd.DataFrame:
    """One-row frame holding summed counts, weighted rates and their percentages."""
    row: dict[str, Any] = {NAME: NATIONAL_NAME}
    for col in count_fields(extracts):
        row[col] = float(_column(regions, col).fillna(0).sum())
    for spec in rate_fields(extracts):
        avg = weighted_average(_column(regions, spec.logical_name), _column(regions, spec.weight or ""))
        row[spec.logical_name] = np.nan if avg is None else avg
    return derive_percentages(pd.DataFrame([row]))


def build_regions(
    raw: RawExtract, extracts: tuple[ExtractSpec, ...] = EXTRACTS
) -> tuple[pd.DataFrame, dict[str, int]]:
    frames = []
    unparsed: dict[str, int] = {}
    for spec in extracts:
        frame, bad = ingest_extract(raw, spec)
        frames.append(frame)
        unparsed.update(bad)
    regions = derive_percentages(merge_extracts(frames))
    regions = regions[regions[NAME] != NATIONAL_NAME].reset_index(drop=True)
    return regions, unparsed


# ============================================================================
# Ranking & cumulative selection
# ============================================================================


def rank_regions(regions: pd.DataFrame, primary: str = PRIMARY_FIELD) -> pd.DataFrame:
    """Descending by *primary* (missing counts as 0); ties keep input order."""
    key = -_column(regions, primary).fillna(0).to_numpy()
    order = np.argsort(key, kind="stable")
    return regions.iloc[order].reset_index(drop=True)


def select_cumulative_share(
    regions: pd.DataFrame, primary: str = PRIMARY_FIELD, threshold: float = DEFAULT_THRESHOLD
) -> pd.DataFrame:
    """Ranked prefix of *regions* covering *threshold* of the primary total.

    A region is admitted while the running share of the regions before it is
    still within the threshold, so the last admitted region can carry the
    share past it.
    """
    ranked = rank_regions(regions, primary)
    counts = _column(ranked, primary).fillna(0)
    total = float(counts.sum())

    admitted: list[int] = []
    shares: list[float] = []
    cumulative = 0.0
    if total > 0:
        for idx, count in counts.items():
            if cumulative / total > threshold:
                break
            cumulative += float(count)
            admitted.append(idx)
            shares.append(cumulative / total)
    else:
        logger.warning("Total %s is %s; no regions selected", primary, total)

    selected = ranked.loc[admitted].copy()
    selected[CUMULATIVE_FIELD] = pd.Series(shares, index=selected.index, dtype="float64")
    return selected.reset_index(drop=True)


def assemble_dataset(
    national: pd.DataFrame, selected: pd.DataFrame, extracts: tuple[ExtractSpec, ...] = EXTRACTS
) -> pd.DataFrame:
    national = national.copy()
    national[CUMULATIVE_FIELD] = np.nan
    columns = output_columns(extracts) + [CUMULATIVE_FIELD]
    frames = [national.reindex(columns=columns)]
    if not selected.empty:
        frames.append(selected.reindex(columns=columns))
    return pd.concat(frames, ignore_index=True)


def build_dataset(
    raw: RawExtract,
    *,
    extracts: tuple[ExtractSpec, ...] = EXTRACTS,
    primary: str = PRIMARY_FIELD,
    threshold: float = DEFAULT_THRESHOLD,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    regions, unparsed = build_regions(raw, extracts)
    national = build_national_row(regions, extracts)
    selected = select_cumulative_share(regions, primary=primary, threshold=threshold)
    dataset = assemble_dataset(national, selected, extracts)
    logs = {
        "regions": len(regions),
        "selected_regions": len(selected),
        "threshold": threshold,
        "primary_field": primary,
        "unparsed_cells": unparsed,
        "final_share": float(selected[CUMULATIVE_FIELD].iloc[-1]) if not selected.empty else None,
    }
    return dataset, logs


# ============================================================================
# Full run
# ============================================================================


def build_client(settings: Settings) -> CensusClient:
    return CensusClient(
        settings.census_api_key,
        year=settings.census_year,
        dataset=settings.census_dataset,
        timeout=settings.http_timeout_seconds,
        retries=settings.http_retries,
    )


def build_narrator(settings: Settings) -> Narrator:
    if not settings.narrative_enabled:
        return NullNarrator()
    return NarrativeGenerator(model=settings.narrative_model)


def run_pipeline(
    client: CensusClient,
    narrator: Narrator,
    *,
    extracts: tuple[ExtractSpec, ...] = EXTRACTS,
    primary: str = PRIMARY_FIELD,
    threshold: float = DEFAULT_THRESHOLD,
    region_scope: str = "state:*",
) -> PipelineResult:
    """Fetch, derive, select and narrate. Only fetch failures propagate."""
    started = time.monotonic()
    raw = client.fetch_extract(request_codes(extracts), region_scope=region_scope)
    dataset, logs = build_dataset(raw, extracts=extracts, primary=primary, threshold=threshold)
    logger.info("Dataset built: %d regions, %d selected", logs["regions"], logs["selected_regions"])

    try:
        analysis = narrator.generate(build_summary(dataset))
    except Exception as exc:
        logger.exception("Narrative generation failed")
        analysis = ANALYSIS_ERROR_PREFIX + str(exc)
        logs["narrative_error"] = str(exc)

    logs["duration_seconds"] = round(time.monotonic() - started, 3)
    return PipelineResult(dataset=dataset, analysis=analysis, logs=logs)


def _print_acceptance_logs(logs: dict[str, Any]) -> None:
    print(f"Regions in extract: {logs['regions']}")
    print(
        f"Regions covering {logs['threshold']:.0%} of {logs['primary_field']}: {logs['selected_regions']}"
        + (f" (cumulative share {logs['final_share']:.2%})" if logs.get("final_share") is not None else "")
    )
    if logs["unparsed_cells"]:
        print("Cells that did not parse as numbers:")
        for name, count in sorted(logs["unparsed_cells"].items()):
            print(f"- {name}: {count}")
    if logs.get("narrative_error"):
        print(f"Narrative generation failed: {logs['narrative_error']}")
    if logs.get("output_files"):
        print("Written files:")
        for path in logs["output_files"]:
            print(f"- {path}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Census Hispanic market pipeline")
    parser.add_argument("--threshold", type=float, default=None, help="Cumulative share of the primary count to cover")
    parser.add_argument("--scope", type=str, default=None, help="Census 'for' geography, e.g. 'state:*'")
    parser.add_argument("--out-dir", type=str, default="output", help="Directory for CSV/Excel outputs")
    parser.add_argument("--no-narrative", action="store_true", help="Skip the text-generation call")
    parser.add_argument("--export-charts", action="store_true", help="Export PNG chart pack")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args()
    settings = Settings.from_env()

    client = build_client(settings)
    narrator = NullNarrator() if args.no_narrative else build_narrator(settings)

    result = run_pipeline(
        client,
        narrator,
        threshold=args.threshold if args.threshold is not None else settings.threshold,
        region_scope=args.scope or settings.region_scope,
    )

    print("Sample data:")
    print(result.dataset[[NAME, PRIMARY_FIELD, "HispanicPct"]].head(3).to_string(index=False))
    print("\nAnalysis:\n" + result.analysis + "\n")

    files = save_outputs(result.dataset, result.analysis, out_dir=args.out_dir)
    result.logs["output_files"] = list(files.values())
    if args.export_charts:
        result.logs["output_files"] += export_png_pack(build_figures(result.dataset), out_dir=f"{args.out_dir}/charts")
    _print_acceptance_logs(result.logs)


if __name__ == "__main__":
    main()
