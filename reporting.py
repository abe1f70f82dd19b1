from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import plotly.io as pio

from fields import CUMULATIVE_FIELD, NAME, NATIONAL_NAME, PRIMARY_FIELD

COUNT_FIELDS = ["HispanicPop", "SpanishPop", "TotalPop", "TotalHouseholds", "Pop18To64", "Hispanic18To64", "Spanish18To64"]
PERCENT_FIELDS = [
    "HispanicPct",
    "SpanishPct",
    "NonHispanicPct",
    "Pop18To64Pct",
    "Hispanic18To64Pct",
    "HispanicShareOf18To64",
    "Spanish18To64Pct",
]
CURRENCY_FIELDS = ["MedianIncome", "HispanicMedianIncome"]
HOUSEHOLD_SIZE_FIELDS = ["AvgHouseholdSize", "HispanicHHSize"]

DISPLAY_HEADERS = {
    NAME: "State",
    "HispanicPop": "Hispanic Population",
    "HispanicPct": "Hispanic %",
    "SpanishPop": "Spanish Speakers",
    "SpanishPct": "Spanish %",
    "NonHispanicPct": "Non-Hispanic %",
    "TotalPop": "Total Population",
    "TotalHouseholds": "Total Households",
    "Pop18To64": "Population 18-64",
    "Hispanic18To64": "Hispanic 18-64",
    "Spanish18To64": "Spanish Speakers 18-64",
    "MedianIncome": "Median Income",
    "AvgHouseholdSize": "Avg Household Size",
    "HispanicMedianIncome": "Hispanic Median Income",
    "HispanicHHSize": "Hispanic Household Size",
    "Hispanic18To64Pct": "Hispanic 18-64 %",
    "Pop18To64Pct": "Population 18-64 %",
    "HispanicShareOf18To64": "Hispanic Share of 18-64",
    "Spanish18To64Pct": "Spanish Speakers 18-64 %",
    CUMULATIVE_FIELD: "Cumulative Hispanic Share",
}

PNG_ORDER = [
    "01_hispanic_population_by_state",
    "02_cumulative_share",
    "03_working_age_shares",
]

PALETTE = {
    "navy": "#1F3A5F",
    "teal": "#2A9D8F",
    "amber": "#E9C46A",
    "coral": "#E76F51",
    "slate": "#505759",
    "light_grey": "#919D9D",
    "bg": "#F7F9FB",
    "grid": "#E6E9EF",
}


def _register_template() -> None:
    pio.templates["census_modern"] = go.layout.Template(
        layout=go.Layout(
            paper_bgcolor=PALETTE["bg"],
            plot_bgcolor=PALETTE["bg"],
            colorway=[PALETTE["navy"], PALETTE["teal"], PALETTE["amber"], PALETTE["coral"]],
            margin=dict(l=40, r=20, t=55, b=40),
            title=dict(x=0.02, xanchor="left"),
            xaxis=dict(showgrid=True, gridcolor=PALETTE["grid"], zeroline=False, linecolor=PALETTE["grid"]),
            yaxis=dict(showgrid=True, gridcolor=PALETTE["grid"], zeroline=False, linecolor=PALETTE["grid"]),
            legend=dict(bgcolor="rgba(255,255,255,0.6)", bordercolor="rgba(0,0,0,0)", borderwidth=0),
        )
    )
    pio.templates.default = "census_modern"


_register_template()


def _round_or_none(value: Any, fmt: str) -> str | None:
    if value is None or pd.isna(value):
        return None
    return fmt.format(value)


def format_for_display(dataset: pd.DataFrame) -> pd.DataFrame:
    """String-formatted copy for tables and spreadsheets; missing values stay None."""
    out = dataset.copy().astype("object")
    for col in COUNT_FIELDS:
        if col in out.columns:
            out[col] = out[col].map(lambda v: _round_or_none(v, "{:,.0f}"))
    for col in PERCENT_FIELDS:
        if col in out.columns:
            out[col] = out[col].map(lambda v: _round_or_none(v, "{:.2f}%"))
    for col in CURRENCY_FIELDS:
        if col in out.columns:
            out[col] = out[col].map(lambda v: _round_or_none(v, "${:,.0f}"))
    for col in HOUSEHOLD_SIZE_FIELDS:
        if col in out.columns:
            out[col] = out[col].map(lambda v: _round_or_none(v, "{:.2f}"))
    if CUMULATIVE_FIELD in out.columns:
        out[CUMULATIVE_FIELD] = out[CUMULATIVE_FIELD].map(lambda v: _round_or_none(None if v is None else v * 100, "{:.2f}%"))
    return out


def to_records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    """JSON-ready rows: NaN becomes None, numpy scalars become Python ones."""
    clean = frame.astype("object").where(frame.notna(), None)
    return [{k: (v.item() if hasattr(v, "item") else v) for k, v in row.items()} for row in clean.to_dict(orient="records")]


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def save_outputs(dataset: pd.DataFrame, analysis: str, out_dir: str = "output") -> dict[str, str]:
    output = Path(out_dir)
    output.mkdir(parents=True, exist_ok=True)
    stamp = _timestamp()
    csv_path = output / f"hispanic_stats_{stamp}.csv"
    excel_path = output / f"hispanic_stats_with_summary_{stamp}.xlsx"

    display = format_for_display(dataset)
    display.rename(columns=DISPLAY_HEADERS).to_csv(csv_path, index=False)

    with pd.ExcelWriter(excel_path) as writer:
        display.rename(columns=DISPLAY_HEADERS).to_excel(writer, sheet_name="State Stats", index=False)
        pd.DataFrame({"Analysis": [analysis]}).to_excel(writer, sheet_name="Analysis", index=False)

    return {"csv": str(csv_path), "excel": str(excel_path)}


def to_csv_bytes(dataset: pd.DataFrame) -> bytes:
    return format_for_display(dataset).rename(columns=DISPLAY_HEADERS).to_csv(index=False).encode("utf-8")


def _empty_figure(title: str) -> go.Figure:
    fig = go.Figure()
    fig.add_annotation(text="No regions selected", showarrow=False, x=0.5, y=0.5, font=dict(color=PALETTE["slate"]))
    fig.update_layout(title=title, xaxis_visible=False, yaxis_visible=False, template="census_modern")
    return fig


def build_figures(dataset: pd.DataFrame) -> dict[str, go.Figure]:
    _register_template()
    regions = dataset[dataset[NAME] != NATIONAL_NAME]
    figures: dict[str, go.Figure] = {}

    if regions.empty:
        for key, title in [
            ("01_hispanic_population_by_state", "Hispanic population by state"),
            ("02_cumulative_share", "Cumulative share of Hispanic population"),
            ("03_working_age_shares", "Working-age (18-64) shares"),
        ]:
            figures[key] = _empty_figure(title)
        return figures

    figures["01_hispanic_population_by_state"] = px.bar(
        regions,
        x=NAME,
        y=PRIMARY_FIELD,
        title="Hispanic population by state",
        labels={NAME: "State", PRIMARY_FIELD: "Hispanic population"},
        color_discrete_sequence=[PALETTE["navy"]],
        category_orders={NAME: regions[NAME].astype(str).tolist()},
    )
    figures["01_hispanic_population_by_state"].update_traces(marker_line_width=0)

    cumulative = regions.assign(CumulativePct=regions[CUMULATIVE_FIELD] * 100)
    figures["02_cumulative_share"] = px.line(
        cumulative,
        x=NAME,
        y="CumulativePct",
        markers=True,
        title="Cumulative share of Hispanic population",
        labels={NAME: "State", "CumulativePct": "Cumulative share (%)"},
        color_discrete_sequence=[PALETTE["teal"]],
    )

    shares = regions[[NAME, "HispanicShareOf18To64", "Spanish18To64Pct"]].melt(
        id_vars=NAME, var_name="Metric", value_name="Pct"
    )
    shares["Metric"] = shares["Metric"].map(DISPLAY_HEADERS)
    figures["03_working_age_shares"] = px.bar(
        shares,
        x=NAME,
        y="Pct",
        color="Metric",
        barmode="group",
        title="Working-age (18-64) shares",
        labels={NAME: "State", "Pct": "% of population 18-64"},
        color_discrete_sequence=[PALETTE["amber"], PALETTE["coral"]],
    )

    for fig in figures.values():
        fig.update_layout(template="census_modern")
        fig.update_xaxes(type="category", tickangle=-30)
    return figures


def export_png_pack(
    figures: dict[str, go.Figure],
    out_dir: str = "output/charts",
    width: int = 2000,
    height: int = 1000,
    scale: int = 2,
) -> list[str]:
    _register_template()
    output = Path(out_dir)
    output.mkdir(parents=True, exist_ok=True)

    written: list[str] = []
    try:
        for chart_name in PNG_ORDER:
            fig = figures.get(chart_name)
            if fig is None:
                continue
            path = output / f"{chart_name}.png"
            fig.write_image(path, width=width, height=height, scale=scale)
            written.append(str(path))
    except Exception as exc:  # pragma: no cover - environment dependent
        raise RuntimeError(
            "PNG export failed. Ensure kaleido is installed and Chrome is available for static image rendering."
        ) from exc

    return written
