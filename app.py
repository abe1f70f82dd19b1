from __future__ import annotations

import io

import pandas as pd
import streamlit as st

from census_client import FetchError
from fields import NAME, NATIONAL_NAME
from reporting import DISPLAY_HEADERS, build_figures, export_png_pack, format_for_display, to_csv_bytes
from result_cache import ResultCache, build_cache
from settings import Settings

st.set_page_config(page_title="Hispanic Market Census Dashboard", layout="wide")
st.title("US Hispanic Market: Census Dashboard")

settings = Settings.from_env()


@st.cache_resource(show_spinner=False)
def _result_cache() -> ResultCache:
    return build_cache(settings)


def _excel_bytes(dataset: pd.DataFrame, analysis: str) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer) as writer:
        format_for_display(dataset).rename(columns=DISPLAY_HEADERS).to_excel(writer, sheet_name="State Stats", index=False)
        pd.DataFrame({"Analysis": [analysis]}).to_excel(writer, sheet_name="Analysis", index=False)
    return buffer.getvalue()


cache = _result_cache()

st.sidebar.header("Data")
st.sidebar.caption(f"Cache state: {cache.state}")
if st.sidebar.button("Refresh from Census API"):
    cache.clear()
    st.sidebar.info("Cache cleared; fetching fresh data.")

try:
    with st.spinner("Loading census data..."):
        lookup = cache.get_or_compute()
except FetchError as exc:
    st.error(f"Failed to fetch census data: {exc}")
    st.stop()

result = lookup.entry.result
dataset = result.dataset
st.sidebar.caption("Served from cache." if lookup.cached else "Freshly fetched.")
st.sidebar.caption(f"Generated {result.generated_at:%Y-%m-%d %H:%M UTC}")

national = dataset[dataset[NAME] == NATIONAL_NAME].iloc[0]
states = dataset[dataset[NAME] != NATIONAL_NAME]


def _metric(value: float, fmt: str) -> str:
    return "n/a" if pd.isna(value) else fmt.format(value)


col1, col2, col3, col4, col5 = st.columns(5)
col1.metric("Hispanic population", _metric(national["HispanicPop"], "{:,.0f}"))
col2.metric("Hispanic share", _metric(national["HispanicPct"], "{:.1f}%"))
col3.metric("Spanish speakers", _metric(national["SpanishPct"], "{:.1f}%"))
col4.metric("Hispanic 18-64 share", _metric(national["HispanicShareOf18To64"], "{:.1f}%"))
col5.metric(f"States covering {settings.threshold:.0%}", f"{len(states):,}")

figures = build_figures(dataset)

st.subheader("Where the Hispanic population lives")
st.plotly_chart(figures["01_hispanic_population_by_state"], use_container_width=True)
col_left, col_right = st.columns(2)
with col_left:
    st.plotly_chart(figures["02_cumulative_share"], use_container_width=True)
with col_right:
    st.plotly_chart(figures["03_working_age_shares"], use_container_width=True)

st.subheader("State statistics")
st.dataframe(format_for_display(dataset).rename(columns=DISPLAY_HEADERS), use_container_width=True, hide_index=True)

st.subheader("Analysis")
st.markdown(result.analysis)

col_csv, col_xlsx = st.columns(2)
with col_csv:
    st.download_button(
        "Download CSV",
        data=to_csv_bytes(dataset),
        file_name="hispanic_stats.csv",
        mime="text/csv",
    )
with col_xlsx:
    st.download_button(
        "Download Excel with analysis",
        data=_excel_bytes(dataset, result.analysis),
        file_name="hispanic_stats_with_summary.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

if st.button("Export PNG pack"):
    try:
        paths = export_png_pack(figures, out_dir="output/charts")
        st.success(f"Exported {len(paths)} PNG charts to output/charts/")
        if paths:
            st.caption("\n".join(paths))
    except Exception as exc:
        st.error(
            "PNG export failed. Ensure `kaleido` is installed and Chrome is available on the host. "
            f"Details: {exc}"
        )
