"""
Geometry Impact Analysis - Streamlit Web Interface
Imports all logic from geometry_estimator.py and markdown_report.py.

Usage:
    pip install streamlit plotly
    streamlit run app.py
"""

import json
from dataclasses import replace

import plotly.graph_objects as go
import streamlit as st

from geometry_estimator import (
    CONFIG_PRESETS,
    DEFAULT_CONSTANTS,
    DEFAULT_FOOTPRINT,
    FOOTPRINT_PRESETS,
    RECOMMENDATIONS,
    RunSettings,
    estimate_all,
    estimate_occupancy,
    format_mb,
    format_percent,
    format_points,
)
from geometry_impact import results_to_dict
from markdown_report import build_analysis_report, occupancy_rows, occupancy_verdict, summary_findings

# ─── Page config ───────────────────────────────────────────────
st.set_page_config(
    page_title="Geometry Impact Analysis",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
.metric-card {
    background: linear-gradient(145deg, #1e1e2e, #252540);
    border: 1px solid #333355;
    border-radius: 12px;
    padding: 1.2rem 1.4rem;
    text-align: center;
}
.metric-card .label { font-size: 0.75rem; font-weight: 600; color: #8b8ba7; text-transform: uppercase; }
.metric-card .value { font-size: 1.6rem; font-weight: 700; color: #e2e8f0; }
.metric-card .sub { font-size: 0.75rem; color: #64748b; }
.section-title { font-size: 1.05rem; font-weight: 600; margin: 1rem 0 0.5rem 0; }
</style>
""", unsafe_allow_html=True)

PLOTLY_LAYOUT = dict(
    paper_bgcolor="rgba(0,0,0,0)",
    plot_bgcolor="rgba(0,0,0,0)",
    font=dict(family="Inter, sans-serif", color="#94a3b8"),
    margin=dict(l=0, r=0, t=35, b=30),
)
COLORS = ["#8b5cf6", "#3b82f6", "#22c55e", "#f59e0b"]


def metric_card(label: str, value: str, sub: str = "") -> str:
    sub_html = f'<div class="sub">{sub}</div>' if sub else ""
    return f'<div class="metric-card"><div class="label">{label}</div><div class="value">{value}</div>{sub_html}</div>'


# ═══════════════════════════════════════════════════════════════
# SIDEBAR
# ═══════════════════════════════════════════════════════════════
with st.sidebar:
    st.markdown("**Configurations**")
    preset_names = [cfg.name for cfg in CONFIG_PRESETS]
    selected = st.multiselect("Configurations", preset_names, default=preset_names, label_visibility="collapsed")

    st.markdown("**Geometry footprint**")
    footprint_names = list(FOOTPRINT_PRESETS) + ["Custom"]
    footprint = st.selectbox("Footprint", footprint_names, index=footprint_names.index(DEFAULT_FOOTPRINT),
                             label_visibility="collapsed")
    if footprint == "Custom":
        bytes_per_point = st.number_input("Bytes per grid point", min_value=1.0, max_value=10000.0, value=296.0, step=8.0)
    else:
        bytes_per_point = float(FOOTPRINT_PRESETS[footprint])
        st.caption(f"`{bytes_per_point:g}` bytes per grid point")

    st.markdown("**Registers per thread**")
    base_registers = st.number_input("Base computation", min_value=0, max_value=255,
                                     value=DEFAULT_CONSTANTS.base_registers)
    overhead_registers = st.number_input("Geometry access overhead", min_value=0, max_value=255,
                                         value=DEFAULT_CONSTANTS.overhead_registers)

if not selected:
    st.warning("Select at least one configuration.")
    st.stop()

# ═══════════════════════════════════════════════════════════════
# RUN ESTIMATION
# ═══════════════════════════════════════════════════════════════
constants = replace(DEFAULT_CONSTANTS, base_registers=int(base_registers), overhead_registers=int(overhead_registers))
settings = RunSettings(
    configs=[cfg for cfg in CONFIG_PRESETS if cfg.name in selected],
    bytes_per_point=bytes_per_point,
    constants=constants,
)
results = estimate_all(settings.configs, settings.bytes_per_point, constants)
occupancy = estimate_occupancy(constants.base_registers, constants.overhead_registers, constants)

st.title("Geometry Impact Analysis")
st.caption(f"{len(results)} configuration(s) · {bytes_per_point:g} bytes/point")

largest = max(results, key=lambda r: r.total_mb)
c1, c2, c3, c4 = st.columns(4)
c1.markdown(metric_card("Largest total", format_mb(largest.total_mb), largest.config_name), unsafe_allow_html=True)
c2.markdown(metric_card("Geometry share", format_percent(largest.geometry_share_percent), "of largest config"),
            unsafe_allow_html=True)
c3.markdown(metric_card("Compute intensity", f"{largest.bandwidth_multiplier:.2f}x", largest.bandwidth_impact),
            unsafe_allow_html=True)
c4.markdown(metric_card("Occupancy", f"{occupancy.occupancy_without}% → {occupancy.occupancy_with}%",
                        f"+{occupancy.overhead_registers} registers"), unsafe_allow_html=True)

tab1, tab2, tab3 = st.tabs(["Memory", "Bandwidth & Occupancy", "Report & Export"])

# ───────────────────────────────────────────────────────────────
# TAB 1 - MEMORY
# ───────────────────────────────────────────────────────────────
with tab1:
    st.markdown('<div class="section-title">Memory Breakdown</div>', unsafe_allow_html=True)
    names = [r.config_name for r in results]
    fig_mem = go.Figure()
    for (label, attr), color in zip(
        [("Geometry", "geometry_mb"), ("State", "state_mb"), ("Auxiliary", "aux_mb"), ("Temporary/RHS", "temp_mb")],
        COLORS,
    ):
        fig_mem.add_trace(go.Bar(x=names, y=[getattr(r, attr) for r in results], name=label, marker_color=color))
    fig_mem.update_layout(**PLOTLY_LAYOUT, barmode="stack", height=380, yaxis=dict(title="MB"))
    st.plotly_chart(fig_mem)

    st.dataframe(
        [
            {
                "Config": r.config_name,
                "Grid points": format_points(r.total_points),
                "Geometry": format_mb(r.geometry_mb),
                "State": format_mb(r.state_mb),
                "Aux": format_mb(r.aux_mb),
                "Temp": format_mb(r.temp_mb),
                "Total": format_mb(r.total_mb),
                "Geometry Share": format_percent(r.geometry_share_percent),
            }
            for r in results
        ],
        hide_index=True,
    )

# ───────────────────────────────────────────────────────────────
# TAB 2 - BANDWIDTH & OCCUPANCY
# ───────────────────────────────────────────────────────────────
with tab2:
    left_col, right_col = st.columns([3, 2])
    with left_col:
        st.markdown('<div class="section-title">Compute Intensity</div>', unsafe_allow_html=True)
        fig_bw = go.Figure(go.Bar(
            x=[r.bandwidth_multiplier for r in results],
            y=[r.config_name for r in results],
            orientation="h",
            marker=dict(color=COLORS[0]),
            text=[f"{r.bandwidth_multiplier:.2f}x {r.bandwidth_impact}" for r in results],
            textposition="auto",
        ))
        fig_bw.update_layout(**PLOTLY_LAYOUT, height=260, yaxis=dict(autorange="reversed"))
        st.plotly_chart(fig_bw)
    with right_col:
        st.markdown('<div class="section-title">Register and Occupancy Impact</div>', unsafe_allow_html=True)
        st.dataframe([{"Metric": k, "Value": v} for k, v in occupancy_rows(occupancy)],
                     hide_index=True)
        st.caption(occupancy_verdict(occupancy))

    st.markdown('<div class="section-title">Optimization Recommendations</div>', unsafe_allow_html=True)
    for i, (title, detail) in enumerate(RECOMMENDATIONS, 1):
        st.markdown(f"{i}. **{title}**: {detail}")

    st.markdown('<div class="section-title">Summary</div>', unsafe_allow_html=True)
    for line in summary_findings(results, occupancy):
        st.markdown(f"- {line}")

# ───────────────────────────────────────────────────────────────
# TAB 3 - REPORT & EXPORT
# ───────────────────────────────────────────────────────────────
with tab3:
    report_md = build_analysis_report(settings.configs, results, occupancy, bytes_per_point, constants).text()
    with st.expander("Markdown report preview"):
        st.code(report_md, language="markdown")

    dl1, dl2, _ = st.columns([1, 1, 2])
    with dl1:
        st.download_button(
            label="Download Markdown",
            data=report_md,
            file_name="analysis_geometry_impact.md",
            mime="text/markdown",
        )
    with dl2:
        st.download_button(
            label="Download JSON",
            data=json.dumps(results_to_dict(settings, results, occupancy), indent=2),
            file_name="geometry_impact.json",
            mime="application/json",
        )
