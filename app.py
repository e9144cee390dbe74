"""
Supply Risk Engine Dashboard
==============================
Viewer for the scoring engine's batch outputs over a supply network.

Modules:
- Risk Exposure: OEMs exposed to each active risk, ranked by exposure
- Disruption Forecast: week-by-week probability and expected disruption
- OEM Profiles: per-commodity exposure, value at risk, OEM-level actions
- Event Scores: severity and risk-score breakdown per classified event
"""

import streamlit as st
import pandas as pd
import plotly.graph_objects as go

from pipelines.orchestrator import Orchestrator

NETWORK_PATH = "data/sample_network.json"
LEVEL_COLORS = {"HIGH": "#ef4444", "MEDIUM": "#f59e0b", "LOW": "#10b981"}
PRIORITY_ICONS = {"URGENT": "🔴", "HIGH": "🟠", "MEDIUM": "🔵"}

# ─── PAGE CONFIG ─────────────────────────────────────────────────

st.set_page_config(
    page_title="Supply Risk Engine",
    page_icon="⚠️",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stApp {
        background-color: #0a0e17;
    }

    .main .block-container {
        padding-top: 2rem;
        max-width: 1200px;
    }

    h1, h2, h3, h4 {
        font-family: 'Inter', sans-serif !important;
        color: #e2e8f0 !important;
    }

    div[data-testid="stSidebar"] {
        background-color: #0d1117;
    }
</style>
""", unsafe_allow_html=True)

CHART_LAYOUT = dict(
    paper_bgcolor="rgba(0,0,0,0)",
    plot_bgcolor="rgba(0,0,0,0)",
    font=dict(color="#94a3b8", family="Inter"),
)


# ═══════════════════════════════════════════════════════════════════
# DATA LOADING
# ═══════════════════════════════════════════════════════════════════

@st.cache_resource
def load_orchestrator():
    return Orchestrator(network_path=NETWORK_PATH)


@st.cache_data
def load_assessments(horizon: int):
    return load_orchestrator().assess_risks(horizon)


@st.cache_data
def load_event_scores():
    return pd.DataFrame(load_orchestrator().score_events())


@st.cache_data
def load_profiles():
    orch = load_orchestrator()
    return {oem_id: orch.profile_oem(oem_id) for oem_id in orch.oems}


# ═══════════════════════════════════════════════════════════════════
# SIDEBAR
# ═══════════════════════════════════════════════════════════════════

orch = load_orchestrator()

with st.sidebar:
    st.markdown("### ⚠️ Supply Risk Engine")
    st.markdown(
        "<span style='font-size:0.75rem;color:#64748b;'>"
        "Severity · Exposure · Forecast · Mitigation</span>",
        unsafe_allow_html=True,
    )
    st.divider()

    horizon = st.slider("Forecast horizon (weeks)", min_value=0, max_value=26, value=6)

    assessments = load_assessments(horizon)
    exposure_df = Orchestrator.exposure_frame(assessments)
    profiles = load_profiles()

    st.metric("Active Risks", len(orch.active_risks()))
    st.metric("Exposed OEM Links", len(exposure_df),
              delta=f"{(exposure_df['risk_level'] == 'HIGH').sum()} High", delta_color="inverse")
    total_at_risk = sum(p["exposure_summary"]["at_risk_value_usd"] for p in profiles.values())
    st.metric("Supply Value at Risk", f"${total_at_risk / 1e6:.1f}M")


# ═══════════════════════════════════════════════════════════════════
# MAIN HEADER
# ═══════════════════════════════════════════════════════════════════

st.markdown("## Facility Disruption Risk")
st.caption(orch.network_data.get("network_name", ""))

tab_exposure, tab_forecast, tab_oems, tab_events = st.tabs([
    "📊 Risk Exposure",
    "📈 Disruption Forecast",
    "🏭 OEM Profiles",
    "📰 Event Scores",
])


# ═══════════════════════════════════════════════════════════════════
# TAB 1: RISK EXPOSURE
# ═══════════════════════════════════════════════════════════════════

with tab_exposure:
    st.markdown("#### OEM Exposure by Risk")
    st.caption("Only exposures above the 0.10 materiality threshold are listed")

    if exposure_df.empty:
        st.info("No OEM is materially exposed to an active risk.")
    else:
        labels = exposure_df["oem_name"] + " ← " + exposure_df["risk_title"]
        fig = go.Figure(go.Bar(
            x=exposure_df["exposure_score"],
            y=labels,
            orientation="h",
            marker_color=[LEVEL_COLORS[level] for level in exposure_df["risk_level"]],
            text=[f"{v:.2f}" for v in exposure_df["exposure_score"]],
            textposition="outside",
        ))
        fig.update_layout(
            height=60 + 45 * len(exposure_df),
            xaxis=dict(title="Exposure score", range=[0, 1], gridcolor="rgba(255,255,255,0.05)"),
            yaxis=dict(autorange="reversed"),
            margin=dict(l=320, r=20, t=10, b=40),
            **CHART_LAYOUT,
        )
        st.plotly_chart(fig, use_container_width=True)

        st.dataframe(
            exposure_df.drop(columns=["risk_id", "oem_id"]),
            use_container_width=True,
            hide_index=True,
            column_config={
                "exposure_score": st.column_config.NumberColumn(format="%.3f"),
                "disruption_probability_6w": st.column_config.NumberColumn("P(6w)", format="%.2f"),
            },
        )

    st.markdown("---")
    st.markdown("#### Mitigation Actions")
    for assessed in assessments:
        for oem in assessed["affected_oems"]:
            impact = oem["impact_assessment"]
            with st.expander(f"{oem['oem_name']} — {assessed['title']} ({impact['risk_level']})"):
                st.caption(f"Supply gap estimate: {impact['supply_gap_estimate']:.1f}% · "
                           f"Impact in ~{oem['estimated_disruption_days']} days")
                for rec in impact["recommendations"]:
                    st.markdown(f"{PRIORITY_ICONS.get(rec['priority'], '')} **{rec['action']}** "
                                f"({rec['priority']}, {rec['timeline']}): {rec['detail']}")


# ═══════════════════════════════════════════════════════════════════
# TAB 2: DISRUPTION FORECAST
# ═══════════════════════════════════════════════════════════════════

with tab_forecast:
    st.markdown("#### Week-by-Week Disruption Forecast")

    pairs = {
        f"{oem['oem_name']} ← {assessed['title']}": oem["forecast"]
        for assessed in assessments for oem in assessed["affected_oems"]
    }
    if not pairs:
        st.info("Nothing to forecast: no OEM is materially exposed.")
    else:
        selected = st.selectbox("Exposure", list(pairs))
        forecast = pairs[selected]
        points = pd.DataFrame(forecast["forecast"])

        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=points["week"], y=points["probability"],
            name="P(disruption)", mode="lines+markers", line=dict(color="#6366f1", width=3),
        ))
        fig.add_trace(go.Bar(
            x=points["week"], y=points["expected_disruption"], name="Expected disruption",
            marker_color=[LEVEL_COLORS[level] for level in points["risk_level"]], opacity=0.6,
        ))
        fig.update_layout(
            height=380,
            xaxis=dict(title="Week", dtick=1, gridcolor="rgba(255,255,255,0.05)"),
            yaxis=dict(range=[0, 1], gridcolor="rgba(255,255,255,0.05)"),
            legend=dict(orientation="h", y=1.1),
            margin=dict(l=40, r=20, t=30, b=40),
            **CHART_LAYOUT,
        )
        st.plotly_chart(fig, use_container_width=True)

        peak = forecast["peak_risk_week"]
        if peak:
            st.warning(f"**Peak risk in week {peak['week']}:** "
                       f"P(disruption) = {peak['probability']:.0%}, expected disruption "
                       f"{peak['expected_disruption']:.2f} ({peak['risk_level']})")


# ═══════════════════════════════════════════════════════════════════
# TAB 3: OEM PROFILES
# ═══════════════════════════════════════════════════════════════════

with tab_oems:
    oem_id = st.selectbox("OEM", list(profiles), format_func=lambda k: profiles[k]["oem"]["name"])
    profile = profiles[oem_id]
    summary = profile["exposure_summary"]

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Supply Chain Value", f"${summary['total_supply_chain_value_usd'] / 1e6:.0f}M")
    c2.metric("Value at Risk", f"${summary['at_risk_value_usd'] / 1e6:.1f}M")
    c3.metric("% at Risk", f"{summary['at_risk_percentage']:.1f}%")
    c4.metric("Max Commodity Exposure", f"{summary['risk_score']:.2f}")

    commodity_df = pd.DataFrame.from_dict(profile["commodity_exposures"], orient="index")
    if not commodity_df.empty:
        commodity_df["primary_source_regions"] = commodity_df["primary_source_regions"].apply(", ".join)
        st.dataframe(commodity_df, use_container_width=True)

    st.markdown("#### OEM-Level Actions")
    if not profile["recommendations"]:
        st.success("No OEM-level action required.")
    for rec in profile["recommendations"]:
        cost = f" · est. {rec['estimated_cost']}" if "estimated_cost" in rec else ""
        st.markdown(f"{PRIORITY_ICONS.get(rec['priority'], '')} **{rec['action']}** "
                    f"({rec['priority']}, {rec['timeline']}{cost}): {rec['detail']}")


# ═══════════════════════════════════════════════════════════════════
# TAB 4: EVENT SCORES
# ═══════════════════════════════════════════════════════════════════

with tab_events:
    st.markdown("#### Classified Event Scores")
    st.caption("Score = severity × type weight × confidence × decay × regional share × criticality × capacity")

    events_df = load_event_scores()
    st.dataframe(
        events_df.drop(columns=["breakdown"]),
        use_container_width=True,
        hide_index=True,
        column_config={"risk_score": st.column_config.NumberColumn(format="%.3f")},
    )

    scored = events_df[events_df["breakdown"].notna()]
    if not scored.empty:
        breakdown = pd.DataFrame(list(scored["breakdown"]), index=scored["event_id"])
        st.markdown("#### Factor Breakdown")
        st.dataframe(breakdown, use_container_width=True)
