# dashboard/app.py
#
# Castwatch – Die-Casting Threshold Monitor
#
# Streamlit UI that:
#   - Keeps one DashboardSession per browser session (polling runs in the
#     background every 30 s against the prediction API)
#   - Shows API connectivity, the selected machine/parameter and its
#     Normal/Alert status against the operator's threshold band
#   - Charts the latest forecast readings with the band drawn in
#   - Lists backend alerts with per-alert dismiss buttons
#   - Uploads new spreadsheets and triggers model training
#   - Auto-redraws so background updates appear without manual reloads

import math
import os
from typing import List

import pandas as pd
import streamlit as st
from streamlit_autorefresh import st_autorefresh

from castwatch.config import DEFAULT_BANDS, PARAMETER_LABELS, UPLOAD_EXTENSIONS, setup_logging
from castwatch.models import Reading
from castwatch.session import DashboardSession
from castwatch.thresholds import ThresholdBand
from castwatch.upload import UploadPhase

# -------------------------------------------------
# Config
# -------------------------------------------------

PAGE_TITLE = "Castwatch – Die-Casting Monitor"
REDRAW_SECONDS = int(os.getenv("CASTWATCH_REDRAW_SECONDS", "2"))

METRIC_FIELDS = [
    ("total_strokes", "Total strokes"),
    ("machine_utilization", "Utilization"),
    ("temperature_violations", "Temperature violations"),
    ("idle_time_violations", "Idle-time violations"),
]


# -------------------------------------------------
# Session
# -------------------------------------------------


def get_session() -> DashboardSession:
    if "castwatch_session" not in st.session_state:
        setup_logging()
        st.session_state["castwatch_session"] = DashboardSession()

    session = st.session_state["castwatch_session"]
    # an abandoned tab stops redrawing; its session winds down after idle_timeout
    session.touch()
    session.start()
    return session


# -------------------------------------------------
# Data shaping
# -------------------------------------------------


def readings_frame(
    readings: List[Reading], parameter: str, band: ThresholdBand
) -> pd.DataFrame:
    """One row per reading: the parameter plus finite band edges as flat lines."""
    if not readings:
        return pd.DataFrame()

    df = pd.DataFrame(
        {
            "time": [r.time for r in readings],
            parameter: [r.value(parameter) for r in readings],
        }
    )
    if math.isfinite(band.lower):
        df["lower"] = band.lower
    if math.isfinite(band.upper):
        df["upper"] = band.upper
    return df.set_index("time")


def _fmt_bound(value: float) -> str:
    if not math.isfinite(value):
        return ""
    return f"{value:g}"


def parameter_label(parameter: str) -> str:
    return PARAMETER_LABELS.get(parameter, parameter.replace("_", " ").title())


# -------------------------------------------------
# UI helpers
# -------------------------------------------------


def render_header(session: DashboardSession) -> None:
    snap = session.snapshot()
    busy = session.uploads.busy

    title_col, status_col, train_col, refresh_col = st.columns([4, 2, 1, 1])
    with title_col:
        st.title(PAGE_TITLE)
        st.caption("Forecast readings from the prediction API checked against operator thresholds.")
    with status_col:
        if snap.connected:
            st.success("API connected")
        else:
            st.error("API disconnected")
        if snap.last_cycle_at is not None:
            st.caption(f"Last refresh: {snap.last_cycle_at.isoformat(sep=' ', timespec='seconds')}")
    with train_col:
        if st.button("Train model", disabled=not snap.connected or busy):
            session.train()
            st.toast("Training started")
    with refresh_col:
        if st.button("Refresh data", disabled=not snap.connected):
            session.refresh()
            st.toast("Refreshing")

    if snap.source_errors:
        failed = ", ".join(sorted(snap.source_errors))
        st.caption(f"Showing last known data for: {failed}")


def render_upload(session: DashboardSession) -> None:
    st.markdown("### Data upload")
    snap = session.snapshot()
    status = session.upload_status()

    upload_col, status_col = st.columns(2)
    with upload_col:
        uploaded = st.file_uploader(
            "Select data file",
            type=[ext.lstrip(".") for ext in UPLOAD_EXTENSIONS],
        )
        auto_train = st.checkbox("Train model after upload", value=True)
        if st.button(
            "Upload & Train",
            disabled=uploaded is None or not snap.connected or session.uploads.busy,
        ):
            session.upload(uploaded.name, uploaded.getvalue(), auto_train)
            st.rerun()

    with status_col:
        st.markdown("**Upload status**")
        if status.message:
            if status.phase == UploadPhase.FAILED:
                st.error(status.message)
            else:
                st.info(status.message)
            if status.progress > 0:
                st.progress(status.progress)
        else:
            st.caption("No file uploaded yet")


def _on_bound_change(session: DashboardSession, parameter: str, kind: str, key: str) -> None:
    session.set_bound(parameter, kind, st.session_state[key])


def render_controls(session: DashboardSession) -> None:
    snap = session.snapshot()

    machines = snap.machines or [snap.selected_machine]
    parameters = snap.feature_columns or list(DEFAULT_BANDS)

    machine_col, param_col, lower_col, upper_col, status_col = st.columns(5)
    with machine_col:
        machine = st.selectbox(
            "Machine",
            machines,
            index=machines.index(snap.selected_machine) if snap.selected_machine in machines else 0,
        )
        if machine != snap.selected_machine:
            session.select_machine(machine)

    with param_col:
        parameter = st.selectbox(
            "Parameter",
            parameters,
            index=parameters.index(snap.selected_parameter)
            if snap.selected_parameter in parameters
            else 0,
            format_func=parameter_label,
        )
        if parameter != snap.selected_parameter:
            session.select_parameter(parameter)

    band = session.band(parameter)
    for col, kind, value in ((lower_col, "lower", band.lower), (upper_col, "upper", band.upper)):
        key = f"{kind}_{parameter}"
        with col:
            st.text_input(
                f"{kind.title()} threshold",
                value=_fmt_bound(value),
                key=key,
                on_change=_on_bound_change,
                args=(session, parameter, kind, key),
            )

    live = session.live_status()
    with status_col:
        st.markdown("**Current status**")
        if live.in_violation:
            st.error(f"Alert: {live.alert.message}")
        elif live.value is None:
            st.caption("No reading yet")
        else:
            st.success(f"Normal ({live.value:g})")


def render_machine_panel(session: DashboardSession) -> None:
    snap = session.snapshot()
    machine = snap.selected_machine

    current = snap.current_data.get(machine)
    if current:
        st.markdown(f"### Current readings: `{machine}`")
        features = snap.feature_columns or list(current)
        cols = st.columns(len(features))
        for col, feature in zip(cols, features):
            with col:
                st.metric(parameter_label(feature), current.get(feature, 0))

    metrics = snap.metrics_for(machine)
    if metrics:
        st.markdown("### Machine metrics")
        cols = st.columns(len(METRIC_FIELDS))
        for col, (field_name, label) in zip(cols, METRIC_FIELDS):
            with col:
                st.metric(label, metrics.get(field_name, "–"))


def render_chart(session: DashboardSession) -> None:
    snap = session.snapshot()
    parameter = snap.selected_parameter
    band = session.band(parameter)

    st.markdown(f"### {parameter_label(parameter)} forecast")
    df = readings_frame(snap.readings, parameter, band)
    if df.empty:
        st.info("Waiting for predictions from the API...")
        return
    st.line_chart(df, height=320)


def render_alerts(session: DashboardSession) -> None:
    alerts = session.snapshot().alerts
    if not alerts:
        return

    st.markdown("### Active alerts")
    for alert in alerts:
        text_col, button_col = st.columns([6, 1])
        with text_col:
            message = alert.message or (
                f"{alert.parameter} {alert.value} vs threshold {alert.threshold} on {alert.machine}"
            )
            st.warning(message)
            if alert.time:
                st.caption(alert.time)
        with button_col:
            st.button(
                "Dismiss",
                key=f"dismiss_{alert.id}",
                on_click=session.dismiss_alert,
                args=(alert.id,),
            )


# -------------------------------------------------
# Main layout
# -------------------------------------------------


def main() -> None:
    st.set_page_config(page_title=PAGE_TITLE, layout="wide")

    # Redraw from session state; the poller itself runs on its own cadence
    st_autorefresh(interval=REDRAW_SECONDS * 1000, key="castwatch_redraw")

    session = get_session()

    render_header(session)
    st.markdown("---")
    render_upload(session)
    st.markdown("---")
    render_controls(session)
    render_machine_panel(session)
    render_chart(session)
    render_alerts(session)


if __name__ == "__main__":
    main()
