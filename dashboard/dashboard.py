"""
Proximity Tracker - Dashboard

Streamlit UI for both roles:
- Sender: generate/regenerate the RSA key pair and start/stop tracking
- Receiver: poll the sender's key pair and encrypted location, decrypt, and
  show the sender's position only when the proximity gate allows it

Agents run on a background event loop that outlives Streamlit reruns, so a
tracking sender keeps submitting while the page is idle. In demo mode both
roles share one in-process API: start tracking on the Sender page, then
switch to Receiver.

Run with: streamlit run dashboard/dashboard.py
"""

import asyncio
import os
import sys
import threading
import time

import httpx
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.agents.receiver import ReceiverAgent, ReceiverView  # noqa: E402
from app.agents.sender import SenderAgent, SenderState, SenderStatus  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.core.geo import Coordinates  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.geolocation import StaticGeolocationProvider  # noqa: E402
from app.services.store import InMemoryLocationStore  # noqa: E402
from app.services.tracker_client import TrackerClient  # noqa: E402

settings = get_settings()

DEMO = "Demo (in-process)"
LIVE = "Live API"

STATE_LABELS = {
    SenderState.NO_KEY_PAIR: "No key pair",
    SenderState.KEY_PAIR_READY: "Ready to track",
    SenderState.TRACKING: "Tracking",
    SenderState.IDLE: "Stopped",
}

# Page configuration
st.set_page_config(
    page_title="Proximity Tracker",
    page_icon="📍",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """Event loop in a daemon thread; agent timers live here across reruns."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="agents", daemon=True).start()
    return loop


def run(coro):
    """Run a coroutine on the agent loop and wait for its result."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


@st.cache_resource
def get_demo_transport() -> httpx.ASGITransport:
    """In-process API shared by the Sender and Receiver pages."""
    api = create_app(store=InMemoryLocationStore(), app_settings=settings)
    return httpx.ASGITransport(app=api)


@st.cache_resource
def get_client(data_source: str, api_url: str, api_key: str) -> TrackerClient:
    if data_source == DEMO:
        return TrackerClient(base_url="http://demo", api_key="", transport=get_demo_transport())
    return TrackerClient(base_url=api_url, api_key=api_key)


async def _start_tracking(agent: SenderAgent) -> None:
    agent.start_tracking()


def get_sender(client: TrackerClient, sender_id: str, position: Coordinates) -> SenderAgent:
    """Sender agent for this session; replaced when the sender or connection changes."""
    key = (id(client), sender_id)
    current = st.session_state.get("sender")
    if current is None or st.session_state.get("sender_key") != key:
        if current is not None:
            run(current.close())
        provider = StaticGeolocationProvider(position)
        current = SenderAgent(sender_id, client, provider, settings=settings)
        st.session_state["sender"] = current
        st.session_state["sender_key"] = key
        st.session_state["sender_position"] = provider

    st.session_state["sender_position"].position = position
    return current


def get_receiver(client: TrackerClient, sender_id: str, position: Coordinates) -> ReceiverAgent:
    """Receiver agent for this session, polling in the background once activated."""
    key = (id(client), sender_id)
    current = st.session_state.get("receiver")
    if current is None or st.session_state.get("receiver_key") != key:
        if current is not None:
            run(current.deactivate())
        provider = StaticGeolocationProvider(position)
        current = ReceiverAgent(sender_id, client, provider, settings=settings)
        st.session_state["receiver"] = current
        st.session_state["receiver_key"] = key
        st.session_state["receiver_position"] = provider

    st.session_state["receiver_position"].position = position
    run(current.acquire_own_position())
    return current


def create_distance_gauge(view: ReceiverView, threshold_km: float) -> go.Figure:
    """Percentage-of-threshold gauge (100% = at or beyond the range limit)."""
    fig = go.Figure(
        go.Indicator(
            mode="gauge+number",
            value=view.gauge_percent,
            number={"suffix": "%"},
            title={"text": f"Distance vs {threshold_km:g} km range"},
            gauge={
                "axis": {"range": [0, 100]},
                "bar": {"color": "#f97316" if view.within_range else "#9ca3af"},
            },
        )
    )
    fig.update_layout(height=250, margin=dict(l=20, r=20, t=50, b=10))
    return fig


def create_map(rows: list[dict]) -> go.Figure:
    """Scatter map of labelled markers ({label, lat, lon} rows)."""
    fig = px.scatter_mapbox(
        pd.DataFrame(rows),
        lat="lat",
        lon="lon",
        color="label",
        zoom=14,
        height=420,
        color_discrete_map={"You": "#3b82f6", "Sender": "#f97316"},
    )
    fig.update_traces(marker={"size": 14})
    fig.update_layout(mapbox_style="open-street-map", margin=dict(l=0, r=0, t=0, b=0))
    return fig


def show_notifications(notifier) -> None:
    for notification in notifier.items[-3:]:
        if notification.level == "error":
            st.error(f"{notification.title}: {notification.message}", icon="⚠️")
        else:
            st.success(f"{notification.title}: {notification.message}", icon="✅")
    notifier.clear()


def render_sender(agent: SenderAgent) -> None:
    """Key management, tracking controls and packet counters."""
    st.title("📡 Proximity Tracker - Sender")
    st.caption("Your position is encrypted with your own public key before it leaves the device")

    status: SenderStatus = agent.status()

    st.header("Encryption Keys")
    col1, col2 = st.columns([1, 2])
    with col1:
        label = "Regenerate Keys" if status.has_key_pair else "Generate Keys"
        if st.button(label, use_container_width=True):
            with st.spinner("Generating RSA key pair..."):
                run(agent.regenerate_keys())
            status = agent.status()
    with col2:
        if status.has_key_pair:
            st.success(f"RSA-{settings.rsa_key_size} key pair registered", icon="🔑")
        else:
            st.warning("Generate a key pair before tracking can start", icon="🔒")

    st.header("Location Tracking")
    col1, col2 = st.columns(2)
    with col1:
        if st.button(
            "Start Tracking",
            disabled=not status.can_start_tracking,
            type="primary",
            use_container_width=True,
        ):
            run(_start_tracking(agent))
            status = agent.status()
    with col2:
        if st.button(
            "Stop Tracking",
            disabled=status.state != SenderState.TRACKING,
            use_container_width=True,
        ):
            run(agent.stop_tracking())
            status = agent.status()

    show_notifications(agent.notifier)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Status", STATE_LABELS[status.state])
    with col2:
        st.metric("Packets Sent", status.packets_sent)
    with col3:
        st.metric(
            "Last Update",
            status.last_update.strftime("%H:%M:%S") if status.last_update else "Never",
        )
    with col4:
        st.metric("Update Interval", f"{settings.submit_interval_seconds:g} seconds")

    st.header("Current Location")
    if status.current_location is not None:
        st.metric("Coordinates", status.current_location.display())
        st.plotly_chart(
            create_map(
                [
                    {
                        "label": "You",
                        "lat": status.current_location.latitude,
                        "lon": status.current_location.longitude,
                    }
                ]
            ),
            use_container_width=True,
        )
    else:
        st.info("No location sent yet", icon="ℹ️")


def render_receiver(agent: ReceiverAgent) -> None:
    """Connection status, proximity gate result and map."""
    st.title("📍 Proximity Tracker - Receiver")
    st.caption("RSA-encrypted location sharing, revealed only within range")

    if not agent.active:
        run(agent.activate())

    view = agent.view()
    threshold = settings.proximity_threshold_km

    st.header("Connection Status")
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Private Key", "Loaded" if view.private_key_loaded else "Not Available")
    with col2:
        st.metric("Data Fetching", f"Every {settings.poll_interval_seconds:g} seconds")
    with col3:
        st.metric(
            "Last Sync",
            view.last_sync.strftime("%H:%M:%S") if view.last_sync else "Never",
        )

    show_notifications(agent.notifier)

    st.header(f"Proximity Status: {view.status_label}")
    col1, col2 = st.columns([1, 2])
    with col1:
        st.metric("Distance", view.distance_label)
        if view.within_range:
            st.success(f"{view.visibility_label} - {view.visibility_detail}", icon="👁️")
        else:
            st.info(f"{view.visibility_label} - {view.visibility_detail}", icon="🙈")
    with col2:
        st.plotly_chart(create_distance_gauge(view, threshold), use_container_width=True)

    st.header("Location Details")
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Sender Location", view.sender_display)
    with col2:
        st.metric("Your Location", view.receiver_display)
    with col3:
        st.metric("Data Encrypted", f"RSA-{settings.rsa_key_size}")

    st.header("Map View")
    if view.markers:
        rows = [
            {
                "label": marker.label,
                "lat": marker.coordinates.latitude,
                "lon": marker.coordinates.longitude,
            }
            for marker in view.markers
        ]
        st.plotly_chart(create_map(rows), use_container_width=True)
    else:
        st.info("Waiting for your location", icon="ℹ️")


def main():
    """Main dashboard application."""
    with st.sidebar:
        st.header("Role")
        role = st.radio("I am the", ["Sender", "Receiver"], horizontal=True)

        st.header("Connection")
        data_source = st.selectbox("Data Source", [DEMO, LIVE], index=0)
        sender_id = st.text_input("Sender ID", value="sender-1")
        api_url, api_key = "", ""
        if data_source == LIVE:
            api_url = st.text_input("API URL", value=settings.api_base_url)
            api_key = st.text_input("API Key", value=settings.tracker_api_key, type="password")

        st.divider()
        st.header("Your Location")
        default = (19.0760, 72.8777) if role == "Sender" else (19.0761, 72.8778)
        lat = st.number_input("Latitude", value=default[0], format="%.6f", key=f"{role}-lat")
        lon = st.number_input("Longitude", value=default[1], format="%.6f", key=f"{role}-lon")

        auto_refresh = st.checkbox("Auto refresh", value=True)

    client = get_client(data_source, api_url, api_key)
    position = Coordinates(latitude=lat, longitude=lon)

    if role == "Sender":
        render_sender(get_sender(client, sender_id, position))
        refresh_seconds = settings.submit_interval_seconds
    else:
        render_receiver(get_receiver(client, sender_id, position))
        refresh_seconds = settings.poll_interval_seconds

    # Footer
    st.divider()
    st.caption("Proximity Tracker v0.1.0 | Haversine distance, RSA-OAEP encryption")

    if auto_refresh:
        time.sleep(refresh_seconds)
        st.rerun()


if __name__ == "__main__":
    main()
