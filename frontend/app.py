# ============================================================
# app.py — Escalation Monitor Frontend (Streamlit)
# ============================================================

import streamlit as st
import requests
import os

# ─────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────

BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
API_TOKEN = os.getenv("ESCALATION_API_TOKEN", "")

HEADERS = {"Authorization": f"Bearer {API_TOKEN}"} if API_TOKEN else {}

st.set_page_config(layout="wide")
st.title("🚨 Escalation Monitor")


# ─────────────────────────────────────────────
# API Helpers
# ─────────────────────────────────────────────

def api_get(endpoint, params=None):
    try:
        r = requests.get(f"{BACKEND_URL}{endpoint}", params=params, headers=HEADERS, timeout=10)
        if r.status_code == 200:
            return r.json()
        st.error(f"API GET {endpoint} failed: {r.status_code}")
        return None
    except Exception as e:
        st.error(f"API GET Error: {e}")
        return None


def api_post(endpoint, payload):
    try:
        r = requests.post(f"{BACKEND_URL}{endpoint}", json=payload, headers=HEADERS, timeout=30)
        if r.status_code == 200:
            return r.json()
        st.error(f"API POST {endpoint} failed: {r.status_code} {r.text[:200]}")
        return None
    except Exception as e:
        st.error(f"API POST Error: {e}")
        return None


# ─────────────────────────────────────────────
# Event Selection
# ─────────────────────────────────────────────

event_id = st.text_input("Event ID")

if not event_id:
    st.info("Enter an event ID to view escalation activity.")
    st.stop()

stats = api_get("/escalation-check", params={"eventId": event_id})

if stats is None:
    st.stop()

# ─────────────────────────────────────────────
# Overview
# ─────────────────────────────────────────────

st.markdown("---")
col1, col2, col3 = st.columns(3)

with col1:
    st.metric("Total Escalations", stats.get("totalEscalations", 0))

with col2:
    st.metric("Avg Response (min)", round(stats.get("averageResponseTime", 0), 1))

with col3:
    st.metric("Emergency Activations", stats.get("emergencyActivations", 0))

left, right = st.columns(2)

with left:
    st.subheader("By Level")
    by_level = stats.get("escalationByLevel", {})
    if by_level:
        st.bar_chart({f"L{k}": v for k, v in sorted(by_level.items())})
    else:
        st.info("No escalations yet.")

with right:
    st.subheader("By Incident Type")
    by_type = stats.get("escalationByType", {})
    if by_type:
        st.bar_chart(by_type)
    else:
        st.info("No escalations yet.")

# ─────────────────────────────────────────────
# Run Check
# ─────────────────────────────────────────────

st.markdown("---")
st.subheader("⏱️ Escalation Check")

dry_run = st.checkbox("Dry run (list due incidents only)", value=True)

if st.button("Run Escalation Check"):
    with st.spinner("Checking..."):
        result = api_post("/escalation-check", {"eventId": event_id, "dryRun": dry_run})

    if result:
        label = "due" if dry_run else "escalated"
        st.success(f"{result.get('escalatedIncidents', 0)} incident(s) {label}")
        for incident_id in result.get("escalatedIncidentIds", []):
            st.markdown(f"- `{incident_id}`")

# ─────────────────────────────────────────────
# Incident Escalation Control
# ─────────────────────────────────────────────

st.markdown("---")
st.subheader("📜 Incident Escalation")

incident_id = st.text_input("Incident ID")

if incident_id:
    history = api_get(f"/incidents/{incident_id}/escalations") or []

    if history:
        for event in history:
            who = event.get("escalated_by") or "auto"
            notified = "✅" if event.get("supervisor_notified") else "❌"
            st.markdown(
                f"**Level {event['escalation_level']}** ({event['escalated_at']}) "
                f"by {who} · supervisors notified {notified}"
            )
            if event.get("notes"):
                st.caption(event["notes"])
    else:
        st.info("No escalation history for this incident.")

    operator = st.text_input("Your Name")
    extra_minutes = st.number_input("Extra minutes on resume", min_value=0, value=0, step=5)

    pause_col, resume_col = st.columns(2)

    with pause_col:
        if st.button("⏸️ Pause Escalation"):
            if not operator:
                st.warning("Please enter your name.")
            elif api_post(f"/incidents/{incident_id}/escalation/pause", {"paused_by": operator}):
                st.success("Escalation paused.")
                st.rerun()

    with resume_col:
        if st.button("▶️ Resume Escalation"):
            if not operator:
                st.warning("Please enter your name.")
            else:
                timer = api_post(
                    f"/incidents/{incident_id}/escalation/resume",
                    {"resumed_by": operator, "extra_minutes": int(extra_minutes) or None}
                )
                if timer:
                    st.success(f"Next escalation at {timer.get('escalate_at')}")

# ─────────────────────────────────────────────
# Emergency Logs
# ─────────────────────────────────────────────

st.markdown("---")
st.subheader("🚨 Emergency Failover Log")

logs = api_get(f"/events/{event_id}/emergency-logs") or []

if logs:
    for log in logs:
        st.error(
            f"Incident `{log['incident_id']}` level {log['escalation_level']} "
            f"({log['triggered_at']}): {log['emergency_type']} [{log['status']}]"
        )
else:
    st.success("No emergency failovers for this event.")
