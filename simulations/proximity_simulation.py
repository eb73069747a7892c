"""
Proximity Simulation: Sender/Receiver Walk Analysis
===================================================
Runs sender and receiver agents against an in-process API while the sender
random-walks around a receiver placed at increasing distances.

For every cycle the simulation records what the receiver agent derived and
what the server-side verify endpoint answered, then checks the gate:

1. Receiver view and verify endpoint agree on within-range decisions
2. No out-of-range cycle ever exposes sender coordinates (leak count)
3. Decisions flip exactly at the 1 km threshold

Outputs (next to this file):
- proximity_simulation.csv     raw per-cycle data
- proximity_decisions.png      distance vs disclosure plot
- proximity_report.txt         summary report
"""

import asyncio
import os
import sys

import httpx
import matplotlib.pyplot as plt
import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.agents.receiver import ReceiverAgent  # noqa: E402
from app.agents.sender import SenderAgent  # noqa: E402
from app.config import Settings  # noqa: E402
from app.core.geo import Coordinates, calculate_distance_km, destination_point  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.geolocation import (  # noqa: E402
    RandomWalkGeolocationProvider,
    StaticGeolocationProvider,
)
from app.services.store import InMemoryLocationStore  # noqa: E402
from app.services.tracker_client import TrackerClient  # noqa: E402

# Mumbai (receiver stays put)
RECEIVER = Coordinates(latitude=19.0761, longitude=72.8778)

START_DISTANCES_KM = [0.05, 0.25, 0.5, 0.8, 0.95, 1.05, 1.2, 2.0, 5.0]
CYCLES_PER_WALK = 15
STEP_M = 40.0


# ============================================================================
# SIMULATION
# ============================================================================

async def simulate_walk(
    client: TrackerClient,
    settings: Settings,
    walk_id: int,
    start_distance_km: float,
) -> list[dict]:
    """Walk one sender near the receiver and record every cycle."""
    sender_id = f"sim-sender-{walk_id}"
    start = destination_point(RECEIVER, start_distance_km, bearing_deg=walk_id * 37 % 360)
    walker = RandomWalkGeolocationProvider(start, max_step_m=STEP_M, seed=walk_id)

    sender = SenderAgent(sender_id, client, walker, settings=settings)
    receiver = ReceiverAgent(
        sender_id, client, StaticGeolocationProvider(RECEIVER), settings=settings
    )

    if not await sender.start():
        raise RuntimeError(f"Sender {sender_id} could not register keys")
    await receiver.acquire_own_position()

    rows = []
    for cycle in range(CYCLES_PER_WALK):
        await sender.run_cycle()
        await receiver.poll_once()

        view = receiver.view()
        verify = await client.verify(sender_id, RECEIVER)
        true_distance = calculate_distance_km(RECEIVER, walker.position)

        rows.append(
            {
                "walk_id": walk_id,
                "cycle": cycle,
                "start_distance_km": start_distance_km,
                "true_distance_km": true_distance,
                "receiver_distance_km": view.distance_km,
                "receiver_within_range": view.within_range,
                "receiver_shows_sender": view.sender_display != "Hidden",
                "receiver_sender_marker": any(m.label == "Sender" for m in view.markers),
                "verify_distance_km": verify.distance,
                "verify_within_range": verify.within_range,
                "verify_has_location": verify.sender_location is not None,
                "verify_has_key_pair": verify.key_pair is not None,
            }
        )

    return rows


async def run_simulation() -> pd.DataFrame:
    """Run every walk against a fresh in-process API."""
    settings = Settings(
        rate_limit_requests_per_minute=100_000,
        rsa_key_size=2048,
    )
    api = create_app(store=InMemoryLocationStore(), app_settings=settings)
    transport = httpx.ASGITransport(app=api)

    rows = []
    async with TrackerClient(base_url="http://simulation", transport=transport) as client:
        for walk_id, distance in enumerate(START_DISTANCES_KM):
            rows.extend(await simulate_walk(client, settings, walk_id, distance))

    return pd.DataFrame(rows)


# ============================================================================
# ANALYSIS
# ============================================================================

def analyze(df: pd.DataFrame, threshold_km: float = 1.0) -> dict:
    """Check gate consistency across all recorded cycles."""
    out_of_range = df[~df["verify_within_range"]]
    leaks = out_of_range[
        out_of_range["verify_has_location"]
        | out_of_range["verify_has_key_pair"]
        | out_of_range["receiver_shows_sender"]
        | out_of_range["receiver_sender_marker"]
    ]

    expected = df["true_distance_km"] <= threshold_km
    return {
        "cycles": len(df),
        "within_range_cycles": int(df["verify_within_range"].sum()),
        "out_of_range_cycles": len(out_of_range),
        "agreement_pct": round(
            (df["receiver_within_range"] == df["verify_within_range"]).mean() * 100, 2
        ),
        "threshold_correct_pct": round((expected == df["verify_within_range"]).mean() * 100, 2),
        "max_distance_error_m": round(
            (df["verify_distance_km"] - df["true_distance_km"]).abs().max() * 1000, 6
        ),
        "leaks": len(leaks),
    }


def plot_decisions(df: pd.DataFrame, output_path: str, threshold_km: float = 1.0) -> None:
    """Scatter of distance per cycle, colored by disclosure decision."""
    fig, ax = plt.subplots(figsize=(10, 5))

    visible = df[df["verify_within_range"]]
    hidden = df[~df["verify_within_range"]]
    ax.scatter(visible["cycle"] + visible["walk_id"] * CYCLES_PER_WALK,
               visible["true_distance_km"], color="#f97316", s=12, label="Location visible")
    ax.scatter(hidden["cycle"] + hidden["walk_id"] * CYCLES_PER_WALK,
               hidden["true_distance_km"], color="#6b7280", s=12, label="Location hidden")
    ax.axhline(threshold_km, color="red", linestyle="--", linewidth=1.5,
               label=f"{threshold_km:g} km threshold")

    ax.set_yscale("log")
    ax.set_xlabel("Cycle (walks concatenated)")
    ax.set_ylabel("Sender distance (km)")
    ax.set_title("Proximity Gate Decisions")
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()


def generate_report(stats: dict) -> str:
    """Generate text report."""
    return f"""
================================================================================
                     PROXIMITY SIMULATION REPORT
================================================================================

Cycles recorded:            {stats['cycles']}
  within range:             {stats['within_range_cycles']}
  out of range:             {stats['out_of_range_cycles']}

Receiver/verify agreement:  {stats['agreement_pct']}%
Threshold decisions right:  {stats['threshold_correct_pct']}%
Max distance error:         {stats['max_distance_error_m']} m

Out-of-range disclosures:   {stats['leaks']}

VERDICT: {"PASS - no sender location disclosed outside range" if stats['leaks'] == 0 else "FAIL - sender location disclosed outside range"}
================================================================================
"""


# ============================================================================
# MAIN EXECUTION
# ============================================================================

def main():
    print("=" * 70)
    print("PROXIMITY SIMULATION")
    print("=" * 70)

    output_dir = os.path.dirname(os.path.abspath(__file__))

    print(f"[1/3] Running {len(START_DISTANCES_KM)} walks x {CYCLES_PER_WALK} cycles...")
    df = asyncio.run(run_simulation())

    print("[2/3] Plotting decisions...")
    plot_path = os.path.join(output_dir, "proximity_decisions.png")
    plot_decisions(df, plot_path)
    print(f"      Saved: {plot_path}")

    print("[3/3] Analyzing gate consistency...")
    stats = analyze(df)
    report = generate_report(stats)

    report_path = os.path.join(output_dir, "proximity_report.txt")
    with open(report_path, "w") as f:
        f.write(report)
    print(report)

    csv_path = os.path.join(output_dir, "proximity_simulation.csv")
    df.to_csv(csv_path, index=False)
    print(f"[DATA] Raw data saved: {csv_path}")

    return df


if __name__ == "__main__":
    main()
