import asyncio
from datetime import datetime

from dotenv import load_dotenv
load_dotenv("backend/.env")

from config import Configuration
from models import LocationReading, PreferenceProfile
from services.planner import TourPlanner
from services.report import build_itinerary_report, build_progress_report
from services.rewards import RewardEngine
from services.store import InMemoryStore
from services.tracker import ProgressTracker
from utils import SystemClock

async def main():
    cfg = Configuration.from_env()
    clock = SystemClock(cfg.timezone)
    planner = TourPlanner.from_config(cfg, clock=clock)

    # sample visitor
    profile = PreferenceProfile(
        travel_style="gourmet",
        must_visit="both",
        age="20s",
        what_to_do="eat shirasu by the sea",
        interests=["matcha"],
    )

    print(f"=== Planning ===")
    print(f"Profile: {profile}")
    result = await planner.plan(profile)
    for i, s in enumerate(result.stops, 1):
        print(f"{i}. {s.name} [{s.area}/{s.category}] tags={s.tags[:4]}")
    for note in result.notices:
        print(f"   ! {note}")
    print()

    # schedule + live route detail (needs GOOGLE_MAPS_API_KEY)
    print(f"=== Schedule (09:00 from enoshima_station) ===")
    scheduled = planner.schedule(result.stops, "09:00", "enoshima_station")
    segments = await planner.route_segments([s.spot for s in scheduled])
    print(build_itinerary_report(scheduled, "enoshima_station", segments))

    # walk the rally at each stop's coordinates
    store = InMemoryStore()
    rewards = RewardEngine(store, cfg, clock)
    tracker = ProgressTracker(store, rewards, cfg, clock)
    stops = [s.spot for s in scheduled]
    _, instant = tracker.accept_itinerary("demo-visitor", stops)
    print(f"=== Rally ===")
    print(f"Instant rewards: {[r.title for r in instant]}")
    for spot in stops:
        reading = LocationReading(spot.coordinates.lat, spot.coordinates.lng, accuracy=10.0, timestamp=datetime.now())
        outcome = tracker.submit_check_in("demo-visitor", reading, stops)
        print(f"{outcome.result.message}: {outcome.state.completion_percentage:.0f}% (+{len(outcome.new_rewards)} rewards)")
    print()

    state = tracker.get_progress("demo-visitor")
    print(build_progress_report(state, rewards.list_available("demo-visitor")))

    print(f"=== Summary ===")
    print(f"✓ Stops planned: {len(result.stops)}")
    print(f"✓ Route segments: {len(segments)} ({sum(1 for s in segments if s.recommended_method != 'unknown')} resolved)")
    print(f"✓ Rewards held: {len(rewards.list_all('demo-visitor'))}")

if __name__ == "__main__":
    asyncio.run(main())
