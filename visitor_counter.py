"""
Visitor counter agent.

Runs the page-load pass of the counter widget: resolve the visitor's
location, register the visit at most once per IP per calendar day, and
build the view model for the counter, the visitor details and the top
countries. Totals returned by the backend are always preferred; the local
snapshot is only used when the backend cannot be reached, so the displayed
numbers can trail the server after an outage.
"""
import argparse
import base64
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, date

from dotenv import load_dotenv

from geolocation_service import GeolocationService, VisitorLocation
from local_store import LocalStore
from stats_api_client import StatsApiClient

logger = logging.getLogger(__name__)

STORAGE_KEY = 'visitor_counter_data'
VISIT_KEY_PREFIX = 'visit_'
TOP_COUNTRIES = 10
ANIMATION_STEPS = 30


def visit_key(ip: str, day: date) -> str:
    """Local storage key marking that this IP was counted on this day."""
    raw = f"{ip or 'unknown'}{day.isoformat()}".encode()
    return VISIT_KEY_PREFIX + base64.urlsafe_b64encode(raw).decode()


@dataclass
class CounterState:
    total_visitors: int = 0
    total_countries: int = 0
    total_visits: int = 0
    country_stats: list = field(default_factory=list)
    last_update: str | None = None
    visitor: VisitorLocation | None = None
    displayed_count: int = 0
    error: str | None = None

    def snapshot(self):
        return {
            'totalVisitors': self.total_visitors,
            'totalCountries': self.total_countries,
            'totalVisits': self.total_visits,
            'countryStats': self.country_stats,
            'lastUpdate': self.last_update,
        }


def apply_totals(state: CounterState, data: dict):
    """Copy totals from a backend response or a saved snapshot into the state."""
    state.total_visitors = int(data.get('totalVisitors', state.total_visitors) or 0)
    state.total_countries = int(data.get('totalCountries', state.total_countries) or 0)
    state.total_visits = int(data.get('totalVisits', state.total_visits) or 0)
    state.country_stats = list(data.get('countryStats', state.country_stats) or [])
    state.last_update = data.get('lastUpdate', state.last_update)


def increment_locally(state: CounterState, location: VisitorLocation, now: datetime):
    """Advance the held totals when the backend could not record the visit."""
    state.total_visitors += 1
    state.total_visits += 1
    state.last_update = now.isoformat()

    if not location.has_country:
        return

    for entry in state.country_stats:
        if entry.get('countryCode') == location.country_code:
            entry['totalVisitors'] = entry.get('totalVisitors', 0) + 1
            entry['lastUpdate'] = now.isoformat()
            break
    else:
        state.country_stats.append({
            'country': location.country,
            'countryCode': location.country_code,
            'totalVisitors': 1,
            'lastUpdate': now.isoformat(),
        })
        state.total_countries += 1


def rank_countries(country_stats, limit=TOP_COUNTRIES):
    """Same ordering the backend uses: most visitors first, then name, then code."""
    ranked = sorted(
        country_stats,
        key=lambda c: (-c.get('totalVisitors', 0), c.get('country') or '', c.get('countryCode') or '')
    )
    return ranked[:limit]


def counter_frames(start: int, target: int, steps: int = ANIMATION_STEPS):
    """Values shown while the counter counts up from start to target."""
    if target <= start:
        return [target]
    increment = math.ceil((target - start) / steps)
    frames = list(range(start + increment, target, increment))
    frames.append(target)
    return frames


@dataclass
class CountryRow:
    rank: int
    country: str
    country_code: str
    total_visitors: int
    percentage: float


@dataclass
class CounterView:
    count: int
    frames: list
    visitor_lines: list
    countries: list
    error: str | None = None


def describe_visitor(visitor):
    if visitor is None:
        return ['Location information unavailable']
    if visitor.error:
        return ['Could not detect location']
    return [
        f"{visitor.country} ({visitor.country_code})",
        f"{visitor.city}, {visitor.region}",
        visitor.timezone,
        visitor.ip,
    ]


def render(state: CounterState) -> CounterView:
    rows = []
    for rank, entry in enumerate(rank_countries(state.country_stats), start=1):
        count = entry.get('totalVisitors', 0)
        percentage = round(count / state.total_visitors * 100, 1) if state.total_visitors else 0.0
        rows.append(CountryRow(
            rank=rank,
            country=entry.get('country') or '',
            country_code=entry.get('countryCode') or '',
            total_visitors=count,
            percentage=percentage
        ))

    return CounterView(
        count=state.total_visitors,
        frames=counter_frames(state.displayed_count, state.total_visitors),
        visitor_lines=describe_visitor(state.visitor),
        countries=rows,
        error=state.error
    )


def format_view(view: CounterView) -> str:
    if view.error:
        return f"[!] {view.error}"

    lines = [f"Visitors: {view.count:,}"]
    lines.extend(f"  {line}" for line in view.visitor_lines)
    if view.countries:
        lines.append("Top countries:")
        for row in view.countries:
            lines.append(f"  {row.rank:>2}. {row.country} ({row.country_code})"
                         f"  {row.total_visitors}  ({row.percentage}%)")
    else:
        lines.append("No statistics available yet")
    return "\n".join(lines)


class VisitorCounter:
    def __init__(self, geolocation=None, api=None, store=None, clock=None):
        self.geolocation = geolocation or GeolocationService()
        self.api = api or StatsApiClient()
        self.store = store or LocalStore()
        self.clock = clock or datetime.now

    def load_snapshot(self) -> CounterState:
        state = CounterState()
        snapshot = self.store.get_item(STORAGE_KEY)
        if isinstance(snapshot, dict):
            apply_totals(state, snapshot)
        return state

    def save_snapshot(self, state: CounterState):
        data = state.snapshot()
        data['lastUpdate'] = self.clock().isoformat()
        self.store.set_item(STORAGE_KEY, data)

    def run(self, state: CounterState | None = None):
        """One page-load pass. Returns (state, view); never raises."""
        state = state or self.load_snapshot()
        state.error = None

        try:
            state.visitor = self.geolocation.lookup()
            key = visit_key(state.visitor.ip, self.clock().date())

            if not self.store.has_item(key):
                data = self.api.register_visit(state.visitor.to_payload())
                if data and 'totalVisitors' not in data:
                    # recorded, but the backend could not read back its totals
                    data = self.api.get_stats()
                if data:
                    apply_totals(state, data)
                else:
                    logger.info("Backend unavailable, counting the visit locally")
                    increment_locally(state, state.visitor, self.clock())
                self.store.set_item(key, self.clock().isoformat())
            else:
                data = self.api.get_stats()
                if data:
                    apply_totals(state, data)
                else:
                    logger.info("Backend unavailable, showing the last saved totals")
                    snapshot = self.store.get_item(STORAGE_KEY)
                    if isinstance(snapshot, dict):
                        apply_totals(state, snapshot)

            self.save_snapshot(state)
        except Exception:
            logger.exception("Error running the visitor counter")
            state.error = 'Error loading counter'

        view = render(state)
        state.displayed_count = view.count
        return state, view

    def on_visible(self, state: CounterState) -> CounterView:
        """Re-render from held data when the page becomes visible again. No network calls."""
        view = render(state)
        state.displayed_count = view.count
        return view

    def reset_local(self):
        """Forget the saved snapshot and every day marker. Server state is untouched."""
        keys = [k for k in self.store.load() if k == STORAGE_KEY or k.startswith(VISIT_KEY_PREFIX)]
        for key in keys:
            self.store.remove_item(key)
        logger.info("Cleared %d local counter entries", len(keys))
        return CounterState()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the visitor counter once and print the widget")
    parser.add_argument(
        "--reset-local",
        action="store_true",
        help="Clear the locally saved totals and visit markers, then exit",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s')

    agent = VisitorCounter()
    if args.reset_local:
        agent.reset_local()
        print("Local counter data cleared")
        return

    _, view = agent.run()
    print(format_view(view))


if __name__ == '__main__':
    main()
