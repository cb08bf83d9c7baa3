"""Live arrival-prediction feeds: TfL JSON arrivals and GTFS-Realtime trip updates."""

import logging
import time
from datetime import datetime
from urllib.parse import quote
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .clock import SimulationClock
from .live_tracker import LiveTrackEstimator
from .models import LiveTrackRecord, Prediction, Railway
from .stations import StationResolver

logger = logging.getLogger(__name__)

TFL_API_BASE = "https://api.tfl.gov.uk"


def make_session() -> requests.Session:
    """HTTP session with retries on throttling and server errors."""
    session = requests.Session()
    retry = Retry(
        total=3,
        connect=2,
        read=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Accept": "application/json"})
    return session


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    """Parse an ISO-8601 timestamp ("2024-05-01T08:00:00Z") into Unix seconds."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def parse_tfl_arrivals(rows: Iterable[Dict[str, Any]]) -> List[Prediction]:
    """
    Convert TfL `/Line/{id}/Arrivals` rows into Predictions.

    Args:
        rows: Decoded JSON array from the TfL API.

    Returns:
        List of Prediction objects. Malformed rows are skipped.
    """
    predictions: List[Prediction] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue

        tts = row.get("timeToStation")
        try:
            tts = float(tts) if tts is not None else None
        except (TypeError, ValueError):
            tts = None

        predictions.append(
            Prediction(
                station_name=row.get("stationName") or "",
                vehicle_id=row.get("vehicleId") or "",
                direction=row.get("direction") or "",
                destination=row.get("destinationName") or "",
                station_id=row.get("naptanId") or "",
                time_to_station=tts,
                expected_arrival=parse_timestamp(row.get("expectedArrival")),
                current_location=row.get("currentLocation") or "",
                destination_id=row.get("destinationNaptanId") or "",
                towards=row.get("towards") or "",
                platform_name=row.get("platformName") or "",
            )
        )
    return predictions


def predictions_from_gtfs_realtime(
    feed_data: bytes,
    now: Optional[float] = None,
    route_ids: Optional[Set[str]] = None,
) -> List[Prediction]:
    """
    Convert GTFS-Realtime TripUpdates into Predictions.

    Each stop time update becomes one prediction keyed by the trip ID, so a
    trip's upcoming stops form the per-vehicle prediction list.

    Args:
        feed_data: Raw protobuf bytes.
        now: Reference time in Unix seconds. Defaults to time.time().
        route_ids: Optional route filter.

    Returns:
        List of Prediction objects.
    """
    from google.transit import gtfs_realtime_pb2

    now = time.time() if now is None else now
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(feed_data)

    predictions: List[Prediction] = []
    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue

        trip_update = entity.trip_update
        trip = trip_update.trip
        if route_ids and trip.route_id not in route_ids:
            continue

        direction = ""
        if trip.HasField("direction_id"):
            direction = "outbound" if trip.direction_id == 0 else "inbound"
        vehicle_id = trip_update.vehicle.id if trip_update.HasField("vehicle") else ""

        for stop_time_update in trip_update.stop_time_update:
            if stop_time_update.HasField("arrival"):
                arrival_time = stop_time_update.arrival.time
            elif stop_time_update.HasField("departure"):
                arrival_time = stop_time_update.departure.time
            else:
                continue

            # Predictions more than a minute in the past are stale
            if arrival_time - now < -60:
                continue

            predictions.append(
                Prediction(
                    station_name=stop_time_update.stop_id,
                    vehicle_id=vehicle_id or trip.trip_id,
                    direction=direction,
                    destination=trip.route_id,
                    station_id=stop_time_update.stop_id,
                    time_to_station=max(0.0, arrival_time - now),
                    expected_arrival=float(arrival_time),
                )
            )
    return predictions


class TfLClient:
    """Fetches live arrival predictions from the TfL Unified API."""

    def __init__(
        self,
        app_key: Optional[str] = None,
        base_url: str = TFL_API_BASE,
        timeout: float = 10.0,
        cache_ttl: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            app_key: TfL application key. Requests are sent unauthenticated
                (and heavily rate limited) without one.
            base_url: API root.
            timeout: Per-request timeout in seconds.
            cache_ttl: Seconds to reuse a previous response for the same path.
            session: Optional pre-configured requests session.
        """
        self.app_key = app_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or make_session()
        self._cache: Dict[str, Tuple[Any, float]] = {}  # path -> (data, timestamp)
        self._cache_ttl = cache_ttl
        self._max_cache_size = 16  # One entry per line is typical
        self._key_warned = False

    def get_line_arrivals(self, line_id: str) -> List[Prediction]:
        """
        Get arrival predictions for every station on a line.

        Raises:
            requests.RequestException: If the request fails.
        """
        rows = self._fetch_json(f"/Line/{quote(line_id)}/Arrivals")
        return parse_tfl_arrivals(rows if isinstance(rows, list) else [])

    def _fetch_json(self, path: str) -> Any:
        now = time.time()
        if path in self._cache:
            data, timestamp = self._cache[path]
            if now - timestamp < self._cache_ttl:
                logger.debug(f"Using cached data for {path}")
                return data

        self._evict_expired_cache(now)
        if len(self._cache) >= self._max_cache_size:
            oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
            del self._cache[oldest_key]

        params = {}
        if self.app_key:
            params["app_key"] = self.app_key
        elif not self._key_warned:
            self._key_warned = True
            logger.warning("No TfL app key configured; requests may be rate limited")

        url = self.base_url + path
        logger.debug(f"Fetching {url}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {url}: {e}")
            raise

        self._cache[path] = (data, now)
        return data

    def _evict_expired_cache(self, current_time: float) -> None:
        """Remove expired cache entries."""
        expired_keys = [
            path for path, (_, timestamp) in self._cache.items()
            if current_time - timestamp >= self._cache_ttl
        ]
        for key in expired_keys:
            del self._cache[key]

    def clear_cache(self) -> None:
        """Manually clear the cache."""
        self._cache.clear()


class GTFSRealtimeClient:
    """Fetches GTFS-Realtime TripUpdate feeds and yields Predictions."""

    def __init__(self, feed_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.feed_url = feed_url
        self.timeout = timeout
        self.session = session or make_session()

    def get_line_arrivals(self, route_id: Optional[str] = None) -> List[Prediction]:
        """
        Raises:
            requests.RequestException: If the request fails.
        """
        response = self.session.get(self.feed_url, timeout=self.timeout)
        response.raise_for_status()
        route_ids = {route_id} if route_id else None
        return predictions_from_gtfs_realtime(response.content, route_ids=route_ids)


class LivePoller:
    """
    Polls a prediction feed and folds each result into a LiveTrackEstimator.

    A failed fetch leaves the estimator untouched, so records keep moving on
    dead reckoning until they go stale.
    """

    def __init__(
        self,
        client: Any,
        estimator: LiveTrackEstimator,
        railway: Railway,
        resolver: StationResolver,
        line_id: str,
        now: Optional[Callable[[], float]] = None,
    ):
        self.client = client
        self.estimator = estimator
        self.railway = railway
        self.resolver = resolver
        self.line_id = line_id
        if now is None:
            now = estimator.clock.now if estimator.clock is not None else time.time
        self._now = now
        self.last_error: Optional[Exception] = None

    def bind_clock(self, clock: SimulationClock) -> None:
        """Stamp records on `clock` so they age on the same timeline they are read on."""
        self._now = clock.now
        if self.estimator.clock is None:
            self.estimator.clock = clock

    def poll(self) -> Optional[List[LiveTrackRecord]]:
        """
        Fetch one round of predictions.

        Returns:
            Records written, or None if the feed failed.
        """
        try:
            predictions = self.client.get_line_arrivals(self.line_id)
        except Exception as e:
            # Rate limits, network errors and bad keys all degrade to dead reckoning
            self.last_error = e
            logger.warning(f"Live poll for {self.line_id} failed: {e}")
            return None

        self.last_error = None
        records = self.estimator.update(predictions, self.railway, self.resolver, self._now())
        logger.debug(f"Live poll for {self.line_id}: {len(predictions)} predictions, {len(records)} vehicles placed")
        return records
