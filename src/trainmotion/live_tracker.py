"""Live Track Estimator: continuous progress from sparse arrival predictions."""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .clock import SimulationClock
from .config import EngineConfig
from .models import LiveTrackRecord, Prediction, Railway, Station, VehiclePosition
from .stations import StationResolver, normalize_station_key, station_index_lookup

logger = logging.getLogger(__name__)

_BETWEEN_RE = re.compile(r"between\s+(.+?)\s+and\s+(.+)", re.IGNORECASE)
_PLATFORM_RE = re.compile(r"\s+platform.*$", re.IGNORECASE)
_DEPARTED_FROM_RE = re.compile(r"^from\s+", re.IGNORECASE)

# Leading verb -> which side of the vehicle the named station is on
_LOCATION_VERBS = (
    ("approaching", "next"),
    ("leaving", "previous"),
    ("left", "previous"),
    ("departed", "previous"),
    ("at", "previous"),
)


@dataclass
class LocationHint:
    """Station names parsed from a free-text location."""
    previous: Optional[str] = None
    next: Optional[str] = None


def parse_location(text: Optional[str]) -> LocationHint:
    """
    Parse phrases like "Between Victoria and Pimlico" or "Approaching Brixton".

    Unrecognised phrasing yields an empty hint.
    """
    location = (text or "").strip()
    if not location:
        return LocationHint()

    between = _BETWEEN_RE.search(location)
    if between:
        return LocationHint(
            previous=_PLATFORM_RE.sub("", between.group(1)).strip() or None,
            next=_PLATFORM_RE.sub("", between.group(2)).strip() or None,
        )

    lower = location.lower()
    for verb, side in _LOCATION_VERBS:
        if lower.startswith(verb + " "):
            name = location[len(verb) + 1:].strip()
            if verb == "departed":
                name = _DEPARTED_FROM_RE.sub("", name)
            name = _PLATFORM_RE.sub("", name).strip() or None
            return LocationHint(previous=name) if side == "previous" else LocationHint(next=name)

    return LocationHint()


@dataclass
class _StationPrediction:
    station: Station
    station_index: int
    time_to_station: float
    expected_arrival: Optional[float]


@dataclass
class _VehicleGroup:
    key: str
    vehicle_id: str
    direction: str
    destination: str
    current_location: str
    predictions: List[Prediction] = field(default_factory=list)
    times: List[float] = field(default_factory=list)


@dataclass
class _PendingUpdate:
    group: _VehicleGroup
    section_index: int
    section_length: int
    progress: float
    duration: float
    time_to_station: float
    departure_station: str
    arrival_station: str
    expected_arrival: Optional[float]

    @property
    def section_key(self):
        return (self.section_index, self.section_index + self.section_length)


def vehicle_key(prediction: Prediction) -> str:
    """Stable key for the vehicle a prediction belongs to."""
    if prediction.vehicle_id:
        return f"{prediction.vehicle_id}|{prediction.direction}|{prediction.destination}"
    parts = [
        prediction.direction,
        prediction.destination,
        prediction.destination_id,
        prediction.towards,
        prediction.platform_name,
    ]
    fallback = "|".join(p for p in parts if p)
    if not fallback:
        fallback = f"{prediction.station_name}|{prediction.direction}|{prediction.destination}"
    return f"no-vehicle|{fallback}"


class LiveTrackEstimator:
    """
    Infers section and progress along a railway for vehicles seen only
    through a live arrival-prediction feed.

    This class provides methods to:
    - Fold one poll of predictions into smoothed LiveTrackRecords
    - Dead-reckon records between polls
    - Retire records that stop appearing in the feed
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        records: Optional[Dict[str, LiveTrackRecord]] = None,
        clock: Optional[SimulationClock] = None,
    ):
        """
        Initialize the estimator.

        Args:
            config: Engine constants; defaults are used when omitted.
            records: Record store keyed by vehicle key. Owned by this estimator.
            clock: Clock used when update() is called without `now`.
        """
        self.config = config or EngineConfig()
        self.records: Dict[str, LiveTrackRecord] = records if records is not None else {}
        self.clock = clock

    def _now(self, now: Optional[float]) -> float:
        if now is not None:
            return now
        if self.clock is None:
            raise ValueError("No time given and no clock configured")
        return self.clock.now()

    def update(
        self,
        predictions: Iterable[Prediction],
        railway: Railway,
        resolver: StationResolver,
        now: Optional[float] = None,
    ) -> List[LiveTrackRecord]:
        """
        Fold one poll of predictions for a railway into the record store.

        Args:
            predictions: Raw predictions from the feed.
            railway: Railway the predictions refer to.
            resolver: Station lookup for names and codes in the feed.
            now: Current time in Unix seconds. Defaults to the clock.

        Returns:
            Records written by this poll.
        """
        now = self._now(now)
        offsets = railway.station_offsets
        if len(offsets) < 2:
            logger.warning(f"Railway {railway.id} has no station offsets; skipping live update")
            return []

        index_lookup = station_index_lookup(railway)
        seen = set()
        pending: List[_PendingUpdate] = []

        for group in self._group(predictions, now).values():
            record = self.records.get(group.key)
            resolved = self._resolve(group, resolver, index_lookup)
            update = self._infer(group, record, resolved, railway, resolver, index_lookup, now) if resolved else None
            if update is None:
                self._preserve(record, group, now, seen)
                continue
            pending.append(update)
            seen.add(group.key)

        reported = self._deoverlap(pending)

        written = []
        for update in pending:
            progress = reported[id(update)]
            record = self.records.get(update.group.key)
            if (
                record is not None
                and record.section_index == update.section_index
                and record.section_length == update.section_length
            ):
                # Spacing from a newly joined vehicle must not pull this one back
                progress = max(progress, record.progress_at(now, self.config.max_live_progress))
            written.append(self._write(update, progress, railway, now))

        self._retire_stale(seen, now)
        return written

    def positions(self, now: Optional[float] = None) -> List[VehiclePosition]:
        """Dead-reckoned positions of every record that is not stale."""
        now = self._now(now)
        positions = []
        for record in list(self.records.values()):
            if now - record.last_update >= self.config.stale_after:
                continue
            positions.append(
                VehiclePosition(
                    id=record.key,
                    kind="train",
                    railway_id=record.railway_id,
                    section_index=record.section_index,
                    section_length=record.section_length,
                    progress=record.progress_at(now, self.config.max_live_progress),
                    live=True,
                )
            )
        return positions

    def clear(self) -> None:
        self.records.clear()

    # Grouping and station resolution

    def _group(self, predictions: Iterable[Prediction], now: float) -> Dict[str, _VehicleGroup]:
        groups: Dict[str, _VehicleGroup] = {}
        for prediction in predictions:
            if prediction is None:
                continue
            tts = prediction.time_to_station
            if tts is None and prediction.expected_arrival is not None:
                tts = max(0.0, prediction.expected_arrival - now)
            if tts is None or not math.isfinite(tts):
                continue

            key = vehicle_key(prediction)
            group = groups.get(key)
            if group is None:
                group = _VehicleGroup(
                    key=key,
                    vehicle_id=prediction.vehicle_id or key,
                    direction=prediction.direction,
                    destination=prediction.destination,
                    current_location=prediction.current_location,
                )
                groups[key] = group
            if not group.current_location and prediction.current_location:
                group.current_location = prediction.current_location
            group.predictions.append(prediction)
            group.times.append(float(tts))
        return groups

    @staticmethod
    def _resolve(
        group: _VehicleGroup, resolver: StationResolver, index_lookup: Dict[str, int]
    ) -> List[_StationPrediction]:
        resolved = []
        for prediction, tts in zip(group.predictions, group.times):
            if prediction.station_id:
                key = prediction.station_id.upper()
            else:
                key = normalize_station_key(prediction.station_name)
            station = resolver.get(key) or resolver.resolve(prediction.station_name)
            if station is None:
                continue
            index = index_lookup.get(station.id)
            if index is None:
                continue
            resolved.append(_StationPrediction(station, index, tts, prediction.expected_arrival))
        resolved.sort(key=lambda p: p.time_to_station)
        return resolved

    # Section inference

    def _infer(
        self,
        group: _VehicleGroup,
        record: Optional[LiveTrackRecord],
        predictions: List[_StationPrediction],
        railway: Railway,
        resolver: StationResolver,
        index_lookup: Dict[str, int],
        now: float,
    ) -> Optional[_PendingUpdate]:
        config = self.config
        offsets = railway.station_offsets
        station_count = len(railway.stations)

        by_index: Dict[int, _StationPrediction] = {}
        for p in predictions:
            if p.station_index not in by_index:
                by_index[p.station_index] = p

        hint = parse_location(group.current_location)
        previous_index = self._hint_index(hint.previous, resolver, index_lookup)
        next_hint_index = self._hint_index(hint.next, resolver, index_lookup)

        next_p = by_index.get(next_hint_index) if next_hint_index is not None else None
        if next_p is None and previous_index is not None:
            next_p = next((p for p in predictions if p.station_index != previous_index), None)
        if next_p is None:
            next_p = predictions[0]
        next_index = next_p.station_index

        following = next(
            (p for p in predictions if p.station_index != next_index and p.time_to_station >= next_p.time_to_station),
            None,
        )

        step = 0
        if following is not None and offsets[following.station_index] != offsets[next_index]:
            step = 1 if offsets[following.station_index] > offsets[next_index] else -1
        elif group.direction == "outbound":
            step = 1
        elif group.direction == "inbound":
            step = -1
        elif record is not None and record.section_length:
            step = 1 if record.section_length > 0 else -1

        if previous_index is None and step:
            candidate = next_index - step
            if 0 <= candidate < station_count:
                previous_index = candidate

        if previous_index is None and record is not None:
            previous_index = record.section_index

        at_origin = False
        if previous_index is None and step and following is not None:
            # Nothing behind the next station: the vehicle waits there to depart
            at_origin = True
            previous_index = next_index
            speed_from, speed_to = next_p, following
            next_p, next_index = following, following.station_index
        elif following is not None and following.time_to_station > next_p.time_to_station:
            speed_from, speed_to = next_p, following
        else:
            speed_from = speed_to = None

        if previous_index is None or previous_index == next_index:
            return None
        if not (0 <= previous_index < len(offsets) and 0 <= next_index < len(offsets)):
            return None

        section_length = next_index - previous_index
        segment_length = abs(offsets[next_index] - offsets[previous_index])
        tts = next_p.time_to_station

        duration = None
        if segment_length > 0:
            if speed_from is not None:
                leg_time = max(1.0, speed_to.time_to_station - speed_from.time_to_station)
                leg_distance = abs(offsets[speed_to.station_index] - offsets[speed_from.station_index])
                speed = min(max(leg_distance / leg_time, config.min_implied_speed), config.max_implied_speed)
                duration = segment_length / speed
            else:
                duration = segment_length / config.default_segment_speed
        if not duration:
            # Assume the vehicle is halfway along the section
            duration = tts * 2

        if at_origin:
            duration = max(duration, config.min_live_duration)
            progress = 0.0
        else:
            duration = max(duration, config.min_live_duration, tts * config.live_duration_margin)
            progress = 1 - max(0.1, tts) / duration
            if not math.isfinite(progress):
                return None
            progress = min(max(progress, 0.0), config.max_live_progress)

        if record is not None and record.section_index == previous_index and record.section_length == section_length:
            predicted = record.base_progress + max(0.0, now - record.last_update) / max(record.duration, 0.1)
            if predicted > progress:
                # Never snap backwards
                progress = min(config.max_live_progress, predicted)
            elif progress - predicted > config.max_forward_correction:
                progress = min(config.max_live_progress, predicted + config.max_forward_correction)

        return _PendingUpdate(
            group=group,
            section_index=previous_index,
            section_length=section_length,
            progress=progress,
            duration=duration,
            time_to_station=tts,
            departure_station=railway.stations[previous_index],
            arrival_station=railway.stations[next_index],
            expected_arrival=next_p.expected_arrival,
        )

    @staticmethod
    def _hint_index(name: Optional[str], resolver: StationResolver, index_lookup: Dict[str, int]) -> Optional[int]:
        if not name:
            return None
        station = resolver.resolve(name)
        if station is None:
            return None
        return index_lookup.get(station.id)

    # Spacing vehicles that share a section

    def _deoverlap(self, pending: List[_PendingUpdate]) -> Dict[int, float]:
        """Reported progress per update, spaced apart where vehicles share a section."""
        reported = {id(update): update.progress for update in pending}
        groups: Dict[tuple, List[_PendingUpdate]] = {}
        for update in pending:
            groups.setdefault(update.section_key, []).append(update)

        spacing = self.config.overlap_progress_spacing
        for updates in groups.values():
            if len(updates) < 2:
                continue
            updates.sort(key=lambda u: u.time_to_station)
            for rank, update in enumerate(updates):
                reported[id(update)] = min(max(update.progress - rank * spacing, 0.0), self.config.max_live_progress)
        return reported

    def _write(self, update: _PendingUpdate, progress: float, railway: Railway, now: float) -> LiveTrackRecord:
        group = update.group
        next_time = update.expected_arrival if update.expected_arrival is not None else now + update.time_to_station

        record = self.records.get(group.key)
        if record is None:
            record = LiveTrackRecord(
                key=group.key,
                vehicle_id=group.vehicle_id,
                railway_id=railway.id,
                section_index=update.section_index,
                section_length=update.section_length,
                progress=progress,
                base_progress=update.progress,
                duration=update.duration,
                last_update=now,
            )
            self.records[group.key] = record
            logger.debug(f"Tracking live vehicle {group.key}")

        record.railway_id = railway.id
        record.section_index = update.section_index
        record.section_length = update.section_length
        record.progress = progress
        record.base_progress = update.progress
        record.duration = update.duration
        record.last_update = now
        record.time_to_station = update.time_to_station
        record.departure_station = update.departure_station
        record.arrival_station = update.arrival_station
        record.destination_name = group.destination
        record.current_location = group.current_location
        record.next_time = next_time
        record.previous_time = next_time - update.duration
        return record

    # Unresolvable updates and retirement

    def _preserve(self, record: Optional[LiveTrackRecord], group: _VehicleGroup, now: float, seen: set) -> None:
        """Keep a record alive on dead reckoning when this poll could not place it."""
        if record is None:
            return
        advanced = record.progress_at(now, self.config.max_live_progress)
        record.base_progress = min(self.config.max_live_progress, record.base_progress + (advanced - record.progress))
        record.progress = advanced
        record.last_update = now
        record.destination_name = group.destination
        record.current_location = group.current_location
        seen.add(record.key)

    def _retire_stale(self, seen: set, now: float) -> None:
        for key, record in list(self.records.items()):
            if key in seen:
                continue
            if now - record.last_update < self.config.stale_after:
                continue
            del self.records[key]
            logger.debug(f"Retired stale live vehicle {key}")
