"""
Courier positioning replay tool.
Replays a recorded JSON-lines event log through the positioning engine and
prints fused positions, arrivals and a metrics summary.

Event lines (one JSON object per line, "t" in milliseconds):
    {"t": 1000, "type": "gnss", "entity": "c1", "lat": 37.0, "lon": -122.0, "accuracy": 8}
    {"t": 1000, "type": "ranging", "entity": "c1", "anchor_id": "A0", "rssi": -71}
    {"t": 1000, "type": "baro", "entity": "c1", "altitude": 12.5}
    {"t": 1000, "type": "target", "entity": "c1", "target_id": "order-7", "lat": 37.0, "lon": -122.0}
    {"t": 5000, "type": "arrived", "entity": "c1", "target_id": "order-7"}
    {"t": 9000, "type": "untarget", "entity": "c1", "target_id": "order-7"}
    {"t": 9000, "type": "stop", "entity": "c1"}
"""

import sys
import json
import logging
import argparse
from typing import Dict, Iterator, List, Optional

import config
from courier_core.proto import (
    ArrivalEvent,
    BarometricReading,
    DepartureEvent,
    FusedPosition,
    RangingSample,
    RawSample,
)
from courier_core.domain import (
    ArrivalTarget,
    ArrivalTrackerConfig,
    VenueStore,
    load_venue_file,
)
from courier_core.engine import PositioningEngine
from courier_core.io import ManualScheduler
from courier_core.localization import format_floor
from courier_core.metrics import MetricsCollector

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)

EVENT_TYPES = ("gnss", "ranging", "baro", "target", "untarget", "arrived", "stop")


def read_events(path: str) -> Iterator[Dict]:
    """
    Read replay events, skipping blank and malformed lines.

    Args:
        path: JSON-lines event log

    Yields:
        Event dictionaries carrying at least "t", "type" and "entity"
    """
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Line %d: invalid JSON (%s)", line_no, e)
                continue
            if not isinstance(event, dict) or not {"t", "type", "entity"} <= event.keys():
                logger.warning("Line %d: event needs t, type and entity", line_no)
                continue
            yield event


class ReplayRunner:
    """
    Drives a PositioningEngine from a recorded event log.

    Usage:
        runner = ReplayRunner(VenueStore(load_venue_file("venue.json")), tick_ms=1000)
        runner.run(read_events("events.jsonl"))
    """

    def __init__(self, venue_store: Optional[VenueStore], tick_ms: int = 1000,
                 print_interval: int = 1):
        self.tick_ms = tick_ms
        self.print_interval = max(1, print_interval)
        self.scheduler = ManualScheduler()
        self.metrics = MetricsCollector()

        self.engine = PositioningEngine(
            venue_store,
            config.build_engine_config(),
            scheduler=self.scheduler,
            metrics=self.metrics,
            on_position=self._on_position,
            on_arrival=self._on_arrival,
            on_departure=self._on_departure,
        )

        self.record_count = 0
        self.arrivals: List[ArrivalEvent] = []
        self._next_tick_ms: Optional[int] = None

    # =========================================================================
    # Callbacks
    # =========================================================================

    def _on_position(self, record: FusedPosition):
        self.record_count += 1
        if self.record_count % self.print_interval != 0:
            return

        floor = format_floor(record.floor) if record.floor is not None else "-"
        zone = record.zone_name or "-"
        flags = []
        if record.indoor:
            flags.append("indoor")
        if record.degraded:
            flags.append("degraded")
        if record.snapped:
            flags.append("snapped")
        if record.floor_uncalibrated:
            flags.append("uncalibrated")

        print(f"[{record.timestamp_ms:>8d}] {record.entity_id}: "
              f"({record.latitude:.6f}, {record.longitude:.6f}) "
              f"{record.describe_accuracy()} conf={record.confidence:.2f} "
              f"floor={floor} zone={zone}"
              + (f" [{', '.join(flags)}]" if flags else ""))

    def _on_arrival(self, event: ArrivalEvent):
        self.arrivals.append(event)
        distance = "?" if event.distance_m is None else f"{event.distance_m:.1f}m"
        print(f"[{event.arrived_at_ms:>8d}] ARRIVED {event.entity_id} at {event.target_id} "
              f"({distance})" + (" [manual]" if event.manual else ""))

    def _on_departure(self, event: DepartureEvent):
        print(f"[{event.departed_at_ms:>8d}] DEPARTED {event.entity_id} from {event.target_id} "
              f"({event.distance_m:.1f}m)")

    # =========================================================================
    # Replay
    # =========================================================================

    def run(self, events) -> int:
        """
        Replay events in file order, ticking every tracked entity each tick_ms.

        Returns:
            Number of events applied
        """
        applied = 0
        last_t = None

        for event in events:
            t = int(event["t"])
            if self._next_tick_ms is None:
                self._next_tick_ms = t + self.tick_ms
            self._tick_until(t)
            self.scheduler.advance(t)

            if self._apply(event, t):
                applied += 1
            last_t = t

        if last_t is not None:
            # One more tick plus the arrival debounce so pending confirmations resolve
            self._tick_until(last_t + self.tick_ms)
            self.scheduler.advance(last_t + self.tick_ms
                                   + self.engine.config.arrival.confirmation_ms)

        return applied

    def _tick_until(self, t: int):
        while self._next_tick_ms is not None and self._next_tick_ms <= t:
            self.scheduler.advance(self._next_tick_ms)
            self.engine.tick_all(self._next_tick_ms)
            self._next_tick_ms += self.tick_ms

    def _apply(self, event: Dict, t: int) -> bool:
        kind = event["type"]
        entity_id = str(event["entity"])
        payload = dict(event)
        payload.setdefault("timestamp", t)

        if kind not in EVENT_TYPES:
            logger.warning("Unknown event type %r at t=%d", kind, t)
            return False

        try:
            if kind == "stop":
                return self.engine.stop_tracking(entity_id)

            if kind == "untarget":
                return self.engine.remove_target(entity_id, str(event["target_id"]))

            if kind == "arrived":
                return self.engine.mark_arrived(entity_id, str(event["target_id"]))

            self.engine.start_tracking(entity_id)

            if kind == "gnss":
                return self.engine.push_sample(entity_id, RawSample.from_dict(payload))
            if kind == "ranging":
                return self.engine.push_ranging(entity_id, RangingSample.from_dict(payload))
            if kind == "baro":
                return self.engine.push_barometric(entity_id, BarometricReading.from_dict(payload))
            if kind == "target":
                target_config = None
                if "threshold" in event:
                    target_config = ArrivalTrackerConfig(
                        threshold_m=float(event["threshold"]),
                        confirmation_ms=int(event.get(
                            "confirmation_ms", self.engine.config.arrival.confirmation_ms)),
                    )
                self.engine.add_target(entity_id, ArrivalTarget(
                    target_id=str(event["target_id"]),
                    latitude=float(event["lat"]),
                    longitude=float(event["lon"]),
                    config=target_config,
                ))
                return True
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping %s event at t=%d: %s", kind, t, e)
            return False
        return False

    def print_summary(self):
        print("\n" + "=" * 60)
        print("               Replay finished")
        print("=" * 60)
        print(f"Fused records: {self.record_count}")
        print(f"Arrivals: {len(self.arrivals)}")
        for line in self.metrics.summary_lines():
            print(line)
        print("=" * 60)


def main(argv=None) -> int:
    """Entry point."""
    parser = argparse.ArgumentParser(description='Courier positioning replay')
    parser.add_argument('--venue', '-v', type=str, default=None,
                        help='Venue JSON document (GNSS only if omitted)')
    parser.add_argument('--events', '-e', type=str, required=True,
                        help='JSON-lines event log')
    parser.add_argument('--tick-ms', '-t', type=int, default=config.REPLAY_CONFIG["tick_ms"],
                        help='Fusion tick interval (ms)')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    venue_store = None
    if args.venue:
        try:
            venue_store = VenueStore(load_venue_file(args.venue))
        except (OSError, ValueError) as e:
            logger.error("Cannot load venue %s: %s", args.venue, e)
            return 1

    runner = ReplayRunner(venue_store, tick_ms=args.tick_ms,
                          print_interval=config.REPLAY_CONFIG["print_interval"])
    try:
        applied = runner.run(read_events(args.events))
    except OSError as e:
        logger.error("Cannot read events %s: %s", args.events, e)
        return 1

    logger.info("Applied %d events", applied)
    runner.print_summary()
    return 0


if __name__ == "__main__":
    sys.exit(main())
