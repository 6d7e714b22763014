"""
Courier Positioning Core Package.

Multi-sensor positioning fusion for delivery couriers: GNSS smoothing,
beacon/UWB anchor multilateration, floor and zone resolution, and
debounced arrival confirmation.

Package structure:
- proto: Message schemas (raw samples, anchor readings, fused positions, events)
- localization: Sample gating, smoothing, anchor solving, floor resolution, geodesy
- domain: Venue model, zone matching, arrival state machine
- io: Bounded per-entity input channels, cancellable timers
- engine: Fusion orchestrator and per-entity tracking sessions
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
__author__ = "Courier Tracking Team"
