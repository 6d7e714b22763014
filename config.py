"""
Courier positioning engine configuration.
"""

from courier_core.localization.sample_gate import SampleGateConfig
from courier_core.localization.recursive_smoother import SmootherConfig, SmoothingMode
from courier_core.localization.anchor_solver import AnchorSolverConfig, RssiModel
from courier_core.localization.floor_resolver import FloorResolverConfig
from courier_core.domain.zone_matcher import SnapPolicy
from courier_core.domain.arrival_tracker import ArrivalTrackerConfig
from courier_core.engine.orchestrator import OrchestratorConfig
from courier_core.engine.tracking import EngineConfig

# GNSS plausibility gate
GATE_CONFIG = {
    "max_accuracy_m": 25.0,        # reject fixes less accurate than this
    "max_speed_m_s": 50.0,         # reported and implied speed bound
}

# Position smoothing
SMOOTHER_CONFIG = {
    "mode": "kalman",              # kalman / exponential / moving_average / blended
    "process_noise": 0.1,
    "alpha": 0.3,
    "window_size": 5,
    "blend_weight": 0.7,
}

# Beacon / UWB anchors
ANCHOR_CONFIG = {
    "min_anchors": 3,
    "max_anchors": 4,
    "epsilon": 1e-3,
    "max_reading_age_ms": 5000,
    "min_confidence": 0.1,
    "max_confidence": 0.9,
    "path_loss_exponent": 2.5,
    "min_distance_m": 0.1,
    "relative_uncertainty": 0.3,
    "rssi_smoothing_alpha": None,  # e.g. 0.3 to smooth RSSI per anchor
}

# Floor estimation
FLOOR_CONFIG = {
    "floor_height_m": 4.0,
    "min_floor": 0,
    "max_floor": 100,
    "prefer_venue_elevations": True,
    "auto_calibrate": True,        # lowest altitude seen becomes the ground floor
}

# Zone matching
ZONE_CONFIG = {
    "snap_enabled": False,
    "snap_radius_m": 2.0,
    "snap_confidence_boost": 0.2,
}

# Arrival confirmation
ARRIVAL_CONFIG = {
    "threshold_m": 15.0,
    "confirmation_ms": 3000,
}

# Engine
ENGINE_CONFIG = {
    "anchor_confidence_floor": 0.3,
    "gnss_confidence_scale_m": 10.0,
    "indoor_accuracy_m": 15.0,
    "channel_capacity": 64,
    "history_size": 100,
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# Offline replay
REPLAY_CONFIG = {
    "tick_ms": 1000,
    "print_interval": 1,           # print every Nth fused record
}


def build_engine_config() -> EngineConfig:
    """Build an EngineConfig from the dictionaries above."""
    return EngineConfig(
        gate=SampleGateConfig(
            max_accuracy_m=GATE_CONFIG["max_accuracy_m"],
            max_speed_m_s=GATE_CONFIG["max_speed_m_s"],
        ),
        smoother=SmootherConfig(
            mode=SmoothingMode(SMOOTHER_CONFIG["mode"]),
            process_noise=SMOOTHER_CONFIG["process_noise"],
            alpha=SMOOTHER_CONFIG["alpha"],
            window_size=SMOOTHER_CONFIG["window_size"],
            blend_weight=SMOOTHER_CONFIG["blend_weight"],
        ),
        solver=AnchorSolverConfig(
            min_anchors=ANCHOR_CONFIG["min_anchors"],
            max_anchors=ANCHOR_CONFIG["max_anchors"],
            epsilon=ANCHOR_CONFIG["epsilon"],
            max_reading_age_ms=ANCHOR_CONFIG["max_reading_age_ms"],
            min_confidence=ANCHOR_CONFIG["min_confidence"],
            max_confidence=ANCHOR_CONFIG["max_confidence"],
        ),
        rssi=RssiModel(
            path_loss_exponent=ANCHOR_CONFIG["path_loss_exponent"],
            min_distance_m=ANCHOR_CONFIG["min_distance_m"],
            relative_uncertainty=ANCHOR_CONFIG["relative_uncertainty"],
            smoothing_alpha=ANCHOR_CONFIG["rssi_smoothing_alpha"],
        ),
        floor=FloorResolverConfig(
            floor_height_m=FLOOR_CONFIG["floor_height_m"],
            min_floor=FLOOR_CONFIG["min_floor"],
            max_floor=FLOOR_CONFIG["max_floor"],
            prefer_venue_elevations=FLOOR_CONFIG["prefer_venue_elevations"],
        ),
        snap=SnapPolicy(
            enabled=ZONE_CONFIG["snap_enabled"],
            radius_m=ZONE_CONFIG["snap_radius_m"],
            confidence_boost=ZONE_CONFIG["snap_confidence_boost"],
        ),
        arrival=ArrivalTrackerConfig(
            threshold_m=ARRIVAL_CONFIG["threshold_m"],
            confirmation_ms=ARRIVAL_CONFIG["confirmation_ms"],
        ),
        orchestrator=OrchestratorConfig(
            anchor_confidence_floor=ENGINE_CONFIG["anchor_confidence_floor"],
            gnss_confidence_scale_m=ENGINE_CONFIG["gnss_confidence_scale_m"],
            indoor_accuracy_m=ENGINE_CONFIG["indoor_accuracy_m"],
            auto_calibrate=FLOOR_CONFIG["auto_calibrate"],
            history_size=ENGINE_CONFIG["history_size"],
        ),
        channel_capacity=ENGINE_CONFIG["channel_capacity"],
        history_size=ENGINE_CONFIG["history_size"],
    )
