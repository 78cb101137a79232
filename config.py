# Ambient Volume Control Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

HISTORY_CAPACITY = 50             # Volume change records kept (newest first)

class DetectionMode(IntEnum):
    """How the monitor decides when to sample the room"""
    SILENCE = 1            # Gap detection on the live level stream
    MEDIA_SESSION = 2      # External song-changed events

class BoundaryStrategy(IntEnum):
    """Where the ambient sample comes from in media-session mode"""
    IMMEDIATE = 1          # Sample right after the song-changed event
    END_OF_TRACK = 2       # Sample shortly before the predicted end, apply on next change

@dataclass
class AudioConfig:
    """Audio capture settings"""
    sample_rate: int = 44100
    block_size: int = 2048            # Samples per level reading (~21 readings/s at 44.1 kHz)
    # Device index - None means use system default input
    device_index: int | None = None
    restart_backoff_ms: int = 200     # Wait before reopening a stalled/reclaimed device

@dataclass
class AmbientConfig:
    """Rolling-percentile ambient tracker"""
    window_size: int = 200            # Readings kept in the rolling window
    percentile: float = 0.15          # 0.0 - 1.0, low slice of the window = ambient floor

@dataclass
class GapConfig:
    """Gap (silence between songs) detection"""
    absolute_floor_db: float = 35.0   # Below this is always a gap candidate
    drop_db: float = 15.0             # Drop below baseline that counts as a gap
    silence_duration_ms: int = 1500   # How long the drop must last (ms)
    baseline_alpha: float = 0.05      # EMA smoothing for the music baseline
    max_reading_gap_ms: int = 500     # Readings further apart than this restart the silence timer

@dataclass
class SamplerConfig:
    """Ambient sampling window"""
    sample_duration_ms: int = 800     # How long to collect readings per sample (ms)

@dataclass
class VolumeConfig:
    """Volume decision settings"""
    target_ratio_db: float = 10.0     # How many dB above ambient the music should be
    min_volume_step: int = 1          # Never go below this step (avoid muting)
    dry_run: bool = False             # When True, do not touch the OS mixer (log-only)
    max_volume_step: int = 15         # Output step scale (system mixer is mapped onto it)
    dry_run_start_step: int = 7       # Initial step of the dry-run sink

@dataclass
class BoundaryConfig:
    """Song-boundary (media session) mode"""
    enabled: bool = True              # Use song-changed events when a source is available
    strategy: BoundaryStrategy = BoundaryStrategy.END_OF_TRACK
    debounce_window_ms: int = 3000    # Same title within this window is a duplicate event
    sample_lead_ms: int = 2000        # Sample this long before the predicted end of track

@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    audio: AudioConfig = field(default_factory=AudioConfig)
    ambient: AmbientConfig = field(default_factory=AmbientConfig)
    gap: GapConfig = field(default_factory=GapConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    volume: VolumeConfig = field(default_factory=VolumeConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    report_generation_enabled: bool = True    # Write per-session volume reports


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except (TypeError, ValueError):
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__)
            continue

        setattr(target, key, value)


def _clamped(value, default, low, high=None, cast=float):
    try:
        result = cast(value)
    except (TypeError, ValueError):
        result = default
    result = max(low, result)
    if high is not None:
        result = min(high, result)
    return result


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Replaces missing values with defaults, clamps ranges and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        if getattr(config.boundary, 'sample_lead_ms', None) is None:
            config.boundary.sample_lead_ms = 2000
        if getattr(config.boundary, 'debounce_window_ms', None) is None:
            config.boundary.debounce_window_ms = 3000
        if getattr(config.volume, 'dry_run', None) is None:
            config.volume.dry_run = False

    if getattr(config, 'report_generation_enabled', True) is None:
        config.report_generation_enabled = True
    if not getattr(config, 'log_level', None):
        config.log_level = "INFO"

    # Always clamp safety ranges
    config.ambient.window_size = _clamped(config.ambient.window_size, 200, 1, cast=int)
    config.ambient.percentile = _clamped(config.ambient.percentile, 0.15, 0.0, 1.0)
    config.gap.absolute_floor_db = _clamped(config.gap.absolute_floor_db, 35.0, 0.0, 120.0)
    config.gap.drop_db = _clamped(config.gap.drop_db, 15.0, 0.0, 120.0)
    config.gap.silence_duration_ms = _clamped(config.gap.silence_duration_ms, 1500, 0, cast=int)
    config.gap.baseline_alpha = _clamped(config.gap.baseline_alpha, 0.05, 0.0, 1.0)
    config.gap.max_reading_gap_ms = _clamped(config.gap.max_reading_gap_ms, 500, 1, cast=int)
    config.sampler.sample_duration_ms = _clamped(config.sampler.sample_duration_ms, 800, 0, cast=int)
    config.volume.target_ratio_db = _clamped(config.volume.target_ratio_db, 10.0, -120.0, 120.0)
    config.volume.min_volume_step = _clamped(config.volume.min_volume_step, 1, 0, cast=int)
    config.volume.max_volume_step = _clamped(config.volume.max_volume_step, 15, 1, cast=int)
    config.boundary.debounce_window_ms = _clamped(config.boundary.debounce_window_ms, 3000, 0, cast=int)
    config.boundary.sample_lead_ms = _clamped(config.boundary.sample_lead_ms, 2000, 0, cast=int)
    config.audio.restart_backoff_ms = _clamped(config.audio.restart_backoff_ms, 200, 10, cast=int)

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
