from dataclasses import dataclass

from virtscroll.utils.settings import DEFAULT_SETTINGS

# Qt widget geometry tops out at QWIDGETSIZE_MAX (16777215); stay well below it.
MAX_SAFE_VIRTUAL_SIZE = 10_000_000
DEFAULT_ITEM_SIZE = 60
DEFAULT_OVERSCAN = 2
DEFAULT_CACHE_CAPACITY = 1000
EVICTION_FRACTION = 0.1
MEASUREMENT_BATCH_MS = 16  # ~1 frame
LOAD_POLL_MS = 50
QUEUE_PROCESS_MS = 50

ORIENTATIONS = ("vertical", "horizontal")
PRIORITIES = ("high", "normal", "low")


@dataclass
class EngineConfig:
    """Construction-time options for one VirtualScrollEngine."""

    item_size: float = DEFAULT_ITEM_SIZE
    overscan: int = DEFAULT_OVERSCAN
    cache_capacity: int = DEFAULT_CACHE_CAPACITY
    prefetch_viewports: int = 0
    max_concurrent_loads: int = 1
    cancel_velocity: float = 1.0
    orientation: str = "vertical"
    measure_items: bool = True
    viewport_size: float = 600
    max_virtual_size: int = MAX_SAFE_VIRTUAL_SIZE
    minimal_trace_logs: bool = True

    def __post_init__(self):
        if self.item_size <= 0:
            raise ValueError(f"item_size must be positive, got {self.item_size}")
        if self.overscan < 0:
            raise ValueError(f"overscan must be >= 0, got {self.overscan}")
        if self.cache_capacity < 1:
            raise ValueError(f"cache_capacity must be >= 1, got {self.cache_capacity}")
        if self.prefetch_viewports < 0:
            raise ValueError(f"prefetch_viewports must be >= 0, got {self.prefetch_viewports}")
        if self.max_concurrent_loads < 1:
            raise ValueError(f"max_concurrent_loads must be >= 1, got {self.max_concurrent_loads}")
        if self.orientation not in ORIENTATIONS:
            raise ValueError(f"orientation must be one of {ORIENTATIONS}, got {self.orientation!r}")
        if self.max_virtual_size <= 0:
            raise ValueError(f"max_virtual_size must be positive, got {self.max_virtual_size}")

    @classmethod
    def from_settings(cls, settings, **overrides) -> "EngineConfig":
        """Build a config from a QSettings-like object, clamping bad values."""

        def read(key, value_type, low=None, high=None):
            default = DEFAULT_SETTINGS[key]
            try:
                value = value_type(settings.value(key, default, type=value_type))
            except Exception:
                return default
            if low is not None:
                value = max(low, value)
            if high is not None:
                value = min(high, value)
            return value

        orientation = read('virtual_scroll_orientation', str)
        if orientation not in ORIENTATIONS:
            orientation = DEFAULT_SETTINGS['virtual_scroll_orientation']

        values = dict(
            item_size=read('virtual_scroll_item_size', int, low=1),
            overscan=read('virtual_scroll_overscan', int, low=0, high=20),
            cache_capacity=read('virtual_scroll_cache_capacity', int, low=10),
            prefetch_viewports=read('virtual_scroll_prefetch_viewports', int, low=0, high=10),
            max_concurrent_loads=read('virtual_scroll_max_concurrent_loads', int, low=1, high=8),
            cancel_velocity=read('virtual_scroll_cancel_velocity', float, low=0.0),
            orientation=orientation,
            measure_items=read('virtual_scroll_measure_items', bool),
            minimal_trace_logs=read('minimal_trace_logs', bool),
        )
        values.update(overrides)
        return cls(**values)
