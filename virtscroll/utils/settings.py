from PySide6.QtCore import QSettings, Signal

# Defaults for settings that are accessed from multiple places.
DEFAULT_SETTINGS = {
    # Initial per-item size estimate before anything is measured.
    'virtual_scroll_item_size': 60,
    # Extra items rendered on each side of the visible range.
    'virtual_scroll_overscan': 2,
    # Max measured sizes kept (oldest 10% evicted when full).
    'virtual_scroll_cache_capacity': 1000,
    # Viewports of data prefetched beyond the visible range (0 = off).
    'virtual_scroll_prefetch_viewports': 0,
    'virtual_scroll_max_concurrent_loads': 1,
    # Scroll speed (px/ms) above which range loads are deferred.
    'virtual_scroll_cancel_velocity': 1.0,
    'virtual_scroll_orientation': 'vertical',
    'virtual_scroll_measure_items': True,
    'virtual_scroll_page_size': 1000,
    'max_pages_in_memory': 20,  # Max collection pages held in RAM (LRU)
    'minimal_trace_logs': True,  # Drop DEBUG trace lines
}


class Settings(QSettings):
    # Signal that shows that the setting with the given string was changes
    change = Signal(str, object, name='settingsChanged')

    def __init__(self):
        super().__init__('virtscroll', 'virtscroll')

    def setValue(self, key, value):
        super().setValue(key, value)
        self.change.emit(key, value)

# Common shared instance to ensure the Signal is also shared
settings = Settings()


def get_setting(key: str, value_type=None):
    """Read a setting, falling back to its entry in DEFAULT_SETTINGS."""
    default = DEFAULT_SETTINGS.get(key)
    if value_type is None:
        value_type = type(default) if default is not None else str
    return settings.value(key, defaultValue=default, type=value_type)
