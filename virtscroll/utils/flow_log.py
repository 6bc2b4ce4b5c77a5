import time


class FlowLogger:
    """Timestamped, optionally throttled trace lines for one engine instance."""

    LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

    def __init__(self, *, minimal: bool = True, clock=time.time):
        self.minimal = minimal
        self._clock = clock
        self._last_emit = {}

    def log(self, component: str, message: str, *, level: str = "DEBUG",
            throttle_key: str | None = None, every_s: float | None = None) -> bool:
        """Print one trace line. Returns False when the line was filtered out."""
        level = level.upper()
        if level not in self.LEVELS:
            level = "INFO"
        if self.minimal and level == "DEBUG":
            return False

        now = self._clock()
        if throttle_key and every_s is not None:
            last = self._last_emit.get(throttle_key)
            if last is not None and (now - last) < every_s:
                return False
            self._last_emit[throttle_key] = now
        ts = time.strftime("%H:%M:%S", time.localtime(now)) + f".{int((now % 1) * 1000):03d}"
        print(f"[{ts}][TRACE][{component}][{level}] {message}")
        return True

    def debug(self, component: str, message: str, **kwargs) -> bool:
        return self.log(component, message, level="DEBUG", **kwargs)

    def info(self, component: str, message: str, **kwargs) -> bool:
        return self.log(component, message, level="INFO", **kwargs)

    def warning(self, component: str, message: str, **kwargs) -> bool:
        return self.log(component, message, level="WARNING", **kwargs)

    def error(self, component: str, message: str, **kwargs) -> bool:
        return self.log(component, message, level="ERROR", **kwargs)

    def reset_throttle(self):
        self._last_emit.clear()
