from dataclasses import dataclass


@dataclass(frozen=True)
class ItemRange:
    """Inclusive index range. Empty when end < start."""

    start: int
    end: int

    @classmethod
    def empty(cls) -> "ItemRange":
        return cls(0, -1)

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    @property
    def count(self) -> int:
        return 0 if self.is_empty else self.end - self.start + 1

    @property
    def key(self) -> str:
        return f"{self.start}-{self.end}"

    def indices(self):
        return iter(range(self.start, self.end + 1))

    def __contains__(self, index) -> bool:
        return self.start <= index <= self.end

    def expanded(self, amount: int, total_items: int) -> "ItemRange":
        """Widen by `amount` on each side, clamped to [0, total_items - 1]."""
        if self.is_empty or total_items <= 0:
            return ItemRange.empty()
        start = max(0, self.start - amount)
        end = min(total_items - 1, self.end + amount)
        return ItemRange(start, end)
