from PySide6.QtWidgets import QLabel, QWidget


class QtElementHost:
    """Places engine view elements as child widgets of a viewport container."""

    def __init__(self, container: QWidget, orientation: str = "vertical"):
        self._container = container
        self.orientation = orientation

    @property
    def is_horizontal(self) -> bool:
        return self.orientation == "horizontal"

    def adopt(self, rendered, index: int):
        """Parent a template result to the container; markup becomes a QLabel."""
        if isinstance(rendered, str):
            element = QLabel(rendered)
            element.setWordWrap(not self.is_horizontal)
        else:
            element = rendered
        if element is None:
            return None
        element.setParent(self._container)
        element.setProperty("virtualIndex", index)
        element.show()
        return element

    def place(self, element, offset: float, size: float):
        offset = int(round(offset))
        size = max(1, int(round(size)))
        if self.is_horizontal:
            element.setGeometry(offset, 0, size, self._container.height())
        else:
            element.setGeometry(0, offset, self._container.width(), size)

    def measure(self, element):
        """Natural extent along the scroll axis, or None when detached."""
        if element.parent() is None:
            return None
        hint = element.sizeHint()
        if self.is_horizontal:
            return hint.width()
        # Height for the width it is laid out at, for wrapped text.
        if element.hasHeightForWidth():
            return element.heightForWidth(self._container.width())
        return hint.height()

    def release(self, element):
        element.hide()
        element.setParent(None)
        element.deleteLater()
