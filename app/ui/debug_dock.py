import time

from PyQt6.QtWidgets import QDockWidget, QPlainTextEdit


class DebugDock(QDockWidget):
    def __init__(self, max_lines: int = 500) -> None:
        super().__init__('Debug')
        self.setObjectName('DebugDock')
        self.text = QPlainTextEdit()
        self.text.setReadOnly(True)
        self.text.setMaximumBlockCount(max_lines)
        self.text.setPlaceholderText('Resolution requests and splices are traced here.')
        self.setWidget(self.text)

    def append(self, message: str) -> None:
        self.text.appendPlainText(f'[{time.strftime("%H:%M:%S")}] {message}')
