import time

from PyQt6.QtWidgets import QDockWidget, QTextEdit


class ErrorDock(QDockWidget):
    def __init__(self, dedupe_seconds: float = 2.0) -> None:
        super().__init__('Errors')
        self.setObjectName('ErrorDock')
        self._dedupe_seconds = dedupe_seconds
        self._last_message: str = ""
        self._last_message_at: float = 0.0
        self.count = 0

        self.text = QTextEdit()
        self.text.setReadOnly(True)
        self.text.setPlaceholderText('Feed, render and invariant errors will appear here.')
        self.setWidget(self.text)

    def append_error(self, message: str) -> None:
        # Live refreshes repeat the same dropped-row warnings; show each once per burst.
        now = time.monotonic()
        if message == self._last_message and (now - self._last_message_at) < self._dedupe_seconds:
            return
        self._last_message = message
        self._last_message_at = now
        self.count += 1
        self.text.append(f'[{time.strftime("%H:%M:%S")}] {message}')

    def clear_errors(self) -> None:
        self.text.clear()
        self.count = 0
        self._last_message = ""
