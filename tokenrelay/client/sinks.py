"""
tokenrelay - Stream Sinks

Consumers of a client stream's events. A sink sees, in order:

    on_start -> [on_first_fragment] -> on_fragment* -> on_complete | on_abort | on_error
"""

from typing import List, Protocol


STOPPED_MARKER = "\n\n[Generation stopped by user]"
INTERRUPTED_MARKER = "\n\n[Error: Connection interrupted]"


class StreamSink(Protocol):
    """Receives the events of one stream."""

    def on_start(self) -> None: ...

    def on_first_fragment(self) -> None: ...

    def on_fragment(self, text: str) -> None: ...

    def on_complete(self) -> None: ...

    def on_abort(self) -> None: ...

    def on_error(self, reason: str) -> None: ...


class NullSink:
    """Discards every event."""

    def on_start(self) -> None:
        pass

    def on_first_fragment(self) -> None:
        pass

    def on_fragment(self, text: str) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_abort(self) -> None:
        pass

    def on_error(self, reason: str) -> None:
        pass


class TextSink(NullSink):
    """
    Accumulates the visible response.

    A stop by the user or a broken connection appends a marker line, so
    partial text stays on screen with an explanation under it.
    """

    def __init__(self):
        self.parts: List[str] = []
        self.loading = False
        self.error_reason = ""

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def on_start(self) -> None:
        self.parts = []
        self.loading = True
        self.error_reason = ""

    def on_fragment(self, text: str) -> None:
        self.parts.append(text)

    def on_complete(self) -> None:
        self.loading = False

    def on_abort(self) -> None:
        self.loading = False
        self.parts.append(STOPPED_MARKER)

    def on_error(self, reason: str) -> None:
        self.loading = False
        self.error_reason = reason
        self.parts.append(INTERRUPTED_MARKER)
