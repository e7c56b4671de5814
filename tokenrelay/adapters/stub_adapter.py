"""
tokenrelay - Stub Provider Adapter

Deterministic in-process adapter used for local runs and tests.
No network calls, no external provider keys required.
"""

import asyncio
import re
from typing import List, Optional, Sequence

from .base import AdapterConfig, BaseAdapter, UpstreamStream
from ..core.errors import UpstreamError, UpstreamErrorKind
from ..core.models import Fragment, GenerationRequest, Provider
from ..streaming.cancellation import CancellationToken


def scripted_fragments(prompt: str) -> List[str]:
    """Split a canned echo answer into word-sized fragments."""
    answer = f"stub: you said {prompt.strip()}"
    return re.findall(r"\S+\s*|\s+", answer)


class StubStream(UpstreamStream):
    """Yields a fixed list of fragments with an optional delay between them."""

    def __init__(
        self,
        adapter: "StubAdapter",
        request: GenerationRequest,
        token: CancellationToken,
        fragments: Sequence[str],
        request_id: str = ""
    ):
        super().__init__(adapter.provider.value, request, token, request_id=request_id)
        self.adapter = adapter
        self.fragments = list(fragments)
        self._index = 0

    async def _connect(self) -> None:
        self.adapter.connect_calls += 1
        if self.adapter.fail_on_connect is not None:
            raise UpstreamError(
                self.adapter.fail_on_connect,
                self.provider,
                provider_message="stub failure before first fragment",
                request_id=self.request_id,
            )

    async def _next_fragment(self) -> Optional[Fragment]:
        if self.adapter.fail_after is not None and self._index >= self.adapter.fail_after:
            raise UpstreamError(
                UpstreamErrorKind.NETWORK,
                self.provider,
                provider_message="stub stream interrupted",
                request_id=self.request_id,
            )

        if self._index >= len(self.fragments):
            if self.adapter.hang_at_end:
                await asyncio.Event().wait()
            return None

        if self.adapter.delay:
            await asyncio.sleep(self.adapter.delay)

        text = self.fragments[self._index]
        self._index += 1
        self.adapter.fragments_emitted += 1
        return Fragment(text=text)

    async def _close(self) -> None:
        self.adapter.closed_streams += 1


class StubAdapter(BaseAdapter):
    """
    Deterministic adapter for tests/smoke checks.

    Args:
        fragments: Fixed fragments to yield; derived from the prompt if None
        delay: Seconds to wait before each fragment
        fail_on_connect: Raise an UpstreamError of this kind when connecting
        fail_after: Raise a network error after this many fragments
        hang_at_end: Never finish after the last fragment (until cancelled)
    """

    provider = Provider.STUB

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        fragments: Optional[Sequence[str]] = None,
        delay: float = 0.0,
        fail_on_connect: Optional[UpstreamErrorKind] = None,
        fail_after: Optional[int] = None,
        hang_at_end: bool = False
    ):
        super().__init__(config or AdapterConfig(api_key="stub", default_model="stub-model"))
        self.fragments = list(fragments) if fragments is not None else None
        self.delay = delay
        self.fail_on_connect = fail_on_connect
        self.fail_after = fail_after
        self.hang_at_end = hang_at_end

        self.connect_calls = 0
        self.closed_streams = 0
        self.fragments_emitted = 0

    def open(
        self,
        request: GenerationRequest,
        token: CancellationToken,
        request_id: str = ""
    ) -> StubStream:
        fragments = self.fragments if self.fragments is not None else scripted_fragments(request.prompt)
        return StubStream(self, request, token, fragments, request_id=request_id)
