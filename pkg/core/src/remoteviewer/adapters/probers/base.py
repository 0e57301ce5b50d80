"""
Prober contract and the ordered fallback chain.

A prober never raises for an unreadable file: it returns a ProbeResult with
``error`` set, so a chain can move on to the next strategy and a scan can
record the failure per file.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from ...infra.exceptions import ProbeFailure

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    duration_seconds: int | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    error: str | None = None
    strategy: str | None = None
    attempts: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.duration_seconds is not None and self.duration_seconds > 0

    def raise_for_failure(self) -> None:
        if not self.success:
            raise ProbeFailure(self.error or "No duration found")


class Prober(Protocol):
    """Contract for all probers."""

    name: str
    """Unique strategy name, e.g. 'ffprobe', 'moov'"""

    def probe(self, url: str) -> ProbeResult:
        """Return duration/codec metadata for the media at ``url``."""
        ...


class ProberChain:
    """Runs probers in order until one produces a positive duration."""

    name = "chain"

    def __init__(self, probers: Sequence[Prober]):
        if not probers:
            raise ValueError("ProberChain needs at least one prober")
        self.probers = list(probers)

    def probe(self, url: str) -> ProbeResult:
        video_codec: str | None = None
        audio_codec: str | None = None
        errors: list[str] = []
        attempts: list[str] = []

        for prober in self.probers:
            attempts.append(prober.name)
            try:
                result = prober.probe(url)
            except Exception as e:
                # A broken strategy must not cost the file its remaining strategies
                logger.warning("Prober %s crashed on %s: %s", prober.name, url, e)
                result = ProbeResult(error=f"{type(e).__name__}: {e}")

            video_codec = video_codec or result.video_codec
            audio_codec = audio_codec or result.audio_codec
            if result.success:
                return ProbeResult(
                    duration_seconds=result.duration_seconds,
                    video_codec=video_codec,
                    audio_codec=audio_codec,
                    strategy=prober.name,
                    attempts=attempts,
                )
            errors.append(f"{prober.name}: {result.error or 'no duration'}")
            logger.info("Prober %s found no duration for %s, trying next", prober.name, url)

        return ProbeResult(
            video_codec=video_codec,
            audio_codec=audio_codec,
            error="; ".join(errors),
            attempts=attempts,
        )
