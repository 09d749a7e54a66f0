"""
Fixed-window evidence recorder.

Starts the platform capture, lets it run for at most RECORDING_MAX_SECONDS,
then force-stops the capture device and hands back the media URI. A
simulated progress counter runs next to the capture for display only.
"""

import asyncio
import logging
from typing import Callable, Optional

from common.constants import (
    RECORDING_MAX_SECONDS,
    RECORDING_PROGRESS_INTERVAL_SECONDS,
    RECORDING_PROGRESS_STEP,
    RECORDING_STOP_GRACE_SECONDS,
)

logger = logging.getLogger(__name__)


class RecordingError(Exception):
    """Capture failed or the device would not stop."""


class CaptureDevice:
    """Platform recorder boundary (camera + microphone)."""

    async def record(self, max_duration: float) -> str:
        """Capture until finished or stopped; return the media URI."""
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError


class Recorder:
    def __init__(
        self,
        device: CaptureDevice,
        max_duration: float = RECORDING_MAX_SECONDS,
        stop_grace: float = RECORDING_STOP_GRACE_SECONDS,
        progress_interval: float = RECORDING_PROGRESS_INTERVAL_SECONDS,
        on_progress: Optional[Callable[[int], None]] = None,
    ):
        self.device = device
        self.max_duration = max_duration
        self.stop_grace = stop_grace
        self.progress_interval = progress_interval
        self.on_progress = on_progress
        self.is_recording = False
        self.progress = 0
        self.error: Optional[str] = None

    async def _simulate_progress(self) -> None:
        while self.progress < 100:
            await asyncio.sleep(self.progress_interval)
            self.progress = min(self.progress + RECORDING_PROGRESS_STEP, 100)
            if self.on_progress:
                self.on_progress(self.progress)

    async def record(self) -> str:
        self.is_recording = True
        self.progress = 0
        self.error = None

        capture = asyncio.ensure_future(self.device.record(self.max_duration))
        ticker = asyncio.create_task(self._simulate_progress())
        try:
            done, _ = await asyncio.wait({capture}, timeout=self.max_duration)
            if not done:
                logger.info("Recording window of %ss elapsed, stopping capture", self.max_duration)
                try:
                    await self.device.stop()
                except Exception as e:
                    logger.warning("Error stopping recording: %s", e)

            try:
                uri = await asyncio.wait_for(capture, timeout=self.stop_grace)
            except asyncio.TimeoutError as e:
                raise RecordingError("Capture device did not stop recording") from e
            if not uri:
                raise RecordingError("Capture device returned no media")
            self.progress = 100
            return uri
        except RecordingError as e:
            self.error = str(e)
            raise
        except Exception as e:
            self.error = str(e) or "Failed to record video"
            raise RecordingError(self.error) from e
        finally:
            self.is_recording = False
            ticker.cancel()
            if not capture.done():
                capture.cancel()
