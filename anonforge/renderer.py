"""Selective blur — re-render a video, blurring only frames inside blur segments.

The transformation service cannot reliably combine a time range with a
filter, so blur confined to segments is done locally: every frame is decoded,
blurred or copied depending on its timestamp, and written to a new encoding.
The output container and codec may differ from the input.
"""

import concurrent.futures
import logging
import subprocess
from pathlib import Path
from typing import Callable, Iterable

import cv2
import numpy as np

from anonforge import ffutil
from anonforge.errors import RendererError
from anonforge.models import BlurSegment, Segment
from anonforge.segments import blur_segments, segments_at

log = logging.getLogger(__name__)

DEFAULT_FPS = 30.0
LOAD_TIMEOUT = 10.0


def blur_sigma(strength: int) -> float:
    """Map the service's 1..2000 blur scale to a Gaussian sigma in pixels."""
    return max(1.0, strength / 100.0)


def blur_frame(frame: np.ndarray, strength: int) -> np.ndarray:
    return cv2.GaussianBlur(frame, (0, 0), sigmaX=blur_sigma(strength))


def strength_at(segments: Iterable[BlurSegment], t: float) -> int | None:
    """Strongest blur active at time ``t``, or None when no segment covers it."""
    active = segments_at(segments, t)
    if not active:
        return None
    return max(s.blur_strength for s in active)


def _release_late_capture(future: concurrent.futures.Future) -> None:
    """Release a capture whose open finished after the caller gave up on it."""
    if future.cancelled() or future.exception() is not None:
        return
    log.debug("Releasing video capture that opened after the load timeout")
    future.result().release()


class SelectiveBlurRenderer:
    def __init__(
        self,
        load_timeout: float = LOAD_TIMEOUT,
        codec: str = "mp4v",
        keep_audio: bool = True,
    ):
        self.load_timeout = load_timeout
        self.codec = codec
        self.keep_audio = keep_audio

    def _open(self, source: Path) -> cv2.VideoCapture:
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(cv2.VideoCapture, str(source))
            cap = future.result(timeout=self.load_timeout)
        except concurrent.futures.TimeoutError as e:
            future.add_done_callback(_release_late_capture)
            raise RendererError(
                f"Video metadata did not load within {self.load_timeout}s: {source}"
            ) from e
        finally:
            pool.shutdown(wait=False)

        if not cap.isOpened():
            cap.release()
            raise RendererError(f"Failed to load video file: {source}")
        return cap

    def render(
        self,
        source: Path,
        segments: Iterable[Segment],
        output: Path,
        on_progress: Callable[[float], None] | None = None,
    ) -> Path:
        """Write a copy of ``source`` to ``output`` with blur applied per segment."""
        blurs = blur_segments(segments)
        source = Path(source)
        output = Path(output)

        cap = self._open(source)
        try:
            fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
            if fps <= 0:
                fps = DEFAULT_FPS
            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            if width <= 0 or height <= 0:
                raise RendererError(f"No video dimensions in {source}")

            video_path = output.with_name(f"{output.stem}_video{output.suffix}") if self.keep_audio else output
            writer = cv2.VideoWriter(
                str(video_path), cv2.VideoWriter_fourcc(*self.codec), fps, (width, height)
            )
            if not writer.isOpened():
                raise RendererError(f"Cannot open video writer for {video_path}")

            frames = 0
            blurred = 0
            try:
                while True:
                    ok, frame = cap.read()
                    if not ok:
                        break
                    strength = strength_at(blurs, frames / fps)
                    if strength is not None:
                        frame = blur_frame(frame, strength)
                        blurred += 1
                    writer.write(frame)
                    frames += 1
                    if on_progress and total:
                        on_progress(min(1.0, frames / total))
            except cv2.error as e:
                raise RendererError(f"Frame processing failed at frame {frames}: {e}") from e
            finally:
                writer.release()
        finally:
            cap.release()

        if frames == 0:
            raise RendererError(f"No frames decoded from {source}")
        log.info("Rendered %d frames (%d blurred) at %.2f fps", frames, blurred, fps)

        if self.keep_audio:
            try:
                ffutil.mux_audio(video_path, source, output)
            except (OSError, subprocess.CalledProcessError) as e:
                raise RendererError(f"Re-muxing audio failed: {e}") from e
            finally:
                video_path.unlink(missing_ok=True)

        return output
