"""
Encoder Argument Profiles
=========================

ffmpeg argument lists for the two streaming modes.

The codec, bitrate and container parameters are constant and tuned for
low CPU use on small containers. Only the frame rate, the scale target,
the input block and the destination URL vary per session.

Profiles:
    rendered_page: image2pipe on stdin + silent lavfi audio
    direct_url:    media URL read at native rate, source audio kept
"""

from dataclasses import dataclass
from typing import List

from pagecast.models.source import DirectUrlSource, RenderedPageSource, SourceRef


SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=22050"

# Frame image format on stdin -> ffmpeg input decoder
IMAGE_DECODERS = {
    "png": "png",
    "jpeg": "mjpeg",
}


@dataclass(frozen=True)
class EncoderProfile:
    """
    Fixed encode/publish parameters.

    Attributes:
        scale_width: Output width in pixels (height keeps aspect ratio)
        image_format: Format of frames written to stdin ("png" or "jpeg")
        video_bitrate: Target/max video bitrate
        video_bufsize: Rate-control buffer size
        gop_size: Keyframe interval in frames
        audio_bitrate: AAC bitrate
        audio_sample_rate: AAC sample rate
    """

    scale_width: int = 640
    image_format: str = "png"
    video_bitrate: str = "500k"
    video_bufsize: str = "1000k"
    gop_size: int = 10
    audio_bitrate: str = "64k"
    audio_sample_rate: int = 22050

    def arguments(self, source: SourceRef, frame_rate: int, target_url: str) -> List[str]:
        """
        Build the ffmpeg argument list (without the executable).

        Args:
            source: What to stream
            frame_rate: Output frame rate
            target_url: Ingest URL receiving the FLV stream

        Returns:
            Argument list for asyncio.create_subprocess_exec
        """
        if isinstance(source, RenderedPageSource):
            return self.rendered_page_arguments(frame_rate, target_url)
        if isinstance(source, DirectUrlSource):
            return self.direct_url_arguments(source.url, frame_rate, target_url)
        raise TypeError(f"Unsupported source: {source!r}")

    def rendered_page_arguments(self, frame_rate: int, target_url: str) -> List[str]:
        """Arguments for frames piped on stdin plus a silent audio track."""
        fps = str(frame_rate)
        decoder = IMAGE_DECODERS.get(self.image_format)
        if decoder is None:
            raise ValueError(f"Unsupported image format: {self.image_format}")

        return [
            "-f", "image2pipe",
            "-vcodec", decoder,
            "-r", fps,
            "-i", "-",
            "-f", "lavfi",
            "-i", SILENT_AUDIO_SOURCE,
            *self._video_arguments(fps),
            "-vf", f"scale={self.scale_width}:-2,fps={fps}",
            *self._audio_arguments(),
            *self._output_arguments(target_url),
        ]

    def direct_url_arguments(self, source_url: str, frame_rate: int, target_url: str) -> List[str]:
        """Arguments for a media URL read at its native rate."""
        fps = str(frame_rate)
        return [
            "-re",
            "-rtsp_transport", "tcp",
            "-fflags", "nobuffer",
            "-flags", "low_delay",
            "-strict", "experimental",
            "-i", source_url,
            "-vf", f"fps={fps},scale={self.scale_width}:-2",
            *self._video_arguments(fps),
            *self._audio_arguments(),
            *self._output_arguments(target_url),
        ]

    def _video_arguments(self, fps: str) -> List[str]:
        return [
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-tune", "zerolatency",
            "-profile:v", "baseline",
            "-level", "3.0",
            "-pix_fmt", "yuv420p",
            "-g", str(self.gop_size),
            "-b:v", self.video_bitrate,
            "-maxrate", self.video_bitrate,
            "-bufsize", self.video_bufsize,
            "-r", fps,
        ]

    def _audio_arguments(self) -> List[str]:
        return [
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-ar", str(self.audio_sample_rate),
            "-ac", "2",
        ]

    def _output_arguments(self, target_url: str) -> List[str]:
        return [
            "-f", "flv",
            "-flvflags", "no_duration_filesize",
            target_url,
        ]
