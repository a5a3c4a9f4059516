"""Microphone capture using sounddevice."""

import threading
from typing import Callable, Optional
import sounddevice as sd
import structlog


logger = structlog.get_logger()


class MicrophoneCapture:
    """
    Captures 16-bit PCM from the default input device and hands each block
    to a callback.
    """

    def __init__(
        self,
        on_chunk: Callable[[bytes], None],
        sample_rate: int = 16000,
        channels: int = 1,
        block_duration: float = 0.1,  # 100ms blocks
        device: Optional[int] = None,
    ):
        self.on_chunk = on_chunk
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = int(sample_rate * block_duration)
        self.device = device
        self.audio_stream: Optional[sd.RawInputStream] = None
        self.is_recording = False
        self.chunks_captured = 0
        self._lock = threading.Lock()

    def audio_callback(self, indata, frames: int, time_info, status) -> None:
        """sounddevice callback; runs on the audio thread."""
        if status:
            logger.warning("Audio callback status", status=str(status))
        if not self.is_recording:
            return
        self.chunks_captured += 1
        try:
            self.on_chunk(bytes(indata))
        except Exception as e:
            logger.error("Audio chunk handler failed", error=str(e))

    def start(self) -> None:
        """Open the input stream and start capturing."""
        with self._lock:
            if self.is_recording:
                return
            try:
                self.audio_stream = sd.RawInputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=self.block_size,
                    device=self.device,
                    callback=self.audio_callback,
                    latency="low",
                )
                self.audio_stream.start()
            except Exception as e:
                logger.error("Failed to start microphone", error=str(e))
                self.audio_stream = None
                raise
            self.is_recording = True
            logger.info(
                "Microphone capture started",
                sample_rate=self.sample_rate,
                blocksize=self.block_size,
            )

    def stop(self) -> None:
        """Stop capturing and release the input stream."""
        with self._lock:
            self.is_recording = False
            stream, self.audio_stream = self.audio_stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.warning("Error closing microphone stream", error=str(e))
            logger.info("Microphone capture stopped", chunks=self.chunks_captured)

    def get_status(self) -> dict:
        return {
            "is_recording": self.is_recording,
            "sample_rate": self.sample_rate,
            "chunks_captured": self.chunks_captured,
        }
