"""PCM playback of model audio using the pygame mixer."""

import queue
import threading
import time
from typing import Optional
import pygame
import structlog


logger = structlog.get_logger()


class AudioPlayer:
    """
    Plays 16-bit mono PCM chunks in arrival order.

    Chunks are queued from the session thread and played on a worker
    thread so that message handling never waits on the speaker.
    """

    def __init__(self, sample_rate: int = 24000, channels: int = 1, max_queue: int = 500):
        self.sample_rate = sample_rate
        self.channels = channels
        self.audio_queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self.channel: Optional[pygame.mixer.Channel] = None
        self.playback_thread: Optional[threading.Thread] = None
        self.should_stop = False
        self.is_playing = False
        self.chunks_played = 0

    def initialize(self) -> None:
        """Initialize the mixer and start the playback worker."""
        logger.info("Initializing audio player", sample_rate=self.sample_rate)
        pygame.mixer.pre_init(
            frequency=self.sample_rate, size=-16, channels=self.channels, buffer=1024
        )
        pygame.mixer.init()
        self.channel = pygame.mixer.Channel(0)

        self.should_stop = False
        self.playback_thread = threading.Thread(
            target=self._playback_worker, daemon=True, name="Audio-Player"
        )
        self.playback_thread.start()

    def play_audio(self, pcm: bytes) -> None:
        """Queue a PCM chunk for playback."""
        if not pcm:
            return
        try:
            self.audio_queue.put_nowait(pcm)
        except queue.Full:
            logger.warning("Audio queue full, dropping chunk")

    def _playback_worker(self) -> None:
        """Worker thread for audio playback."""
        while not self.should_stop:
            try:
                pcm = self.audio_queue.get(timeout=0.1)
            except queue.Empty:
                if self.is_playing and not self.channel.get_busy():
                    self.is_playing = False
                continue

            try:
                sound = pygame.mixer.Sound(buffer=pcm)
                if not self.channel.get_busy():
                    self.channel.play(sound)
                else:
                    # A channel holds one queued sound at a time
                    while self.channel.get_queue() is not None and not self.should_stop:
                        time.sleep(0.005)
                    self.channel.queue(sound)
                self.is_playing = True
                self.chunks_played += 1
            except Exception as e:
                logger.error("Error in playback worker", error=str(e))
            finally:
                self.audio_queue.task_done()

    def interrupt(self) -> None:
        """Drop queued audio and stop the current chunk."""
        while True:
            try:
                self.audio_queue.get_nowait()
                self.audio_queue.task_done()
            except queue.Empty:
                break
        if self.channel is not None:
            self.channel.stop()
        self.is_playing = False
        logger.debug("Audio playback interrupted")

    def stop(self) -> None:
        """Stop playback and release the mixer."""
        logger.info("Stopping audio player")
        self.should_stop = True
        self.interrupt()
        if self.playback_thread and self.playback_thread.is_alive():
            self.playback_thread.join(timeout=2.0)
        if pygame.mixer.get_init() is not None:
            pygame.mixer.quit()
        self.channel = None

    def get_status(self) -> dict:
        return {
            "is_playing": self.is_playing,
            "queue_size": self.audio_queue.qsize(),
            "chunks_played": self.chunks_played,
            "playback_thread_alive": self.playback_thread.is_alive()
            if self.playback_thread
            else False,
        }
