"""Audio processing utilities for PCM data.

Converts raw PCM bytes to numpy arrays, wraps them in WAV containers,
decodes downloaded clips, and computes the byte-scaled frequency
magnitudes the visualizer draws.
"""

import io

import numpy as np
import soundfile as sf


class AudioProcessor:
    """Handles PCM audio data conversion and analysis.

    Provides utilities for converting raw PCM bytes to numpy arrays,
    packaging them as WAV bytes, decoding clips for playback, and
    detecting silence via RMS energy.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        sample_width: int = 2,
        channels: int = 1,
    ) -> None:
        """Initialize the audio processor.

        Args:
            sample_rate: Audio sample rate in Hz.
            sample_width: Bytes per sample (2 = 16-bit signed PCM).
            channels: Number of audio channels (1 = mono).
        """
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.channels = channels

    def pcm_to_ndarray(self, pcm_data: bytes) -> np.ndarray:
        """Convert raw PCM bytes (16-bit signed) to float32 numpy array.

        Args:
            pcm_data: Raw interleaved PCM bytes (16-bit).

        Returns:
            Float32 numpy array normalized to [-1.0, 1.0].

        Raises:
            ValueError: If data length is not aligned to sample frame size.
        """
        frame_size = self.sample_width * self.channels
        if len(pcm_data) % frame_size != 0:
            raise ValueError(
                f"PCM data length ({len(pcm_data)}) is not aligned to frame size ({frame_size})"
            )
        # Convert 16-bit signed integers to float32 in [-1.0, 1.0] range
        return np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) / 32768.0

    def encode_wav(self, pcm_data: bytes) -> bytes:
        """Wrap raw PCM16 bytes in a WAV container.

        Args:
            pcm_data: Raw interleaved PCM bytes; may be empty.

        Returns:
            A complete WAV file as bytes.
        """
        frame_size = self.sample_width * self.channels
        if len(pcm_data) % frame_size != 0:
            raise ValueError(
                f"PCM data length ({len(pcm_data)}) is not aligned to frame size ({frame_size})"
            )
        audio = np.frombuffer(pcm_data, dtype=np.int16).reshape(-1, self.channels)
        out = io.BytesIO()
        sf.write(out, audio, self.sample_rate, format="WAV", subtype="PCM_16")
        return out.getvalue()

    def decode(self, data: bytes) -> tuple[np.ndarray, int]:
        """Decode an audio file held in memory.

        Returns:
            ``(frames, sample_rate)`` where frames is float32 with shape
            ``(n, channels)``.

        Raises:
            ValueError: If the payload is empty.
            soundfile.LibsndfileError: If the format cannot be decoded.
        """
        if not data:
            raise ValueError("Cannot decode empty audio data")
        frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        return frames, sample_rate

    def is_silent(self, audio: np.ndarray, threshold: float = 0.01) -> bool:
        """Check if an audio segment is silence based on RMS energy.

        Args:
            audio: Float32 numpy array of audio samples.
            threshold: RMS energy below this value is considered silence.

        Returns:
            True if the audio is silence.
        """
        if len(audio) == 0:
            return True
        # RMS (Root Mean Square) measures signal energy; low RMS = silence
        rms = np.sqrt(np.mean(audio**2))
        return float(rms) < threshold


class SpectrumAnalyser:
    """Byte-scaled frequency magnitudes with exponential smoothing.

    Mirrors what a browser analyser node reports: ``fft_size // 2`` bins,
    each in ``[0, 255]``, mapped linearly from ``[min_db, max_db]``.
    """

    def __init__(
        self,
        fft_size: int = 64,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ) -> None:
        if fft_size < 2 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 2, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size).astype(np.float32)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float32)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def update(self, samples: np.ndarray) -> np.ndarray:
        """Fold the newest mono samples into the spectrum.

        Args:
            samples: Float32 mono samples in [-1.0, 1.0]; only the last
                ``fft_size`` are analysed, shorter input is zero-padded.

        Returns:
            uint8 array of ``bin_count`` magnitudes.
        """
        frame = np.zeros(self.fft_size, dtype=np.float32)
        tail = np.asarray(samples, dtype=np.float32)[-self.fft_size :]
        frame[self.fft_size - len(tail) :] = tail

        magnitudes = np.abs(np.fft.rfft(frame * self._window))[: self.bin_count] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitudes

        db = 20.0 * np.log10(np.maximum(self._smoothed, 1e-12))
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def reset(self) -> None:
        self._smoothed = np.zeros(self.bin_count, dtype=np.float32)
