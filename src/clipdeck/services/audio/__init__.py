"""
Audio module - capture, playback, and visualization.
"""

from .capture import CaptureSession, get_device_owner
from .devices import SoundDeviceInput
from .player import SoundDevicePlayback
from .processor import AudioProcessor, SpectrumAnalyser
from .visualizer import Visualizer, WaveformFrame, render_circular_waveform

__all__ = [
    "AudioProcessor",
    "CaptureSession",
    "SoundDeviceInput",
    "SoundDevicePlayback",
    "SpectrumAnalyser",
    "Visualizer",
    "WaveformFrame",
    "get_device_owner",
    "render_circular_waveform",
]
