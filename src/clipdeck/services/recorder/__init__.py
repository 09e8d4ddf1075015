"""
Recorder module - the record, label, and upload workflow.
"""

from .countdown import Countdown
from .gateway import UploadGateway
from .workflow import RecorderWorkflow

__all__ = ["Countdown", "RecorderWorkflow", "UploadGateway"]
