from .replay import ReplayReport, replay_attempt

__all__ = ["ReplayReport", "replay_attempt"]
