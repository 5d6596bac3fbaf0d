"""Playback recovery core: reconnect policy, health audit and session state machine."""

from streamkeeper.playback.classifier import Action, ErrorClassifier
from streamkeeper.playback.controller import PlaybackSession, SessionController, State
from streamkeeper.playback.faults import ErrorReport, FaultCategory
from streamkeeper.playback.health import HealthMonitor
from streamkeeper.playback.retry import RetryPolicy, RetryState
from streamkeeper.playback.signals import AmbientSignalBridge, InteractionFlag, SignalHub
from streamkeeper.playback.ui_state import PlaybackUIState

__all__ = [
    "Action",
    "AmbientSignalBridge",
    "ErrorClassifier",
    "ErrorReport",
    "FaultCategory",
    "HealthMonitor",
    "InteractionFlag",
    "PlaybackSession",
    "PlaybackUIState",
    "RetryPolicy",
    "RetryState",
    "SessionController",
    "SignalHub",
    "State",
]
