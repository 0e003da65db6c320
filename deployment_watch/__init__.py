from .models import (
    RegionConstraint, RegionObservation, BuildEvent, BuildUpdate, BuildSignal, EventKind,
    DeploymentState, DeploymentLifecycle, ConvergenceResult, RegionConvergence,
    MatchPolicy, ClientConfig, VerifyConfig, Deployment, is_between
)
from .errors import (
    WatchError, ConvergenceTimeout, BuildFailed, SourceUnavailable, WaitCancelled,
    DeploymentNotFound, ScaleRejected
)
from .cancellation import CancellableWait
from .poller import ConvergencePoller
from .consumer import BuildEventConsumer
from .source import HttpStatusSource

__all__ = [
    "RegionConstraint", "RegionObservation", "BuildEvent", "BuildUpdate", "BuildSignal", "EventKind",
    "DeploymentState", "DeploymentLifecycle", "ConvergenceResult", "RegionConvergence",
    "MatchPolicy", "ClientConfig", "VerifyConfig", "Deployment", "is_between",
    "WatchError", "ConvergenceTimeout", "BuildFailed", "SourceUnavailable", "WaitCancelled",
    "DeploymentNotFound", "ScaleRejected",
    "CancellableWait", "ConvergencePoller", "BuildEventConsumer", "HttpStatusSource",
]
