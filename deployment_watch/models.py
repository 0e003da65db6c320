from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

# "auto" on the wire means no upper bound
AUTO = "auto"


class MatchPolicy(str, Enum):
    BETWEEN = "between"  # min <= count <= max, both inclusive
    AT_LEAST_MIN = "at-least-min"  # count >= max(1, min), used right after a fresh deploy


class EventKind(str, Enum):
    BUILD_START = "build-start"
    COMMAND = "command"
    STDOUT = "stdout"
    STDERR = "stderr"
    STATE_CHANGE = "state-change"


class DeploymentState(str, Enum):
    INITIALIZING = "INITIALIZING"
    BUILDING = "BUILDING"
    DEPLOYING = "DEPLOYING"
    READY = "READY"
    ERROR = "ERROR"


class BuildSignal(str, Enum):
    BUILD_START = "build-start"
    COMMAND = "command"
    STDOUT = "stdout"
    STDERR = "stderr"
    COMPLETED = "build-completed"
    FAILED = "build-failed"


# Lifecycle only moves forward through these ranks; unknown values are accepted as-is
STATE_RANK = {
    DeploymentState.INITIALIZING.value: 0,
    DeploymentState.BUILDING.value: 1,
    DeploymentState.DEPLOYING.value: 2,
    DeploymentState.READY.value: 3,
    DeploymentState.ERROR.value: 3,
}
TERMINAL_STATES = frozenset({DeploymentState.READY.value, DeploymentState.ERROR.value})


def is_between(count, minimum, maximum=None):
    """Inclusive range check, maximum=None means unbounded"""
    if count < minimum:
        return False
    if maximum is not None and count > maximum:
        return False
    return True


@dataclass(frozen=True)
class RegionConstraint:
    """Desired instance bounds for one region/DC"""
    min: int = 0
    max: int = None  # None = unbounded

    @property
    def unbounded(self):
        return self.max is None

    def is_satisfied_by(self, count, policy=MatchPolicy.BETWEEN):
        if policy == MatchPolicy.AT_LEAST_MIN:
            return count >= max(1, self.min)
        return is_between(count, self.min, self.max)

    def to_wire(self):
        return {"min": self.min, "max": AUTO if self.max is None else self.max}

    @classmethod
    def from_wire(cls, data):
        data = data or {}
        minimum = data.get("min", 0)
        maximum = data.get("max", AUTO)
        return cls(
            min=0 if minimum in (None, AUTO) else int(minimum),
            max=None if maximum in (None, AUTO) else int(maximum),
        )

    def __str__(self):
        return f"min: {self.min}, max: {AUTO if self.max is None else self.max}"


@dataclass(frozen=True)
class RegionObservation:
    region_id: str
    running_instance_count: int


@dataclass(frozen=True)
class BuildEvent:
    sequence: int
    kind: str  # one of EventKind for the events we act on, raw string otherwise
    payload: dict = field(default_factory=dict)
    timestamp: datetime = None
    serial: str = None  # platform cursor, opaque

    @property
    def text(self):
        return self.payload.get("text") or ""

    @property
    def state(self):
        return self.payload.get("value")

    @classmethod
    def from_wire(cls, data, index=0):
        created = data.get("created")
        timestamp = None
        if created is not None:
            timestamp = datetime.fromtimestamp(created / 1000.0, tz=timezone.utc)
        return cls(
            sequence=index,
            kind=data.get("type", ""),
            payload=data.get("payload") or {},
            timestamp=timestamp,
            serial=data.get("serial"),
        )


@dataclass
class DeploymentLifecycle:
    """Client-side projection of the build state, fed by state-change events"""
    value: str = DeploymentState.INITIALIZING.value
    history: list = field(default_factory=list)  # every state actually entered, in order

    @property
    def terminal(self):
        return self.value in TERMINAL_STATES

    def advance(self, value):
        """Apply a state-change value; returns True if the state moved"""
        value = getattr(value, "value", value)
        if value is None or self.terminal or value == self.value:
            return False
        current_rank = STATE_RANK.get(self.value)
        new_rank = STATE_RANK.get(value)
        if current_rank is not None and new_rank is not None and new_rank < current_rank:
            return False
        self.value = value
        self.history.append(value)
        return True


@dataclass(frozen=True)
class BuildUpdate:
    """What the consumer hands to the display callback"""
    signal: BuildSignal
    text: str = ""
    event: BuildEvent = None


@dataclass(frozen=True)
class RegionConvergence:
    region_id: str
    instance_count: int
    elapsed_s: float  # seconds since the wait started


@dataclass
class ConvergenceResult:
    """Results from a successful convergence wait"""
    converged: dict = field(default_factory=dict)  # region id -> RegionConvergence, discovery order
    cycles: int = 0  # snapshot fetches attempted
    skipped_cycles: int = 0  # cycles where the snapshot was unavailable
    elapsed_s: float = 0.0


@dataclass
class Deployment:
    uid: str
    url: str = None
    type: str = None
    state: str = None
    scale: dict = field(default_factory=dict)  # region id -> RegionConstraint

    @classmethod
    def from_wire(cls, data):
        return cls(
            uid=data.get("uid") or data.get("deploymentId") or data.get("id"),
            url=data.get("url"),
            type=data.get("type"),
            state=data.get("state") or data.get("readyState"),
            scale={dc: RegionConstraint.from_wire(c) for dc, c in (data.get("scale") or {}).items()},
        )


@dataclass
class ClientConfig:
    """Transport settings for the remote platform"""
    api_url: str = "https://api.zeit.co"
    token: str = None
    team_id: str = None
    request_timeout_s: float = 30.0


@dataclass
class VerifyConfig:
    """Configuration for convergence verification"""
    deadline_s: float = 120.0  # Give up after this long
    poll_interval_s: float = 0.5  # Sleep between snapshot fetches
    policy: MatchPolicy = MatchPolicy.BETWEEN
