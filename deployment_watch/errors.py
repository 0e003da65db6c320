class WatchError(Exception):
    """Base class for every outcome a watch operation reports besides success"""


class ConvergenceTimeout(WatchError):
    """Deadline passed before every region matched its constraint"""

    def __init__(self, unconverged, elapsed_s):
        self.unconverged = frozenset(unconverged)
        self.elapsed_s = elapsed_s
        regions = ", ".join(sorted(self.unconverged))
        super().__init__(f"Timeout while verifying instance count ({elapsed_s:.1f}s), unverified: {regions}")


class BuildFailed(WatchError):
    """The build reached the ERROR state"""

    def __init__(self, deployment_id=None, event=None):
        self.deployment_id = deployment_id
        self.event = event
        super().__init__(f"Build failed for deployment {deployment_id}" if deployment_id else "Build failed")


class SourceUnavailable(WatchError):
    """The snapshot or event source failed before giving a definitive answer"""

    def __init__(self, message, cause=None):
        self.cause = cause
        super().__init__(message)


class WaitCancelled(WatchError):
    """The wait was aborted by the operator. Nothing remote is undone."""

    def __init__(self, reason="aborted"):
        self.reason = reason
        super().__init__(f"Wait cancelled ({reason})")


class DeploymentNotFound(WatchError):
    def __init__(self, deployment_id):
        self.deployment_id = deployment_id
        super().__init__(f"Failed to find deployment \"{deployment_id}\"")


class ScaleRejected(WatchError):
    """The platform refused the submitted scale constraints"""

    MESSAGES = {
        "forbidden_min_instances": "You can't scale to more than {limit} min instances with your current plan.",
        "forbidden_max_instances": "You can't scale to more than {limit} max instances with your current plan.",
        "wrong_min_max_relation": "Min number of instances can't be higher than max.",
    }

    def __init__(self, code, limit=None, message=None):
        self.code = code
        self.limit = limit
        if message is None:
            template = self.MESSAGES.get(code, "Scale rules rejected ({code})")
            message = template.format(limit=limit, code=code)
        super().__init__(message)
