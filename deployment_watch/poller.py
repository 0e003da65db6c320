import time

from .cancellation import CancellableWait
from .errors import ConvergenceTimeout, SourceUnavailable
from .logger import get_logger
from .models import ConvergenceResult, MatchPolicy, RegionConvergence, VerifyConfig


class ConvergencePoller:
    """Polls instance snapshots until every region matches its constraint"""

    def __init__(self, source, clock=time.monotonic):
        self.source = source
        self.clock = clock
        self.logger = get_logger("poller")

    @staticmethod
    def newly_converged(remaining, constraints, snapshot, policy=MatchPolicy.BETWEEN):
        """Regions from `remaining` satisfied by this snapshot, in snapshot order"""
        matches = []
        for region_id, observation in snapshot.items():
            if region_id in remaining and constraints[region_id].is_satisfied_by(
                    observation.running_instance_count, policy):
                matches.append(observation)
        return matches

    def _log_misses(self, remaining, constraints, snapshot):
        for region_id in remaining:
            observation = snapshot.get(region_id)
            if observation is None:
                self.logger.debug(f"missing data for dc {region_id}")
            else:
                self.logger.debug(f"dc \"{region_id}\" miss. intended: {constraints[region_id]}. "
                                  f"current: {observation.running_instance_count}")

    async def wait_for_convergence(self, deployment_id, constraints, config=None,
                                   on_region_converged=None, cancel=None):
        """Wait until the deployment's per-region instance counts satisfy `constraints`.

        Returns a ConvergenceResult with the elapsed time at which each region
        converged. Raises ConvergenceTimeout with the regions still pending once
        `config.deadline_s` has passed, or WaitCancelled if `cancel` is aborted.
        A snapshot fetch that fails is skipped and retried on the next cycle.
        """
        config = config or VerifyConfig()
        if config.poll_interval_s < 0:
            raise ValueError("poll_interval_s must be >= 0")
        cancel = cancel if cancel is not None else CancellableWait(signals=())

        start = self.clock()
        remaining = set(constraints)
        result = ConvergenceResult()
        self.logger.info(f"Verifying {len(remaining)} regions for deployment {deployment_id}")

        while True:
            cancel.checkpoint()
            elapsed = self.clock() - start
            if elapsed >= config.deadline_s:
                self.logger.error(f"Verification timed out after {elapsed:.1f}s, "
                                  f"unverified: {', '.join(sorted(remaining))}")
                raise ConvergenceTimeout(remaining, elapsed)

            result.cycles += 1
            try:
                snapshot = await cancel.call(self.source.get_snapshot(deployment_id))
            except SourceUnavailable as e:
                result.skipped_cycles += 1
                self.logger.warning(f"Snapshot unavailable on cycle {result.cycles}: {e}")
                snapshot = None

            if snapshot is not None:
                elapsed = self.clock() - start
                for observation in self.newly_converged(remaining, constraints, snapshot, config.policy):
                    remaining.discard(observation.region_id)
                    converged = RegionConvergence(observation.region_id,
                                                  observation.running_instance_count, elapsed)
                    result.converged[observation.region_id] = converged
                    self.logger.info(f"dc \"{observation.region_id}\" match "
                                     f"({observation.running_instance_count}) after {elapsed:.1f}s")
                    if on_region_converged is not None:
                        on_region_converged(converged.region_id, converged.instance_count, elapsed)
                self._log_misses(remaining, constraints, snapshot)

            if not remaining:
                result.elapsed_s = self.clock() - start
                return result

            # never sleep past the deadline
            remaining_s = max(0.0, config.deadline_s - (self.clock() - start))
            await cancel.sleep(min(config.poll_interval_s, remaining_s))
