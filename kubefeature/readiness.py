"""Readiness Gate.

Re-evaluates the backing workload of a feature on every reconcile; there
are no timers.  Absent workloads are installed (unless the caller asks
for a pure observation) and reported as Installing for that tick.
"""

from __future__ import annotations

from kubefeature.drivers.base import FeatureDriver
from kubefeature.models.features import FeatureConfig
from kubefeature.models.state import Readiness
from kubefeature.observability.logging import get_logger
from kubefeature.remote.base import RemoteObjectAPI

_logger = get_logger("readiness")


class ReadinessGate:
    async def evaluate(
        self,
        remote: RemoteObjectAPI,
        driver: FeatureDriver,
        config: FeatureConfig,
        install: bool = True,
    ) -> Readiness:
        """Return the current readiness of *driver*'s backing workload.

        With ``install`` set, an absent workload is installed and the
        result is Installing.  Raises RemoteUnreachable from the remote API.
        """
        observed = await driver.workload_readiness(remote)
        if observed is Readiness.ABSENT and install:
            await driver.install_workload(remote, config)
            observed = Readiness.INSTALLING
        _logger.debug("readiness_observed", feature=driver.kind.value, readiness=observed.value)
        return observed
