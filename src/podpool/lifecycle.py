"""Setting up pods in resolution order and tearing them down in reverse."""

import logging
from typing import Iterable, Sequence

from podpool.context import Context
from podpool.domain import Ref
from podpool.entries import ParsedPod
from podpool.errors import FilterFailed, SetupFailed

__all__ = ["LifecycleCoordinator"]

logger = logging.getLogger(__name__)


class LifecycleCoordinator:
    """Run the pod hooks of a pool over an order computed by :func:`~podpool.resolution.resolve`."""

    def __init__(self, pods: Sequence[ParsedPod]):
        self._pods = pods

    def set_up(self, order: Sequence[int], ctx: Context) -> None:
        """Set up the pods in ``order``.

        For each pod the import fields are populated, ``set_up`` is called, and
        then the filters attached to the pod's exports run, highest priority
        first. If anything fails, every pod already set up is torn down again
        in reverse order before the error propagates.

        Raises:
            SetupFailed: If an import field could not be assigned or a pod's
                ``set_up`` raised.
            FilterFailed: If a filter hook raised.
        """
        completed: list[ParsedPod] = []
        try:
            for index in order:
                pod = self._pods[index]
                self._set_up_pod(pod, ctx)
                completed.append(pod)
        except BaseException:
            if completed:
                logger.warning(
                    "Setup aborted, rolling back %d pod(s): %s",
                    len(completed),
                    [pod.name for pod in completed],
                )
            self.tear_down_pods(reversed(completed))
            raise

    def tear_down(self, order: Sequence[int]) -> None:
        """Tear down the pods in reverse of ``order``."""
        self.tear_down_pods(self._pods[index] for index in reversed(order))

    def tear_down_pods(self, pods: Iterable[ParsedPod]) -> None:
        for pod in pods:
            self._tear_down_pod(pod)

    def _set_up_pod(self, pod: ParsedPod, ctx: Context) -> None:
        for entry in pod.imports:
            export = entry.export
            exporter = self._pods[export.pod_index].raw
            try:
                setattr(pod.raw, entry.field_name, getattr(exporter, export.field_name, None))
            except Exception as err:
                raise SetupFailed(
                    "import assignment failed",
                    cause=err,
                    pod=pod.name,
                    pod_index=pod.index,
                    import_entry_path=entry.path,
                ) from err

        try:
            pod.raw.set_up(ctx)
        except Exception as err:
            raise SetupFailed(
                "set_up raised", cause=err, pod=pod.name, pod_index=pod.index
            ) from err

        try:
            self._run_filters(pod, ctx)
        except BaseException:
            # the pod's own set_up succeeded, so it is undone here
            self._tear_down_pod(pod)
            raise

        logger.debug("Set up pod %s", pod.name)

    def _run_filters(self, pod: ParsedPod, ctx: Context) -> None:
        for export in pod.exports:
            ref = Ref(pod.raw, export.field_name)
            for filter_entry in export.filters:
                setattr(self._pods[filter_entry.pod_index].raw, filter_entry.field_name, ref)

            for filter_entry in export.filters:
                try:
                    filter_entry.hook(ctx)
                except Exception as err:
                    raise FilterFailed(
                        "filter hook raised",
                        cause=err,
                        pod=pod.name,
                        pod_index=pod.index,
                        filter_entry_path=filter_entry.path,
                    ) from err

    def _tear_down_pod(self, pod: ParsedPod) -> None:
        try:
            pod.raw.tear_down()
        except Exception:
            logger.exception("tear_down of pod %s failed", pod.name)

        for entry in pod.entries:
            try:
                setattr(pod.raw, entry.field_name, None)
            except Exception:
                logger.exception("Resetting %s failed", entry.path)

        logger.debug("Tore down pod %s", pod.name)
