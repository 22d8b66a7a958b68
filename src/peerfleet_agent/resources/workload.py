"""Workload (deployment) rules.

The pod template is owned and rewritten every pass. Replicas and the
selector are set at creation only: the selector is immutable once created,
and replicas may be scaled by hand.
"""

from typing import Any, Dict

from . import DerivedResource, ResourceHandler, ResourceKind


class WorkloadHandler(ResourceHandler):
    kind = ResourceKind.WORKLOAD

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        spec = obj.setdefault("spec", {})
        if creating:
            spec["replicas"] = 1
            spec["selector"] = {"matchLabels": dict(desired.labels)}
        spec["template"] = self._copy(desired.body["spec"]["template"])
