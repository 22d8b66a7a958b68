"""Endpoint (service) rules."""

from typing import Any, Dict

from . import DerivedResource, ResourceHandler, ResourceKind


class EndpointHandler(ResourceHandler):
    """Owns ports and selector. The cluster IP belongs to the store."""

    kind = ResourceKind.ENDPOINT

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        spec = obj.setdefault("spec", {})
        spec.setdefault("type", "ClusterIP")
        spec["ports"] = self._copy(desired.body["spec"]["ports"])
        spec["selector"] = self._copy(desired.body["spec"]["selector"])
