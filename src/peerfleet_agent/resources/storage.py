"""Volume claim rules.

The storage backend cannot resize or reclass a bound claim, so the claim
spec is written once at creation. Later passes only merge labels.
"""

from typing import Any, Dict

from . import DerivedResource, ResourceHandler, ResourceKind


class VolumeClaimHandler(ResourceHandler):
    kind = ResourceKind.VOLUME

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        if creating:
            obj["spec"] = self._copy(desired.body["spec"])
