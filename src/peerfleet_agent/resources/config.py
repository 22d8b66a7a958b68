"""Config bundle and secret rules.

Both are fully owned key/value maps: the desired entries replace the live
ones, so an entry that stops being applicable is removed.
"""

from typing import Any, Dict

from . import DerivedResource, ResourceHandler, ResourceKind


class ConfigBundleHandler(ResourceHandler):
    kind = ResourceKind.CONFIG

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        obj["data"] = self._copy(desired.body["data"])


class SecretHandler(ResourceHandler):
    kind = ResourceKind.SECRET

    def apply_owned(self, obj: Dict[str, Any], desired: DerivedResource, creating: bool) -> None:
        obj["type"] = "Opaque"
        obj["data"] = self._copy(desired.body["data"])
