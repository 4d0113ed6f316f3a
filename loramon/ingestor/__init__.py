# Copyright © 2025-26 l5yth & contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""High-level API for the LoRa packet ingestor."""

from __future__ import annotations

import sys
import types

from . import (
    config,
    daemon,
    handlers,
    interfaces,
    packets,
    persistence,
    queue,
    serialization,
    store,
)

__all__: list[str] = []


def _reexport(module) -> None:
    names = getattr(module, "__all__", [])
    for name in names:
        globals()[name] = getattr(module, name)
    __all__.extend(names)


for _module in (
    packets,
    serialization,
    store,
    handlers,
    persistence,
    queue,
    interfaces,
    daemon,
):
    _reexport(_module)

_CONFIG_ATTRS = set(config.__all__)

__all__.extend(sorted(_CONFIG_ATTRS))


class _IngestorModule(types.ModuleType):
    """Module proxy that forwards configuration state."""

    def __getattr__(self, name: str):  # type: ignore[override]
        """Resolve configuration attributes from :mod:`config`."""

        if name in _CONFIG_ATTRS:
            return getattr(config, name)
        raise AttributeError(name)

    def __setattr__(self, name: str, value):  # type: ignore[override]
        """Propagate configuration assignments to :mod:`config`."""

        if name in _CONFIG_ATTRS:
            setattr(config, name, value)
            return
        super().__setattr__(name, value)


sys.modules[__name__].__class__ = _IngestorModule
