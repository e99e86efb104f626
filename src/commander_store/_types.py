"""Type aliases used throughout commander_store."""

from __future__ import annotations

import os  # noqa: TC003
from typing import Union

PathLike = Union[str, "os.PathLike[str]"]  # noqa: UP007
Metadata = dict[str, str]
