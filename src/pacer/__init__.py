"""
*PACER*

Adaptive report-step and sub-step control for implicit reservoir simulators.
"""

from .errors import *  # noqa
from .timing import *  # noqa
from .config import *  # noqa
from .schedule import *  # noqa
from .reports import *  # noqa
from .protocols import *  # noqa
from .stores import *  # noqa
from .output import *  # noqa
from .restart import *  # noqa
from .solvers import *  # noqa
from .stepping import *  # noqa
from .simulator import *  # noqa
