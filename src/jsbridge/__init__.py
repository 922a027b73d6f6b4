from ._engine import *
from .context import *
from .exceptions import *
from .values import *
