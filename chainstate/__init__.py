from .core.settings import __version__, version_split, DEFAULTS
from .utils.btlogging import logging
from .utils.easy_imports import *
