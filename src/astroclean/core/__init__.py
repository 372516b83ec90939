from . import imaging
