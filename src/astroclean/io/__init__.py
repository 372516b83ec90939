from .acb import ACBData, read_acb, parse_acb_lines
from .render import render_image
