import sys

from .models import Wish


def terminal_bell(wish: Wish, stream=None):
    """Rings the terminal bell once as the lantern is launched."""
    stream = stream or sys.stdout
    stream.write("\a")
    stream.flush()
