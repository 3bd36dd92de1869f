from __future__ import annotations
from dataclasses import dataclass, replace
import os
import os.path
import sys

from mded.errors import Error
from mded.settings import SAVE_DEBOUNCE_SECONDS

APP_NAME = 'mded'

DATA_DIR_ENV = 'MDED_DATA_DIR'
"""Environment variable that overrides the data directory chosen by :func:`default_data_dir`."""


def platform_data_dir() -> str:
    """Returns the per-user application data directory for the current platform.

    * Linux and other Unix: ``$XDG_DATA_HOME``, or ``~/.local/share``
    * macOS: ``~/Library/Application Support``
    * Windows: ``%APPDATA%``

    Raises :exc:`mded.errors.Error` if the directory cannot be determined.
    """
    if sys.platform.startswith('win'):
        appdata = os.environ.get('APPDATA')
        if not appdata:
            raise Error('Could not determine data directory: APPDATA is not set')
        return appdata
    home = os.path.expanduser('~')
    if home == '~':
        raise Error('Could not determine data directory: home directory is unknown')
    if sys.platform == 'darwin':
        return os.path.join(home, 'Library', 'Application Support')
    return os.environ.get('XDG_DATA_HOME') or os.path.join(home, '.local', 'share')


def default_data_dir() -> str:
    return os.environ.get(DATA_DIR_ENV) or os.path.join(platform_data_dir(), APP_NAME)


@dataclass
class MdedConf:
    base_dir: str
    """Directory holding ``notes/``, ``assets/``, ``config.json`` and ``note-order.json``. Created if missing."""

    save_delay: float = SAVE_DEBOUNCE_SECONDS
    """Seconds of quiet before a scheduled configuration save is written."""

    @classmethod
    def for_user(cls) -> MdedConf:
        """Returns the configuration for the current user, using :func:`default_data_dir`."""
        return cls(base_dir=default_data_dir())

    def standardize(self) -> MdedConf:
        return replace(self, base_dir=os.path.realpath(os.path.expanduser(self.base_dir)))

    def instantiate(self):
        from mded.api import Mded
        return Mded(self.standardize())
