"""Provides the main entry point for using the library, :class:`Mded`"""

from __future__ import annotations
import logging

from mded.conf import MdedConf
from mded.models import LastNote, WindowBounds
from mded.settings import ConfigStore
from mded.store import DocumentStore
from mded.window import clamp_bounds

logger = logging.getLogger(__name__)


class Mded:
    """The process-wide services for one data directory.

    Build one instance at startup, generally via :meth:`Mded.for_user`, and share it with whatever dispatches
    commands. Call :meth:`close` when done, or use the instance as a context manager, so that a configuration
    save that is still waiting on its debounce timer gets written.

    .. attribute:: conf
       :type: mded.conf.MdedConf

    .. attribute:: repo
       :type: mded.store.DocumentStore

       Notes, folders, pins, ordering, and screenshots.

    .. attribute:: config
       :type: mded.settings.ConfigStore

    Example, creating a note and remembering it as the last opened one:

    .. code-block:: python

       from mded.api import Mded
       with Mded.for_user() as app:
           note_id, path = app.repo.create_note('Ideas')
           app.save_last_note(note_id, 'Ideas')
    """

    @staticmethod
    def for_user() -> Mded:
        """Creates an instance for the user's data directory (see :meth:`mded.conf.MdedConf.for_user`)."""
        return MdedConf.for_user().instantiate()

    def __init__(self, conf: MdedConf):
        self.conf = conf
        self.repo = DocumentStore(conf.base_dir)
        self.repo.ensure_directories()
        self.config = ConfigStore(self.repo.config_file, save_delay=conf.save_delay)
        logger.debug('Opened data directory %s', conf.base_dir)

    def toggle_pin_note(self, note_id: str) -> bool:
        """Toggles the note's pin in the configuration file and keeps :attr:`config` in step with it.

        Without the second step, the next configuration save would write back the pinned list as it was at startup.
        """
        pinned = self.repo.toggle_pin_note(note_id)
        self.config.set_pinned_notes(self.repo.pinned_notes())
        return pinned

    def get_last_note(self) -> LastNote:
        return self.config.get_last_note()

    def save_last_note(self, note_id, folder) -> None:
        self.config.save_last_note(note_id, folder)
        self.config.schedule_save()

    def get_global_shortcut(self) -> str:
        return self.config.get_global_shortcut()

    def set_global_shortcut(self, shortcut: str) -> None:
        self.config.set_global_shortcut(shortcut)
        self.config.schedule_save()

    def get_window_opacity(self) -> float:
        return self.config.get_window_opacity()

    def set_window_opacity(self, opacity: float) -> float:
        """Stores the opacity clamped to [0.3, 1.0] and returns the value actually stored."""
        opacity = self.config.set_window_opacity(opacity)
        self.config.schedule_save()
        return opacity

    def save_window_bounds(self, bounds: WindowBounds) -> WindowBounds:
        bounds = clamp_bounds(bounds)

        def mutate(config):
            config.window_bounds = bounds
        self.config.update(mutate)
        self.config.schedule_save()
        return bounds

    def save_minimal_bounds(self, bounds: WindowBounds) -> WindowBounds:
        bounds = clamp_bounds(bounds)

        def mutate(config):
            config.minimal_mode_bounds = bounds
        self.config.update(mutate)
        self.config.schedule_save()
        return bounds

    def get_auto_start(self) -> bool:
        return self.config.get().auto_start_on_boot

    def set_auto_start(self, enabled: bool) -> None:
        """Records the preference only; registering with the OS is up to the caller."""
        def mutate(config):
            config.auto_start_on_boot = enabled
        self.config.update(mutate)
        self.config.save_sync()

    def close(self):
        """Writes any pending configuration save."""
        self.config.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
