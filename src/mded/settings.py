"""Provides :class:`ConfigStore`, which keeps the application configuration in memory and persists it."""

from __future__ import annotations
import copy
import json
import logging
import math
import os.path
from pathlib import Path
import threading
from typing import Any, Callable, Optional

from mded.errors import DecodeError, Error, StorageError, ValidationError
from mded.files import atomic_write_text, read_text
from mded.models import Config, LastNote, WindowBounds
from mded.window import clamp_opacity

logger = logging.getLogger(__name__)

SAVE_DEBOUNCE_SECONDS = 1.0
"""How long :meth:`ConfigStore.schedule_save` waits for further changes before writing."""

_U32_MAX = 2 ** 32 - 1
_I32_MIN = -2 ** 31
_I32_MAX = 2 ** 31 - 1


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _extract_bounds(value: Any) -> Optional[WindowBounds]:
    if not isinstance(value, dict):
        return None
    width = value.get('width')
    height = value.get('height')
    if not (_is_int(width) and _is_int(height)):
        return None
    if not (0 <= width <= _U32_MAX and 0 <= height <= _U32_MAX):
        return None
    position = []
    for key in ('x', 'y'):
        coord = value.get(key)
        if coord is not None and not (_is_int(coord) and _I32_MIN <= coord <= _I32_MAX):
            return None
        position.append(coord)
    return WindowBounds(width, height, *position)


def _extract_opacity(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return clamp_opacity(float(value))


def merge_config(data: Any) -> Config:
    """Builds a :class:`Config` from already-parsed JSON data, starting from the defaults.

    Each recognized key replaces the default only when its value has the expected type; anything else is
    left at the default. Unrecognized keys are ignored. If ``data`` is not an object, the defaults are returned.
    """
    config = Config()
    if not isinstance(data, dict):
        return config

    for key in ('global_shortcut', 'clipboard_shortcut', 'quick_note_shortcut'):
        if isinstance(data.get(key), str):
            setattr(config, key, data[key])

    for key in ('window_bounds', 'minimal_mode_bounds'):
        bounds = _extract_bounds(data.get(key))
        if bounds is not None:
            setattr(config, key, bounds)

    for key in ('last_note_id', 'last_folder'):
        if key in data and (data[key] is None or isinstance(data[key], str)):
            setattr(config, key, data[key])

    pinned = data.get('pinned_notes')
    if isinstance(pinned, list):
        config.pinned_notes = [item for item in pinned if isinstance(item, str)]

    opacity = _extract_opacity(data.get('window_opacity'))
    if opacity is not None:
        config.window_opacity = opacity

    if isinstance(data.get('auto_start_on_boot'), bool):
        config.auto_start_on_boot = data['auto_start_on_boot']

    return config


def merge_config_with_defaults(partial_json: str) -> Config:
    """Parses a possibly partial configuration document and fills in defaults for anything missing.

    A blank document yields the defaults. Raises :exc:`DecodeError` only if the text is not valid JSON.
    """
    if not partial_json.strip():
        return Config()
    try:
        data = json.loads(partial_json)
    except ValueError as e:
        raise DecodeError(f'Failed to parse config: {e}', e) from e
    return merge_config(data)


def serialize_config(config: Config) -> str:
    return json.dumps(config.as_json(), indent=2)


class ConfigStore:
    """Holds the process-wide configuration and writes it to disk.

    Changes are made with :meth:`update`, which only touches memory. Callers then either
    :meth:`schedule_save`, which coalesces a burst of changes into a single write after
    :attr:`save_delay` seconds of quiet, or :meth:`save_sync` when the change must be on disk before
    returning.

    The primary lock guards the in-memory value and is never held while writing. Every update also
    copies the new value into a separate cell that the deferred write reads, so a timer firing in
    the background never waits on callers of :meth:`get` or :meth:`update`.

    .. attribute:: config_path
       :type: pathlib.Path

    .. attribute:: save_delay
       :type: float
    """

    def __init__(self, config_path, save_delay: float = SAVE_DEBOUNCE_SECONDS):
        self.config_path = Path(config_path)
        self.save_delay = save_delay
        config = self.load_from_file(self.config_path)
        self._config = config
        self._lock = threading.Lock()
        self._latest = copy.deepcopy(config)
        self._latest_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._write_lock = threading.Lock()

    @staticmethod
    def load_from_file(path) -> Config:
        """Loads the configuration at ``path``, merging it with defaults.

        Returns the defaults if the file does not exist. Raises :exc:`DecodeError` if the file is not valid JSON,
        or :exc:`StorageError` if it cannot be read.
        """
        if not os.path.exists(path):
            return Config()
        try:
            content = read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f'Failed to read config file: {e}', e) from e
        return merge_config_with_defaults(content)

    def get(self) -> Config:
        """Returns a copy of the current configuration."""
        with self._lock:
            return copy.deepcopy(self._config)

    def update(self, mutator: Callable[[Config], None]) -> Config:
        """Applies ``mutator`` to the configuration in place and returns a copy of the result.

        Nothing is written to disk; follow up with :meth:`schedule_save` or :meth:`save_sync`.
        """
        with self._lock:
            mutator(self._config)
            snapshot = copy.deepcopy(self._config)
        with self._latest_lock:
            self._latest = snapshot
        return copy.deepcopy(snapshot)

    @property
    def has_pending_save(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def schedule_save(self) -> None:
        """Writes the latest configuration after :attr:`save_delay` seconds, replacing any pending write.

        Errors from the deferred write are logged, not raised.
        """
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.save_delay, self._flush)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _cancel_pending(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _flush(self) -> None:
        with self._timer_lock:
            if self._timer is threading.current_thread():
                self._timer = None
        with self._latest_lock:
            snapshot = self._latest
        try:
            self._write(snapshot)
        except Error as e:
            logger.warning('Debounced config save to %s failed: %s', self.config_path, e.message)

    def _write(self, config: Config) -> None:
        content = serialize_config(config)
        with self._write_lock:
            try:
                atomic_write_text(self.config_path, content)
            except OSError as e:
                raise StorageError(f'Failed to write config file: {e}', e) from e
        logger.debug('Wrote config to %s', self.config_path)

    def save_sync(self) -> None:
        """Cancels any pending deferred write and writes the current configuration immediately.

        Raises :exc:`StorageError` if the write fails.
        """
        self._cancel_pending()
        self._write(self.get())

    def close(self) -> None:
        """Writes a pending deferred save right away, if there is one."""
        if self.has_pending_save:
            self.save_sync()

    def get_last_note(self) -> LastNote:
        with self._lock:
            return LastNote(self._config.last_note_id, self._config.last_folder)

    def save_last_note(self, note_id: Optional[str], folder: Optional[str]) -> None:
        def mutate(config):
            config.last_note_id = note_id
            config.last_folder = folder
        self.update(mutate)

    def get_global_shortcut(self) -> str:
        with self._lock:
            return self._config.global_shortcut

    def set_global_shortcut(self, shortcut: str) -> None:
        def mutate(config):
            config.global_shortcut = shortcut
        self.update(mutate)

    def get_pinned_notes(self):
        with self._lock:
            return list(self._config.pinned_notes)

    def set_pinned_notes(self, pinned_notes) -> None:
        def mutate(config):
            config.pinned_notes = list(pinned_notes)
        self.update(mutate)

    def get_window_opacity(self) -> float:
        with self._lock:
            return self._config.window_opacity

    def set_window_opacity(self, opacity: float) -> float:
        """Stores the opacity, clamped to the allowed range, and returns the stored value.

        Raises :exc:`ValidationError` for NaN or infinite values.
        """
        if not math.isfinite(opacity):
            raise ValidationError(f'Opacity must be a finite number, got {opacity}')
        opacity = clamp_opacity(opacity)

        def mutate(config):
            config.window_opacity = opacity
        self.update(mutate)
        return opacity
