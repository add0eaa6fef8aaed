"""Efectos secundarios "best-effort" (emails, SMS, auditoría, tiempo real).

Un efecto puede fallar sin afectar a quien lo disparó: cada tarea corre
envuelta en su propio try/except que sólo registra el error. Se disparan
después del commit de la transacción principal.
"""
import logging
from flask import current_app
from .extensions import socketio

log = logging.getLogger("agribid.effects")

EXTENSION_KEY = "agribid.effects"


class SideEffects:
    def __init__(self, app=None, inline=False, runner=None):
        self.app = app
        self.inline = inline
        self.runner = runner or socketio.start_background_task

    def fire(self, name, fn, *args, **kwargs):
        if self.inline:
            self._guarded(name, fn, args, kwargs)
        else:
            self.runner(self._in_context, name, fn, args, kwargs)

    def _in_context(self, name, fn, args, kwargs):
        app = self.app
        if app is None:
            self._guarded(name, fn, args, kwargs)
            return
        with app.app_context():
            self._guarded(name, fn, args, kwargs)

    @staticmethod
    def _guarded(name, fn, args, kwargs):
        try:
            fn(*args, **kwargs)
        except Exception:
            log.exception("effect:%s failed args=%s", name, args)


class RecordingEffects:
    """Sustituto para tests: guarda los efectos sin ejecutarlos."""

    def __init__(self):
        self.fired = []

    def fire(self, name, fn, *args, **kwargs):
        self.fired.append((name, args))

    def names(self):
        return [n for n, _ in self.fired]


def init_side_effects(app):
    app.extensions[EXTENSION_KEY] = SideEffects(
        app=app, inline=app.config.get("SIDE_EFFECTS_INLINE", False)
    )


def get_effects():
    return current_app.extensions[EXTENSION_KEY]
