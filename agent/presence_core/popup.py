"""
Tk windows — the status window and alert dialogs.

Created and managed EXCLUSIVELY on the Tkinter main thread. Worker
threads never call into this module; they queue alerts on AgentApp,
which drains the queue from root.after().
"""

import tkinter as tk

from .constants import THEME
from .config import log
from .state import format_time

_LEVEL_COLORS = {
    "error": THEME["error"],
    "warning": THEME["warning"],
    "info": THEME["primary"],
}


class AlertDialog:
    """
    Small topmost dialog with a colored header, message, OK and an
    optional action button (e.g. "Try again").
    """

    def __init__(self, root):
        self._root = root
        self._open = []

    def show(self, title, message, level="warning", action=None, action_label="Try again"):
        try:
            self._build(title, message, level, action, action_label)
        except tk.TclError as e:
            log.error("Failed to show alert '%s': %s", title, e)

    def _build(self, title, message, level, action, action_label):
        top = tk.Toplevel(self._root)
        self._open.append(top)
        top.title(title)
        top.configure(bg=THEME["bg_card"])
        top.attributes("-topmost", True)
        top.resizable(False, False)

        W, H = 460, 280
        x = (top.winfo_screenwidth() - W) // 2
        y = (top.winfo_screenheight() - H) // 2
        top.geometry(f"{W}x{H}+{x}+{y}")

        color = _LEVEL_COLORS.get(level, THEME["primary"])
        header = tk.Frame(top, bg=color, height=48)
        header.pack(fill="x")
        header.pack_propagate(False)
        tk.Label(header, text=title, font=("Segoe UI", 14, "bold"),
                 fg="white", bg=color).pack(expand=True)

        body = tk.Frame(top, bg=THEME["bg_card"], padx=28, pady=18)
        body.pack(fill="both", expand=True)
        tk.Label(body, text=message, font=("Segoe UI", 10),
                 fg=THEME["text_primary"], bg=THEME["bg_card"],
                 wraplength=400, justify="left").pack(fill="x", pady=(0, 14))

        buttons = tk.Frame(body, bg=THEME["bg_card"])
        buttons.pack()

        def close():
            self._close(top)

        def run_action():
            close()
            action()

        if action is not None:
            tk.Button(buttons, text=action_label, command=run_action,
                      bg=THEME["primary"], fg="white", relief="flat",
                      padx=18, pady=6).pack(side="left", padx=6)
        tk.Button(buttons, text="OK", command=close,
                  bg=THEME["bg_dark"], fg=THEME["text_primary"], relief="flat",
                  padx=18, pady=6).pack(side="left", padx=6)
        top.protocol("WM_DELETE_WINDOW", close)

    def _close(self, top):
        try:
            top.destroy()
        except tk.TclError:
            pass
        if top in self._open:
            self._open.remove(top)

    def close_all(self):
        for top in list(self._open):
            self._close(top)


class StatusWindow:
    """
    Compact window on the root: room, attended time, phase, trust flag,
    and Start / Stop buttons. refresh() is called once per display tick.
    """

    def __init__(self, root, room_label, on_start, on_stop):
        self._root = root
        root.title("Classroom Presence")
        root.configure(bg=THEME["bg_dark"])
        root.resizable(False, False)

        self._room = tk.Label(root, text=room_label, font=("Segoe UI", 11),
                              fg=THEME["text_muted"], bg=THEME["bg_dark"])
        self._room.pack(padx=24, pady=(16, 0))
        self._time = tk.Label(root, text=format_time(0), font=("Consolas", 30, "bold"),
                              fg=THEME["text_primary"], bg=THEME["bg_dark"])
        self._time.pack(padx=24)
        self._phase = tk.Label(root, text="IDLE", font=("Segoe UI", 10, "bold"),
                               fg=THEME["text_muted"], bg=THEME["bg_dark"])
        self._phase.pack()
        self._trust = tk.Label(root, text="", font=("Segoe UI", 9),
                               fg=THEME["text_muted"], bg=THEME["bg_dark"])
        self._trust.pack(pady=(0, 8))

        buttons = tk.Frame(root, bg=THEME["bg_dark"])
        buttons.pack(pady=(0, 16))
        self._start = tk.Button(buttons, text="Start", command=on_start, width=10,
                                bg=THEME["success"], fg="white", relief="flat")
        self._start.pack(side="left", padx=6)
        self._stop = tk.Button(buttons, text="Stop", command=on_stop, width=10,
                               bg=THEME["error"], fg="white", relief="flat")
        self._stop.pack(side="left", padx=6)

    def set_room(self, room_label):
        self._room.config(text=room_label)

    def refresh(self, status):
        phase = status["phase"]
        self._time.config(text=format_time(status["display_seconds"]))
        text = phase if not status["pause_reason"] else f"{phase} — {status['pause_reason']}"
        color = {"RUNNING": THEME["success"], "PAUSED": THEME["warning"]}.get(
            phase, THEME["text_muted"])
        self._phase.config(text=text, fg=color)

        security = status["security"]
        conn = status.get("connectivity") or {}
        trust = "verified" if security["is_validated"] else "not verified"
        if conn.get("in_grace_period"):
            trust += " · WiFi lost (grace period)"
        self._trust.config(text=f"Sync {trust} · drift {security['drift']}s · "
                                f"grace used {security['grace_periods_used']}")

        running = phase in ("RUNNING", "PAUSED")
        self._start.config(state="disabled" if running else "normal")
        self._stop.config(state="normal" if running else "disabled")
