"""
presence_core — Classroom WiFi Presence Agent
=============================================
Architecture: Tkinter main-thread event loop. Zero busy-wait.

  constants.py      → Version, intervals, limits, reasons, theme
  config.py         → Paths, logging, config load/save, helpers
  errors.py         → Exception taxonomy
  clock.py          → System / server-corrected / manual clocks
  scheduler.py      → Tk + virtual schedulers, PeriodicTask
  events.py         → Publish/subscribe channel
  http_client.py    → HTTP session with retry/pooling + SSL fix
  platform_wifi.py  → BSSID probing (netsh / nmcli) + dev fallback
  platform_win.py   → Windows: single instance, lock detection
  authorization.py  → Classroom directory + room authorization
  connectivity.py   → Access point monitor with grace period
  drift.py          → Sync drift validation
  state.py          → AttendanceSession (single source of truth), snapshot
  network.py        → Offline request buffer
  api.py            → HttpSessionStore (server endpoints)
  store.py          → InMemorySessionStore (same semantics, in process)
  session.py        → SessionSync (timer state machine + sync protocol)
  popup.py          → Status window + alert dialogs
  app.py            → AgentApp (Tk main loop, root.after scheduling)
  runner.py         → main() + auto-restart wrapper
"""
