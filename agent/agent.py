"""
Classroom Presence — Desktop Agent
==================================
Counts attended lecture time while this device is attached to the
classroom's WiFi access point. The server owns the timer; the agent
authorizes the room, watches the access point, and keeps its display
in sync.

Usage:
    python agent.py
"""

from presence_core.runner import run_with_auto_restart

if __name__ == "__main__":
    run_with_auto_restart()
