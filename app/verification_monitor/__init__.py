"""
Verification monitor module.

Scheduler-triggered sweeps: expiry alerts, expiry transitions, polling of
in-flight checks and the weekly recheck of expired credentials.
"""
