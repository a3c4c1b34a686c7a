"""
Battery monitoring core package.

Ingests periodic battery snapshots from an external reader, retains and
compacts them as a time-ordered history, derives discharge and health
analytics, and drives the guided endurance (calibration) test with
crash-safe persistence.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""
