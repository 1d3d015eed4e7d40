"""
Batch jobs for the area tree.

These run as standalone Python scripts via cron / Cloud Scheduler,
NOT inside any API process. When they run is decided by the scheduler.

Usage:
    python -m services.areas.jobs.tree_updater
    python -m services.areas.jobs.tree_updater --area-id <uuid>

Schedule (UTC):
    04:00  tree_updater  Roll crag statistics up through every area
"""
