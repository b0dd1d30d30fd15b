"""
WALI-OS Celery Tasks
Periodic maintenance jobs.
"""
