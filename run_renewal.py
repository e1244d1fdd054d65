"""
Run one renewal cycle and exit.
Use from cron (or by hand) when the in-process scheduler is disabled:
    RENEWAL_TASK_ENABLED=false python run_renewal.py
"""
import os
import sys

# The in-process timer must not start alongside this one-shot cycle
os.environ["RENEWAL_TASK_ENABLED"] = "false"

from app import app
from utils.renewal_scheduler import renewal_scheduler

def run_renewal():
    """Run a single renewal cycle; returns a process exit code"""
    summary = renewal_scheduler.run_once()
    if summary is None:
        app.logger.error("Renewal cycle did not complete")
        return 1

    print("\n" + "="*50)
    print("RENEWAL CYCLE SUMMARY:")
    print("="*50)
    for result, count in summary.items():
        print(f"{result.capitalize()}: {count}")
    print("="*50)
    return 0

if __name__ == '__main__':
    sys.exit(run_renewal())
