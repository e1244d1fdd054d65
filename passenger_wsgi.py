"""
cPanel / Passenger WSGI entry point for the subscription billing service.
Passenger uses 'application'; set RENEWAL_TASK_ENABLED=false when several
Passenger processes serve the app and run run_renewal.py from cron instead.
"""
import sys
import os

# Add project directory to path so 'app' can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app import application
