"""
crmcore

Shared infrastructure for CRM services: settings, database sessions and logging.
"""
