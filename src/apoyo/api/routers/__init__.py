"""API routers for the Apoyo API."""

from apoyo.api.routers import admin_contacts, companies, contacts, health, jobs, metrics

__all__ = ["admin_contacts", "companies", "contacts", "health", "jobs", "metrics"]
