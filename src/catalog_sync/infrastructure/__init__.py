"""Database, ERP and logging infrastructure."""
