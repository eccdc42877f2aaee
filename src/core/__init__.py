"""Shared configuration, database, errors, paths and security middleware."""
