"""Shared configuration, logging, errors, types and repositories."""
