"""Pydantic models shared by routes and services."""
