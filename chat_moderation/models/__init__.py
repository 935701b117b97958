"""Pydantic models and enums"""
