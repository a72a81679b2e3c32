"""Scripted interaction steps and their executor."""
