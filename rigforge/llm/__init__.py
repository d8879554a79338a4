"""Reasoning service client, prompts and response handling."""
