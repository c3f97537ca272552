"""
schemas/ — Pydantic request/response models for the procurement API

Webhook payloads from the workflow service use its camelCase aliases;
user-facing payloads use snake_case.
"""
