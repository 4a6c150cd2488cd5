"""
NameCard Backend - API Schemas
===============================

Pydantic models defining the API contract. Every model derives from
common.ApiModel (camelCase JSON, snake_case attributes).
"""
