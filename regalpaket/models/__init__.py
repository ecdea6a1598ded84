# FILE: regalpaket/models/__init__.py
"""
Pydantic models for container records and request/response validation
"""
from regalpaket.models.annotations import *
from regalpaket.models.manifests import *
