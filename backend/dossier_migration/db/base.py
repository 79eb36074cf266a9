"""Declarative base for all staging models."""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
