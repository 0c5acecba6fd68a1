"""Relational store: ORM models and engine."""

from .engine import DatabaseEngine
from .models import Base, Email, EmailAccount, EmailAttachment

__all__ = ["Base", "DatabaseEngine", "Email", "EmailAccount", "EmailAttachment"]
